"""Dialect adapters: Oracle source, PostgreSQL target, SQLite for local runs"""
