"""Database dialect adapters"""
