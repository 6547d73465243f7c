"""Migration settings"""
