"""
HRIS Core - Utilities Package
"""
