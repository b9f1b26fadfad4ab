"""
HRIS Core - Pydantic Schemas Package
"""
