"""
HRIS Core - API Routers Package
"""
