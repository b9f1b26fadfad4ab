"""
HRIS Core - Services Package

Business logic for directory snapshots, scope resolution, permission checks
and approval routing.
"""
