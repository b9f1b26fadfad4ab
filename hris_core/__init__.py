"""
HRIS Core - Access Scope & Approval Routing

Scoped access control and multi-party approval routing for HR cases.
"""

__version__ = "0.1.0"
