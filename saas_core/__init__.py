"""
Multi-tenant authorization and plan-entitlement core.
"""

__version__ = "1.0.0"
