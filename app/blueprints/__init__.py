"""
Tenant Integrity Service
Blueprint registry.
"""
