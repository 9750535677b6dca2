"""
LedgerHub Tenant Platform

Backend services for the multi-tenant accounting platform: tenant database
provisioning, trial-expiry cleanup, scheduled maintenance and JWT sessions.
"""

__version__ = "1.0.0"
