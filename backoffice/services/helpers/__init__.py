"""Tenant-scoped lookup and sequence helpers used by every service."""
