"""
Base infrastructure shared by relay services: settings, logging,
correlation IDs, redaction helpers and the Redis client factory.
"""
