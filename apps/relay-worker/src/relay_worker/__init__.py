"""
Relay queue worker service.
"""
