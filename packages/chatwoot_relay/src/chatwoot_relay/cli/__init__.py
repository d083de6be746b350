"""
Relay operations CLI.
"""
