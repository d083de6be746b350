"""
Z-API webhook intake service.
"""
