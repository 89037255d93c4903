"""
Compliance engine services.
"""
