"""
Resource-level grants (ACLs).
"""
