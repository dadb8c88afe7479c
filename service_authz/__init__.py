"""
Authz service for the access decision engine.
"""
