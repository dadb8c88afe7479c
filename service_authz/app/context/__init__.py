"""
Transport-independent request context.
"""
