"""
Key-scoped locks serializing resource grant writes.
"""
