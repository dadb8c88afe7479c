"""
Role-based access control: hierarchy resolution and the role/permission gate.
"""
