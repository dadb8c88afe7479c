"""
Access decisions and the operation requirement table.
"""
