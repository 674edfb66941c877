"""
Permission and module catalog.
"""
