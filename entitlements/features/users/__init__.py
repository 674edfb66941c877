"""
Users, bearer-token authentication and tenant scoping rules.
"""
