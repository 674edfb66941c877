"""
Company-defined custom roles.
"""
