"""
Grant store: per-user data permissions, company module provisioning,
per-user module grants and company custom roles.
"""
