"""
Append-only audit trail of every entitlement change.
"""
