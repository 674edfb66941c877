"""
Company module provisioning and pricing.
"""
