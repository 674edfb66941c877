"""
Company (tenant) records.
"""
