"""
Entitlement engine: dependency validation, effective permission resolution
and the grant/revoke orchestrator.
"""
