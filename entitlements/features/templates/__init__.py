"""
Permission templates: named bundles of permissions and modules applied to a
user in one step.
"""
