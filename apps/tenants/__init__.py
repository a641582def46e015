"""
Tenants: the isolation boundary every principal and role belongs to.
"""
