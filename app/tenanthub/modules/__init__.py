"""
Feature modules live under this package.

Each module owns its models, service layer and JSON blueprint, and reuses the
platform primitives (auth, RBAC, tenancy, audit, storage, DB session).
"""
