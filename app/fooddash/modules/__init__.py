"""
Feature modules live under this package.

Each module owns its models, service layer and blueprint, and reuses the
platform primitives (auth, RBAC, audit, realtime feed, storage, DB session).
"""
