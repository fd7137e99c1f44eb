"""
Feature modules live under this package.

Each module owns its models, service functions and admin routes, while reusing
platform primitives (transactions, audit, storage, notifications).
"""
