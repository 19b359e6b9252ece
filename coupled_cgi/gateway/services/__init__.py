"""
Service layer package.

Process spawning, response channels, the per-request lifecycle coordinator
and route registration.
"""
