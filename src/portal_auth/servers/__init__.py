"""Starlette wiring: middleware, security checks and the ``/auth`` routes."""
