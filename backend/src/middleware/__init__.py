"""
Middleware package for request-level access control.

Provides:
- AccessControlMiddleware: identity, tenant and tenant-status enforcement
  for every protected route (src.middleware.access_control)
"""
