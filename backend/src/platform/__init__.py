"""
Platform-level access control.

- errors: access control error taxonomy
- tenant_context: TenantContext and TenantResolver
- rbac: PermissionEvaluator and route decorators
- access_engine: wiring of the engine's collaborators
"""
