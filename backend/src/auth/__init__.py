"""
Authentication: credential verification and identity resolution.

- jwt: access token claims and the HS256 codec
- identity: IdentityResolver (credential -> ResolvedIdentity)

The resolver never touches the store; tenant and role resolution happen in
src.platform.tenant_context.
"""
