# API routes
from src.api.routes import health
from src.api.routes import assume_tenant
from src.api.routes import tenant_features

__all__ = ["health", "assume_tenant", "tenant_features"]
