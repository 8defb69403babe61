"""
Access control configuration loader.

Loads config/access_control.yml (or the file named by ACCESS_CONTROL_CONFIG):
route classification for the status gate, tenant assumption settings,
record cache TTL and the subdomain base for tenant slugs.

Usage:
    from src.config.access_settings import get_access_settings

    settings = get_access_settings()
    if settings.is_billing_path("/api/billing/invoices"):
        ...
"""

import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

_DEFAULT_BILLING_PREFIXES = ["/api/billing", "/api/payments"]
_DEFAULT_PUBLIC_PATHS = ["/health", "/docs", "/redoc", "/openapi.json"]
_DEFAULT_PLATFORM_PREFIXES = ["/api/super-admin"]
_FALLBACK_ASSUMPTION_TTL_MINUTES = 30
_FALLBACK_MIN_REASON_LENGTH = 10
_FALLBACK_DEDUPE_SECONDS = 60
_FALLBACK_CACHE_TTL_SECONDS = 60


def strip_tenant_prefix(path: str) -> str:
    """Turn "/t/<slug>/api/x" into "/api/x"; other paths pass through."""
    if path.startswith("/t/"):
        parts = path.split("/", 3)
        # ["", "t", "<slug>", "rest"]
        return "/" + parts[3] if len(parts) > 3 else "/"
    return path


def _matches_prefix(path: str, prefixes: List[str]) -> bool:
    for prefix in prefixes:
        prefix = prefix.rstrip("/")
        if path == prefix or path.startswith(prefix + "/"):
            return True
    return False


class AccessControlSettings:
    """
    Thread-safe singleton loader for config/access_control.yml.

    Missing file or missing keys fall back to built-in defaults, so the
    engine stays usable in tests without a config file.
    """

    _instance: Optional["AccessControlSettings"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._config_path = config_path or os.getenv("ACCESS_CONTROL_CONFIG")
        self._raw: Dict[str, Any] = {}
        self._load_lock = Lock()

        self._load()
        self._initialized = True

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        candidates = [
            Path(__file__).parent.parent.parent.parent / "config" / "access_control.yml",
            Path(os.getcwd()) / "config" / "access_control.yml",
            Path(os.getcwd()) / ".." / "config" / "access_control.yml",
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved

        raise FileNotFoundError(
            f"access_control.yml not found in: {[str(p) for p in candidates]}"
        )

    def _load(self) -> None:
        with self._load_lock:
            try:
                path = self._resolve_path()
                logger.info("Loading access control settings from %s", path)
                with open(path, "r") as f:
                    self._raw = yaml.safe_load(f) or {}
            except FileNotFoundError:
                logger.warning("access_control.yml not found, using fallback defaults")
                self._raw = {}

    def reload(self) -> None:
        """Re-read the YAML from disk."""
        self._load()

    # -- routes -------------------------------------------------------------

    def _routes(self) -> Dict[str, Any]:
        return self._raw.get("routes", {}) or {}

    @property
    def billing_route_prefixes(self) -> List[str]:
        return list(self._routes().get("billing_prefixes", _DEFAULT_BILLING_PREFIXES))

    @property
    def support_read_paths(self) -> List[str]:
        return list(self._routes().get("support_read_paths", []))

    @property
    def public_paths(self) -> List[str]:
        return list(self._routes().get("public_paths", _DEFAULT_PUBLIC_PATHS))

    @property
    def platform_route_prefixes(self) -> List[str]:
        """Routes that do not require a resolved tenant."""
        return list(self._routes().get("platform_prefixes", _DEFAULT_PLATFORM_PREFIXES))

    def is_billing_path(self, path: str) -> bool:
        return _matches_prefix(strip_tenant_prefix(path), self.billing_route_prefixes)

    def is_support_read_path(self, path: str) -> bool:
        return _matches_prefix(strip_tenant_prefix(path), self.support_read_paths)

    def is_public_path(self, path: str) -> bool:
        return _matches_prefix(path, self.public_paths)

    def is_tenant_scoped_path(self, path: str) -> bool:
        return not _matches_prefix(strip_tenant_prefix(path), self.platform_route_prefixes)

    # -- tenant assumption --------------------------------------------------

    def _assumption(self) -> Dict[str, Any]:
        return self._raw.get("assumption", {}) or {}

    @property
    def assumption_ttl_minutes(self) -> int:
        # Never longer than 30 minutes regardless of config
        configured = int(self._assumption().get("ttl_minutes", _FALLBACK_ASSUMPTION_TTL_MINUTES))
        return max(1, min(configured, _FALLBACK_ASSUMPTION_TTL_MINUTES))

    @property
    def assumption_min_reason_length(self) -> int:
        # Config may raise the floor, never lower it
        configured = int(self._assumption().get("min_reason_length", _FALLBACK_MIN_REASON_LENGTH))
        return max(_FALLBACK_MIN_REASON_LENGTH, configured)

    @property
    def assumption_dedupe_seconds(self) -> int:
        return int(self._assumption().get("dedupe_bucket_seconds", _FALLBACK_DEDUPE_SECONDS))

    # -- misc ---------------------------------------------------------------

    @property
    def record_cache_ttl_seconds(self) -> int:
        cache = self._raw.get("cache", {}) or {}
        return int(cache.get("record_ttl_seconds", _FALLBACK_CACHE_TTL_SECONDS))

    @property
    def base_domain(self) -> Optional[str]:
        tenancy = self._raw.get("tenancy", {}) or {}
        return tenancy.get("base_domain") or os.getenv("TENANT_BASE_DOMAIN") or None

    @property
    def audit_sink(self) -> Tuple[str, int]:
        """(sink kind, queue size) for the audit sink."""
        audit = self._raw.get("audit", {}) or {}
        return str(audit.get("sink", "logging")), int(audit.get("queue_size", 1000))

    @property
    def default_features(self) -> Optional[List[str]]:
        """Feature ids every tenant gets; None means the built-in default set."""
        features = (self._raw.get("features", {}) or {}).get("defaults")
        return list(features) if features else None

    def get_all(self) -> Dict[str, Any]:
        return dict(self._raw)


def get_access_settings(config_path: Optional[str] = None) -> AccessControlSettings:
    """Return the singleton AccessControlSettings."""
    return AccessControlSettings(config_path)


def reset_access_settings() -> None:
    """Reset singleton (for tests only)."""
    AccessControlSettings._instance = None
