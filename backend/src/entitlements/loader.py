"""
Plan catalog loader - reads the default feature packages from config/plans.json.

Provides:
- CatalogPackage: one package definition from the catalog
- PlanCatalogLoader: singleton loader for the catalog

The catalog seeds the feature_packages table (scripts/seed_feature_packages.py).
At request time plans are always read from the store, never from this file.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

from src.entitlements.models import PlanEntitlements, parse_plan
from src.platform.errors import AccessEngineUnavailableError
from src.repositories.access_store import PlanRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogPackage:
    name: str
    display_name: str
    features: Dict[str, Any] = field(default_factory=dict)
    limits: Dict[str, Any] = field(default_factory=dict)
    price_monthly_cents: int = 0
    price_yearly_cents: int = 0
    is_active: bool = True

    def to_plan_record(self, plan_id: Optional[str] = None, version: int = 1) -> PlanRecord:
        return PlanRecord(
            id=plan_id or self.name,
            name=self.name,
            display_name=self.display_name,
            features=dict(self.features),
            limits=dict(self.limits),
            is_active=self.is_active,
            version=version,
        )

    def entitlements(self) -> PlanEntitlements:
        return parse_plan(self.to_plan_record())


class PlanCatalogLoader:
    """
    Thread-safe singleton loader for config/plans.json.

    Every package is validated with the same parser the engine uses, so a
    catalog that loads here seeds plans the engine can read.
    """

    _instance: Optional["PlanCatalogLoader"] = None
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

        self._config_path = config_path
        self._packages: Dict[str, CatalogPackage] = {}
        self._version = 1
        self._load_lock = Lock()

        self._load_config()
        self._initialized = True

    def _resolve_config_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        possible_paths = [
            Path(__file__).parent.parent.parent.parent / "config" / "plans.json",
            Path(os.getcwd()) / "config" / "plans.json",
            Path(os.getcwd()).parent / "config" / "plans.json",
        ]
        for path in possible_paths:
            if path.exists():
                return path

        raise FileNotFoundError(
            f"plans.json not found in any of: {[str(p) for p in possible_paths]}"
        )

    def _load_config(self) -> None:
        with self._load_lock:
            config_path = self._resolve_config_path()
            logger.info("Loading plan catalog", extra={"path": str(config_path)})

            with open(config_path, "r") as f:
                raw = json.load(f)

            self._version = int(raw.get("version", 1))
            self._packages = self._parse_packages(raw.get("packages", []))

            logger.info("Loaded plan catalog", extra={"package_count": len(self._packages)})

    @staticmethod
    def _parse_packages(packages_data: List[Dict[str, Any]]) -> Dict[str, CatalogPackage]:
        packages: Dict[str, CatalogPackage] = {}
        for data in packages_data:
            name = data.get("name")
            if not name:
                raise ValueError("Plan catalog package without a name")
            if name in packages:
                raise ValueError(f"Duplicate plan catalog package: {name}")

            package = CatalogPackage(
                name=name,
                display_name=data.get("display_name", name),
                features=data.get("features", {}),
                limits=data.get("limits", {}),
                price_monthly_cents=int(data.get("price_monthly_cents", 0)),
                price_yearly_cents=int(data.get("price_yearly_cents", 0)),
                is_active=bool(data.get("is_active", True)),
            )
            try:
                package.entitlements()
            except AccessEngineUnavailableError as e:
                raise ValueError(f"Invalid plan catalog package {name}: {e.detail}") from e
            packages[name] = package
        return packages

    def reload(self) -> None:
        self._load_config()

    @property
    def version(self) -> int:
        return self._version

    def get_package(self, name: str) -> Optional[CatalogPackage]:
        return self._packages.get(name)

    def get_all_packages(self) -> List[CatalogPackage]:
        return list(self._packages.values())


def get_plan_catalog_loader(config_path: Optional[str] = None) -> PlanCatalogLoader:
    """Return the singleton PlanCatalogLoader."""
    return PlanCatalogLoader(config_path)


def reset_plan_catalog_loader() -> None:
    """
    Reset the singleton instance (for testing).

    WARNING: Only use in tests!
    """
    PlanCatalogLoader._instance = None
