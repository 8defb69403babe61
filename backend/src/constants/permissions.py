"""
Canonical permissions matrix for the venue management platform.

IMPORTANT: This is the single source of truth for all permissions.
All permission checks MUST go through src.platform.rbac.PermissionEvaluator,
which consults these presets. UI permission gating is UX only.

Role Hierarchy (tenant-scoped, strictly nested presets):
    OWNER ⊇ ADMIN ⊇ MANAGER ⊇ STAFF ⊇ VIEWER

SUPER_ADMIN is a platform role held via User.is_super_admin, never via a
membership. It is only tenant-scoped while an assumed-tenant credential is
active.

Permission strings use the "resource:action" format, e.g. "events:edit".
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional


class Role(str, Enum):
    """Membership roles plus the platform super admin."""

    SUPER_ADMIN = "super_admin"
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    VIEWER = "viewer"


# Ordered from least to most privileged
ROLE_HIERARCHY: tuple = (
    Role.VIEWER,
    Role.STAFF,
    Role.MANAGER,
    Role.ADMIN,
    Role.OWNER,
)

# Roles that may appear on a TenantMembership
MEMBERSHIP_ROLES: FrozenSet[Role] = frozenset(ROLE_HIERARCHY)


class Resource(str, Enum):
    """Resources guarded by the permission evaluator."""

    EVENTS = "events"  # bookings
    PROPOSALS = "proposals"
    CUSTOMERS = "customers"
    PAYMENTS = "payments"
    VENUES = "venues"
    SPACES = "spaces"
    REPORTS = "reports"
    TASKS = "tasks"
    SERVICES = "services"
    PACKAGES = "packages"
    COMMUNICATIONS = "communications"
    AI = "ai"
    SETTINGS = "settings"
    TEAM = "team"
    BILLING = "billing"


# Route/legacy names that refer to an existing resource
RESOURCE_ALIASES: Dict[str, Resource] = {
    "bookings": Resource.EVENTS,
    "booking": Resource.EVENTS,
    "users": Resource.TEAM,
}


class Action(str, Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    CANCEL = "cancel"
    SEND = "send"
    RECORD = "record"
    REFUND = "refund"
    MANAGE = "manage"
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    USE = "use"


READ_ACTIONS: FrozenSet[Action] = frozenset([Action.VIEW])


class Permission(str, Enum):
    """
    All permissions in the system.

    Naming convention: RESOURCE_ACTION = "resource:action"
    """

    # Events & bookings
    EVENTS_VIEW = "events:view"
    EVENTS_CREATE = "events:create"
    EVENTS_EDIT = "events:edit"
    EVENTS_CANCEL = "events:cancel"

    # Proposals
    PROPOSALS_VIEW = "proposals:view"
    PROPOSALS_CREATE = "proposals:create"
    PROPOSALS_SEND = "proposals:send"
    PROPOSALS_EDIT = "proposals:edit"

    # Customers & leads
    CUSTOMERS_VIEW = "customers:view"
    CUSTOMERS_CREATE = "customers:create"
    CUSTOMERS_EDIT = "customers:edit"

    # Payments
    PAYMENTS_VIEW = "payments:view"
    PAYMENTS_RECORD = "payments:record"
    PAYMENTS_REFUND = "payments:refund"

    # Venues & spaces
    VENUES_VIEW = "venues:view"
    VENUES_MANAGE = "venues:manage"
    SPACES_VIEW = "spaces:view"
    SPACES_MANAGE = "spaces:manage"

    # Operations
    TASKS_VIEW = "tasks:view"
    TASKS_MANAGE = "tasks:manage"
    SERVICES_VIEW = "services:view"
    SERVICES_MANAGE = "services:manage"
    PACKAGES_VIEW = "packages:view"
    PACKAGES_MANAGE = "packages:manage"

    # Reports
    REPORTS_VIEW = "reports:view"

    # Communications
    COMMUNICATIONS_SEND_EMAIL = "communications:send_email"
    COMMUNICATIONS_SEND_SMS = "communications:send_sms"

    # AI features
    AI_USE = "ai:use"

    # Administration
    SETTINGS_MANAGE = "settings:manage"
    TEAM_MANAGE = "team:manage"
    BILLING_MANAGE = "billing:manage"

    @property
    def resource(self) -> Resource:
        return Resource(self.value.split(":", 1)[0])

    @property
    def action(self) -> Action:
        return Action(self.value.split(":", 1)[1])


# Legacy single-word permission names still used by older routes
LEGACY_PERMISSION_ALIASES: Dict[str, Permission] = {
    "dashboard": Permission.REPORTS_VIEW,
    "bookings": Permission.EVENTS_VIEW,
    "customers": Permission.CUSTOMERS_VIEW,
    "proposals": Permission.PROPOSALS_VIEW,
    "venues": Permission.VENUES_VIEW,
    "payments": Permission.PAYMENTS_VIEW,
    "tasks": Permission.TASKS_VIEW,
    "settings": Permission.SETTINGS_MANAGE,
    "users": Permission.TEAM_MANAGE,
}


# ---------------------------------------------------------------------------
# Presets. Each role is built as a superset of the role below it so the
# nesting invariant holds by construction.
# ---------------------------------------------------------------------------

_VIEWER: FrozenSet[Permission] = frozenset([
    Permission.EVENTS_VIEW,
    Permission.PROPOSALS_VIEW,
    Permission.CUSTOMERS_VIEW,
    Permission.PAYMENTS_VIEW,
    Permission.VENUES_VIEW,
    Permission.SPACES_VIEW,
    Permission.TASKS_VIEW,
    Permission.SERVICES_VIEW,
    Permission.PACKAGES_VIEW,
    Permission.REPORTS_VIEW,
])

_STAFF: FrozenSet[Permission] = _VIEWER | frozenset([
    Permission.EVENTS_CREATE,
    Permission.PROPOSALS_CREATE,
    Permission.CUSTOMERS_CREATE,
    Permission.TASKS_MANAGE,
    Permission.SERVICES_MANAGE,
    Permission.PACKAGES_MANAGE,
    Permission.AI_USE,
])

_MANAGER: FrozenSet[Permission] = _STAFF | frozenset([
    Permission.EVENTS_EDIT,
    Permission.PROPOSALS_SEND,
    Permission.CUSTOMERS_EDIT,
    Permission.PAYMENTS_RECORD,
    Permission.COMMUNICATIONS_SEND_EMAIL,
])

_ADMIN: FrozenSet[Permission] = _MANAGER | frozenset([
    Permission.EVENTS_CANCEL,
    Permission.PROPOSALS_EDIT,
    Permission.VENUES_MANAGE,
    Permission.SPACES_MANAGE,
    Permission.COMMUNICATIONS_SEND_SMS,
    Permission.SETTINGS_MANAGE,
    Permission.TEAM_MANAGE,
])

_OWNER: FrozenSet[Permission] = _ADMIN | frozenset([
    Permission.PAYMENTS_REFUND,
    Permission.BILLING_MANAGE,
])

PERMISSION_PRESETS: Dict[Role, FrozenSet[Permission]] = {
    Role.VIEWER: _VIEWER,
    Role.STAFF: _STAFF,
    Role.MANAGER: _MANAGER,
    Role.ADMIN: _ADMIN,
    Role.OWNER: _OWNER,
    Role.SUPER_ADMIN: frozenset(Permission),
}


class StaffType(str, Enum):
    SALES = "sales"
    EVENT = "event"
    OPERATIONS = "operations"


# Resources a staff member of each type may write to. Reads are governed by
# the preset alone.
STAFF_TYPE_RESOURCES: Dict[StaffType, FrozenSet[Resource]] = {
    StaffType.SALES: frozenset([Resource.CUSTOMERS, Resource.PROPOSALS, Resource.EVENTS]),
    StaffType.EVENT: frozenset([Resource.EVENTS, Resource.TASKS, Resource.VENUES]),
    StaffType.OPERATIONS: frozenset([Resource.VENUES, Resource.SERVICES, Resource.PACKAGES]),
}

# Resources whose records belong to a venue; managers are scoped on these
VENUE_SCOPED_RESOURCES: FrozenSet[Resource] = frozenset([
    Resource.EVENTS,
    Resource.VENUES,
    Resource.SPACES,
    Resource.PAYMENTS,
    Resource.PROPOSALS,
    Resource.TASKS,
])


def parse_role(value: Optional[str]) -> Optional[Role]:
    """Parse a role string, returning None for unknown values."""
    if not value:
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None


def parse_resource(value: str) -> Optional[Resource]:
    """Parse a resource name, honouring route aliases such as "bookings"."""
    key = (value or "").strip().lower()
    if key in RESOURCE_ALIASES:
        return RESOURCE_ALIASES[key]
    try:
        return Resource(key)
    except ValueError:
        return None


def parse_permission(value: str) -> Optional[Permission]:
    """
    Parse "resource:action" (or a legacy single-word name) into a Permission.

    Returns None for anything that is not a known permission.
    """
    key = (value or "").strip().lower()
    if key in LEGACY_PERMISSION_ALIASES:
        return LEGACY_PERMISSION_ALIASES[key]
    if ":" not in key:
        return None
    resource_name, action_name = key.split(":", 1)
    resource = parse_resource(resource_name)
    if resource is None:
        return None
    try:
        return Permission(f"{resource.value}:{action_name}")
    except ValueError:
        return None


def parse_staff_type(value: Optional[str]) -> Optional[StaffType]:
    if not value:
        return None
    try:
        return StaffType(value.strip().lower())
    except ValueError:
        return None


def get_permissions_for_role(role: Role) -> FrozenSet[Permission]:
    """Get the preset permissions for a given role."""
    return PERMISSION_PRESETS.get(role, frozenset())


def role_has_permission(role: Role, permission: Permission) -> bool:
    """Check the preset only (no overrides or scoping)."""
    return permission in PERMISSION_PRESETS.get(role, frozenset())


def role_rank(role: Role) -> int:
    """Position in the hierarchy; super admin ranks above owner."""
    if role == Role.SUPER_ADMIN:
        return len(ROLE_HIERARCHY)
    return ROLE_HIERARCHY.index(role)
