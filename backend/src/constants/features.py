"""
Closed catalog of plan feature ids and usage limit names.

Plan records store features and limits as plain JSON maps. Every lookup goes
through parse_feature_id() / parse_limit_name(), which map known keys (and
their legacy spellings) onto these enums and return None for anything else.
Unknown keys therefore can never grant access.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional

# Sentinel key in FeaturePackage.features granting every recognized feature
EVERYTHING = "everything"


class FeatureId(str, Enum):
    # Core
    DASHBOARD_ANALYTICS = "dashboard_analytics"
    VENUE_MANAGEMENT = "venue_management"
    CUSTOMER_MANAGEMENT = "customer_management"
    EVENT_BOOKING = "event_booking"
    PAYMENT_PROCESSING = "payment_processing"

    # Premium
    CALENDAR_VIEW = "calendar_view"
    PROPOSAL_SYSTEM = "proposal_system"
    LEADS_MANAGEMENT = "leads_management"
    AI_ANALYTICS = "ai_analytics"
    VOICE_BOOKING = "voice_booking"
    FLOOR_PLANS = "floor_plans"
    ADVANCED_REPORTS = "advanced_reports"
    TASK_MANAGEMENT = "task_management"
    CUSTOM_FIELDS = "custom_fields"
    SERVICE_PACKAGES = "service_packages"
    GMAIL_INTEGRATION = "gmail_integration"
    AUDIT_LOGS = "audit_logs"
    CUSTOM_BRANDING = "custom_branding"
    API_ACCESS = "api_access"


FEATURE_NAMES: Dict[FeatureId, str] = {
    FeatureId.DASHBOARD_ANALYTICS: "Dashboard Analytics",
    FeatureId.VENUE_MANAGEMENT: "Venue Management",
    FeatureId.CUSTOMER_MANAGEMENT: "Customer Management",
    FeatureId.EVENT_BOOKING: "Event Booking",
    FeatureId.PAYMENT_PROCESSING: "Payment Processing",
    FeatureId.CALENDAR_VIEW: "Calendar View",
    FeatureId.PROPOSAL_SYSTEM: "Proposal System",
    FeatureId.LEADS_MANAGEMENT: "Lead Management",
    FeatureId.AI_ANALYTICS: "AI Analytics",
    FeatureId.VOICE_BOOKING: "Voice Booking",
    FeatureId.FLOOR_PLANS: "Floor Plans",
    FeatureId.ADVANCED_REPORTS: "Advanced Reports",
    FeatureId.TASK_MANAGEMENT: "Task Management",
    FeatureId.CUSTOM_FIELDS: "Custom Fields",
    FeatureId.SERVICE_PACKAGES: "Service & Package Management",
    FeatureId.GMAIL_INTEGRATION: "Gmail Integration",
    FeatureId.AUDIT_LOGS: "Audit Logging",
    FeatureId.CUSTOM_BRANDING: "Custom Branding",
    FeatureId.API_ACCESS: "API Access",
}

# Available to every tenant regardless of plan (also the fallback when the
# plan is missing or inactive)
DEFAULT_FEATURES: FrozenSet[FeatureId] = frozenset([
    FeatureId.DASHBOARD_ANALYTICS,
    FeatureId.CUSTOMER_MANAGEMENT,
    FeatureId.PAYMENT_PROCESSING,
    FeatureId.EVENT_BOOKING,
])

# Older package definitions used hyphenated or shortened keys
FEATURE_ALIASES: Dict[str, FeatureId] = {
    "dashboard": FeatureId.DASHBOARD_ANALYTICS,
    "event_management": FeatureId.EVENT_BOOKING,
    "lead_management": FeatureId.LEADS_MANAGEMENT,
    "stripe_payments": FeatureId.PAYMENT_PROCESSING,
    "ai_insights": FeatureId.AI_ANALYTICS,
    "ai_voice_booking": FeatureId.VOICE_BOOKING,
    "floor_plan_designer": FeatureId.FLOOR_PLANS,
    "calendar_integration": FeatureId.CALENDAR_VIEW,
}


class LimitName(str, Enum):
    MAX_USERS = "maxUsers"
    MAX_VENUES = "maxVenues"
    MAX_SPACES_PER_VENUE = "maxSpacesPerVenue"
    MAX_BOOKINGS = "maxBookings"
    MAX_MONTHLY_BOOKINGS = "maxMonthlyBookings"
    MAX_CUSTOMERS = "maxCustomers"

    @property
    def is_per_venue(self) -> bool:
        return self == LimitName.MAX_SPACES_PER_VENUE


LIMIT_ALIASES: Dict[str, LimitName] = {
    "maxstaff": LimitName.MAX_USERS,
    "staff": LimitName.MAX_USERS,
    "users": LimitName.MAX_USERS,
    "venues": LimitName.MAX_VENUES,
    "spaces": LimitName.MAX_SPACES_PER_VENUE,
    "monthlybookings": LimitName.MAX_MONTHLY_BOOKINGS,
    "maxeventspermonth": LimitName.MAX_MONTHLY_BOOKINGS,
    "bookings": LimitName.MAX_BOOKINGS,
    "customers": LimitName.MAX_CUSTOMERS,
}

UNLIMITED = -1


def parse_feature_id(value: Optional[str]) -> Optional[FeatureId]:
    """Map a stored or requested feature key onto FeatureId, None if unknown."""
    if not value or not isinstance(value, str):
        return None
    key = value.strip().lower().replace("-", "_")
    if key in FEATURE_ALIASES:
        return FEATURE_ALIASES[key]
    try:
        return FeatureId(key)
    except ValueError:
        return None


def parse_limit_name(value: Optional[str]) -> Optional[LimitName]:
    """Map a stored or requested limit key onto LimitName, None if unknown."""
    if not value or not isinstance(value, str):
        return None
    key = value.strip()
    try:
        return LimitName(key)
    except ValueError:
        return LIMIT_ALIASES.get(key.lower().replace("_", ""))


def feature_display_name(feature_id: str) -> str:
    parsed = parse_feature_id(feature_id)
    if parsed is not None:
        return FEATURE_NAMES[parsed]
    return feature_id.replace("_", " ").title()
