"""
Tests for plan parsing and the feature gate.

Test classes:
- TestParsePlan: plan records -> PlanEntitlements
- TestFeatureGate: plan features, defaults, wildcard, unknown ids
- TestFeatureGateProperties: hypothesis - wildcard and fail-closed
- TestFeatureDenialDetails: FeatureNotAvailableError payload
- TestFeatureDependency: route dependency validates feature ids
"""

import pytest
from hypothesis import given, strategies as st

from src.constants.features import (
    DEFAULT_FEATURES,
    FeatureId,
    LimitName,
    parse_feature_id,
    parse_limit_name,
)
from src.entitlements.features import FeatureGate
from src.entitlements.middleware import FeatureDependency
from src.entitlements.models import PlanEntitlements, parse_plan
from src.platform.errors import AccessEngineUnavailableError, FeatureNotAvailableError
from src.repositories.access_store import PlanRecord


def _plan(features=None, limits=None, is_active=True, name="starter"):
    return parse_plan(PlanRecord(
        id=f"plan-{name}",
        name=name,
        display_name=name.title(),
        features=features if features is not None else {},
        limits=limits if limits is not None else {},
        is_active=is_active,
    ))


gate = FeatureGate()
feature_ids = st.sampled_from(list(FeatureId))
unknown_ids = st.text(min_size=1, max_size=30).filter(lambda s: parse_feature_id(s) is None)


class TestParsePlan:

    def test_known_features_only(self):
        plan = _plan({"proposal_system": True, "floor_plans": False, "teleportation": True})
        assert plan.features == frozenset({FeatureId.PROPOSAL_SYSTEM})

    def test_only_literal_true_grants(self):
        plan = _plan({"proposal_system": "yes", "floor_plans": 1, "calendar_view": True})
        assert plan.features == frozenset({FeatureId.CALENDAR_VIEW})

    def test_legacy_feature_keys(self):
        plan = _plan({"floor_plan_designer": True, "ai_insights": True})
        assert plan.features == frozenset({FeatureId.FLOOR_PLANS, FeatureId.AI_ANALYTICS})

    def test_everything_sentinel(self):
        plan = _plan({"everything": True})
        assert plan.grants_everything
        assert plan.enabled_features() == frozenset(FeatureId)

    def test_everything_must_be_true(self):
        assert not _plan({"everything": "true"}).grants_everything

    def test_limits(self):
        plan = _plan(limits={"maxVenues": 3, "maxStaff": 5, "maxUsers": -1, "maxRockets": 2})
        assert plan.get_limit(LimitName.MAX_VENUES) == 3
        assert plan.is_unlimited(LimitName.MAX_USERS)
        assert plan.get_limit(LimitName.MAX_SPACES_PER_VENUE) is None
        assert plan.limits_as_dict() == {"maxVenues": 3, "maxUsers": -1}

    def test_legacy_limit_alias_applies_when_canonical_absent(self):
        plan = _plan(limits={"maxStaff": 5})
        assert plan.get_limit(LimitName.MAX_USERS) == 5

    @pytest.mark.parametrize("features,limits", [
        (["dashboard"], {}),
        ({}, ["maxVenues"]),
        ({}, {"maxVenues": "3"}),
        ({}, {"maxVenues": 2.5}),
        ({}, {"maxVenues": True}),
        ({}, {"maxVenues": -2}),
    ])
    def test_malformed_records_are_infrastructure_failures(self, features, limits):
        with pytest.raises(AccessEngineUnavailableError):
            _plan(features, limits)

    def test_missing_maps_are_empty(self):
        plan = parse_plan(PlanRecord(id="p", name="bare", display_name="Bare", features=None, limits=None))
        assert plan.features == frozenset()
        assert plan.limits == {}

    @pytest.mark.parametrize("value,expected", [
        ("maxVenues", LimitName.MAX_VENUES),
        ("max_staff", LimitName.MAX_USERS),
        ("maxEventsPerMonth", LimitName.MAX_MONTHLY_BOOKINGS),
        ("maxWidgets", None),
        (None, None),
    ])
    def test_parse_limit_name(self, value, expected):
        assert parse_limit_name(value) == expected


class TestFeatureGate:

    def test_enabled_feature(self):
        assert gate.has_feature(_plan({"proposal_system": True}), "proposal_system")

    def test_disabled_feature(self):
        assert not gate.has_feature(_plan({"proposal_system": False}), "proposal_system")

    def test_absent_feature(self):
        assert not gate.has_feature(_plan({"calendar_view": True}), "proposal_system")

    def test_hyphenated_request_id(self):
        assert gate.has_feature(_plan({"proposal_system": True}), "proposal-system")

    @pytest.mark.parametrize("feature", sorted(f.value for f in DEFAULT_FEATURES))
    def test_missing_plan_gets_defaults(self, feature):
        assert gate.has_feature(None, feature)

    def test_missing_plan_lacks_premium(self):
        assert not gate.has_feature(None, "proposal_system")

    def test_inactive_plan_falls_back_to_defaults(self):
        plan = _plan({"everything": True}, is_active=False)
        assert gate.enabled_features(plan) == DEFAULT_FEATURES
        assert not gate.has_feature(plan, "advanced_reports")

    def test_configured_defaults(self):
        custom = FeatureGate(["calendar_view", "not_a_feature"])
        assert custom.default_features == frozenset({FeatureId.CALENDAR_VIEW})
        assert custom.has_feature(None, "calendar_view")
        assert not custom.has_feature(None, "dashboard_analytics")

    def test_super_admin_bypasses(self):
        assert gate.has_feature(_plan({}), "voice_booking", is_super_admin=True)
        assert gate.has_feature(None, "advanced_reports", is_super_admin=True)


class TestFeatureGateProperties:

    @given(feature=feature_ids)
    def test_everything_grants_every_recognized_feature(self, feature):
        plan = _plan({"everything": True}, name="enterprise")
        assert gate.has_feature(plan, feature.value)

    @given(feature_id=unknown_ids, everything=st.booleans())
    def test_unknown_feature_always_denied(self, feature_id, everything):
        plan = _plan({"everything": everything, feature_id: True})
        assert not gate.has_feature(plan, feature_id)
        assert not gate.has_feature(None, feature_id)

    def test_not_a_real_feature(self):
        for plan in (None, _plan({}), _plan({"everything": True}), _plan({"not-a-real-feature": True})):
            assert not gate.has_feature(plan, "not-a-real-feature")


class TestFeatureDenialDetails:

    def test_denial_payload(self):
        with pytest.raises(FeatureNotAvailableError) as exc_info:
            gate.check_or_raise(_plan({"dashboard_analytics": True}), "proposal_system")

        error = exc_info.value
        assert error.http_status == 403
        assert error.to_dict() == {
            "code": "FEATURE_NOT_AVAILABLE",
            "message": "Feature 'Proposal System' is not available in your current plan",
            "featureId": "proposal_system",
            "featureName": "Proposal System",
            "plan": "starter",
            "upgradeRequired": True,
        }

    def test_alias_reported_canonically(self):
        with pytest.raises(FeatureNotAvailableError) as exc_info:
            gate.check_or_raise(_plan({}), "floor_plan_designer")
        assert exc_info.value.feature_id == "floor_plans"

    def test_unknown_feature_named_as_requested(self):
        with pytest.raises(FeatureNotAvailableError) as exc_info:
            gate.check_or_raise(None, "time_travel")
        assert exc_info.value.feature_id == "time_travel"
        assert exc_info.value.plan_id is None

    def test_allowed_returns_none(self):
        assert gate.check_or_raise(_plan({"proposal_system": True}), "proposal_system") is None


class TestFeatureDependency:

    def test_known_feature_accepted(self):
        assert FeatureDependency("ai_analytics").feature_id == "ai_analytics"

    def test_unknown_feature_rejected_at_declaration(self):
        with pytest.raises(ValueError):
            FeatureDependency("ai_assistant")
