"""
Unit tests for risk assessment.

Tests thresholds, production escalation and narrator isolation.
"""

from unittest.mock import Mock

import pytest

from cost_impact_monitor.core.risk import (
    RECOMMENDATIONS,
    RiskAssessor,
    RiskLevel,
    assess_risk,
    is_production,
    level_for_delta,
)


class TestRiskLevels:
    """Test threshold mapping on the magnitude of the delta."""

    @pytest.mark.parametrize("delta,expected", [
        (0, RiskLevel.LOW),
        (49.99, RiskLevel.LOW),
        (50, RiskLevel.MEDIUM),
        (199.99, RiskLevel.MEDIUM),
        (200, RiskLevel.HIGH),
        (499.99, RiskLevel.HIGH),
        (500, RiskLevel.CRITICAL),
        (-600, RiskLevel.CRITICAL),
        (-75, RiskLevel.MEDIUM),
    ])
    def test_thresholds(self, delta, expected):
        """Verify each threshold boundary."""
        assert level_for_delta(delta) == expected

    def test_level_monotonic_in_magnitude(self):
        """Verify a larger |delta| never yields a lower level."""
        deltas = [0, 10, 49, 50, 120, 199, 200, 350, 499, 500, 5000]
        ranks = [level_for_delta(d).rank for d in deltas]
        assert ranks == sorted(ranks)

    def test_is_high(self):
        """Verify only high and critical count as high risk."""
        assert not RiskLevel.LOW.is_high
        assert not RiskLevel.MEDIUM.is_high
        assert RiskLevel.HIGH.is_high
        assert RiskLevel.CRITICAL.is_high


class TestAssessRisk:
    """Test full risk assessments."""

    def test_low_risk_auto_approves(self):
        """Verify small non-production changes are auto-approved."""
        assessment = assess_risk(20.0, {"env": "dev"})
        assert assessment.level == RiskLevel.LOW
        assert assessment.auto_approve is True
        assert assessment.recommendation == "Safe to deploy"
        assert assessment.factors == ()

    def test_medium_risk_auto_approves(self):
        """Verify medium changes outside production are auto-approved."""
        assessment = assess_risk(120.0, {})
        assert assessment.level == RiskLevel.MEDIUM
        assert assessment.auto_approve is True
        assert assessment.factors == ("Moderate cost increase",)

    def test_high_risk_needs_review(self):
        """Verify high changes are never auto-approved."""
        assessment = assess_risk(300.0, {})
        assert assessment.level == RiskLevel.HIGH
        assert assessment.auto_approve is False
        assert assessment.recommendation == RECOMMENDATIONS[RiskLevel.HIGH]

    def test_production_critical_jump(self):
        """Verify a $800 -> $3200 jump in production is critical and not auto-approved."""
        assessment = assess_risk(3200.0 - 800.0, {"env": "production"})
        assert assessment.level == RiskLevel.CRITICAL
        assert assessment.auto_approve is False
        assert assessment.recommendation == "DO NOT DEPLOY without executive approval"
        assert "Very high cost increase" in assessment.factors
        assert "Production environment" in assessment.factors

    def test_production_raises_low_to_medium(self):
        """Verify production escalates low risk by one step."""
        assessment = assess_risk(5.0, {"environment": "Prod"})
        assert assessment.level == RiskLevel.MEDIUM
        assert assessment.auto_approve is False

    def test_production_does_not_escalate_medium(self):
        """Verify production only escalates from low."""
        assessment = assess_risk(100.0, {"env": "prod"})
        assert assessment.level == RiskLevel.MEDIUM
        assert assessment.auto_approve is False

    def test_cost_decrease_reported(self):
        """Verify factors describe decreases."""
        assessment = assess_risk(-250.0, {})
        assert assessment.factors == ("Significant cost decrease",)

    def test_custom_production_labels(self):
        """Verify production-like labels are configurable."""
        labels = {"tier": frozenset({"live"})}
        assert is_production({"tier": "live"}, labels)
        assert not is_production({"env": "production"}, labels)


class TestRiskAssessor:
    """Test the assessor and its narrator."""

    def test_describe_without_narrator(self):
        """Verify description is recommendation plus factors."""
        assessor = RiskAssessor()
        assessment = assessor.assess(120.0, {})
        text = assessor.describe("api", "update", 120.0, assessment)
        assert text == "Review cost optimization opportunities (Moderate cost increase)"

    def test_narrative_appended(self):
        """Verify narrator text is appended to the description."""
        narrator = Mock()
        narrator.narrate.return_value = "Consider a smaller instance class."
        assessor = RiskAssessor(narrator=narrator)
        assessment = assessor.assess(10.0, {})

        text = assessor.describe("api", "create", 10.0, assessment)

        assert text == "Safe to deploy\nConsider a smaller instance class."
        narrator.narrate.assert_called_once_with(
            unit_name="api", change_kind="create", cost_delta=10.0, risk_level="low",
        )

    def test_narrator_never_changes_level(self):
        """Verify the narrator cannot alter level or auto-approve."""
        narrator = Mock()
        narrator.narrate.return_value = "This is critical, block it!"
        with_ai = RiskAssessor(narrator=narrator)
        without_ai = RiskAssessor()

        for delta in (10.0, 150.0, 400.0, 900.0):
            assert with_ai.assess(delta, {}) == without_ai.assess(delta, {})
