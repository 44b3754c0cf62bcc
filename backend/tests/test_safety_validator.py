"""Tests for rule-based medical safety screening."""

import pytest

from evofit.services.protocols.safety_validator import SafetyPolicy, SafetyValidator


@pytest.fixture
def validator():
    return SafetyValidator()


class TestApprovalRule:
    def test_no_conditions_no_medications_needs_no_approval(self, validator):
        for intensity in ("gentle", "moderate", "intensive"):
            assessment = validator.assess(age=40, protocol_type="longevity", intensity=intensity, duration=180)
            assert assessment.requires_healthcare_approval is False
            assert assessment.safety_rating == "safe"

    def test_senior_with_high_risk_condition_and_intensive_protocol(self, validator):
        assessment = validator.assess(
            age=70,
            conditions=["Type 2 diabetes"],
            protocol_type="parasite-cleanse",
            intensity="intensive",
            duration=60,
        )
        assert assessment.requires_healthcare_approval is True
        assert assessment.approval_reasons == [
            "age 70 with a high-intensity or long-duration protocol",
            "Type 2 diabetes with a high-intensity or long-duration protocol",
        ]
        assert "Obtain healthcare provider approval before starting this protocol" in assessment.recommendations

    def test_long_duration_counts_as_demanding(self, validator):
        assessment = validator.assess(
            age=50, conditions=["chronic kidney disease"], protocol_type="longevity",
            intensity="moderate", duration=120,
        )
        assert assessment.requires_healthcare_approval is True

    def test_gentle_short_protocol_needs_no_approval(self, validator):
        assessment = validator.assess(
            age=72, conditions=["diabetes"], protocol_type="ailments", intensity="gentle", duration=30,
        )
        assert assessment.requires_healthcare_approval is False
        assert {w.kind for w in assessment.warnings} == {"condition", "age"}

    def test_ui_intensity_vocabulary(self, validator):
        assessment = validator.assess(age=68, protocol_type="longevity", intensity="high", duration=30)
        assert assessment.requires_healthcare_approval is True

    def test_custom_policy_threshold(self):
        validator = SafetyValidator(policy=SafetyPolicy(approval_age=60))
        assessment = validator.assess(age=62, protocol_type="longevity", intensity="intensive", duration=30)
        assert assessment.requires_healthcare_approval is True


class TestWarnings:
    def test_medication_warning_filtered_by_protocol_type(self, validator):
        cleanse = validator.assess(medications=["Warfarin 5mg"], protocol_type="parasite-cleanse",
                                   intensity="moderate", duration=30)
        longevity = validator.assess(medications=["Warfarin 5mg"], protocol_type="longevity",
                                     intensity="moderate", duration=30)
        assert [w.severity for w in cleanse.warnings] == ["high"]
        assert cleanse.safety_rating == "contraindicated"
        assert [w.severity for w in longevity.warnings] == ["medium"]
        assert longevity.safety_rating == "caution"

    def test_medication_without_type_filter_applies_everywhere(self, validator):
        assessment = validator.assess(medications=["lisinopril"], protocol_type="custom",
                                      intensity="gentle", duration=14)
        assert len(assessment.warnings) == 1
        assert assessment.warnings[0].kind == "medication"
        assert "lisinopril: Monitor kidney function and potassium levels" in assessment.recommendations

    def test_unknown_medication_is_ignored(self, validator):
        assessment = validator.assess(medications=["vitamin d"], protocol_type="longevity",
                                      intensity="moderate", duration=90)
        assert assessment.warnings == []

    def test_high_severity_condition_gives_warning_rating(self, validator):
        assessment = validator.assess(conditions=["Pregnancy"], protocol_type="ailments",
                                      intensity="gentle", duration=21)
        assert assessment.safety_rating == "warning"

    def test_minor_gets_age_warning(self, validator):
        assessment = validator.assess(age=16, protocol_type="ailments", intensity="gentle", duration=21)
        assert assessment.warnings[0].kind == "age"
        assert assessment.warnings[0].severity == "medium"

    def test_deterministic(self, validator):
        kwargs = dict(age=70, conditions=["diabetes", "heart disease"], medications=["insulin", "metformin"],
                      protocol_type="longevity", intensity="intensive", duration=120)
        assert validator.assess(**kwargs) == validator.assess(**kwargs)
