"""
Medical Safety Validation

Rule-based screening of a client's age, health conditions and medications
against the selected protocol. Produces warnings and decides whether the
protocol needs healthcare-provider approval before it can be saved.

All thresholds live in ``SafetyPolicy`` and the two lookup tables below; the
evaluation itself is a pure function of its inputs.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from pydantic import BaseModel, ConfigDict

from evofit.services.protocols.schemas import Intensity, ProtocolType, SafetyAssessment, SafetyWarning

logger = logging.getLogger(__name__)


# Medication key -> interactions with protocol types (None = every type).
# Keys are matched as case-insensitive substrings of the medication text.
DRUG_INTERACTIONS: Dict[str, Dict[str, Any]] = {
    "warfarin": {
        "interactions": [
            {
                "protocol_types": ["parasite-cleanse"],
                "substance": "garlic, wormwood and black walnut",
                "severity": "high",
                "description": "Anti-parasitic herbs may increase the anticoagulant effect of warfarin",
                "recommendation": "Avoid concentrated herbal antimicrobials; monitor INR closely",
            },
            {
                "protocol_types": ["longevity"],
                "substance": "turmeric and omega-3",
                "severity": "medium",
                "description": "Turmeric and high-dose fish oil may enhance the anticoagulant effect",
                "recommendation": "Avoid high-dose turmeric supplements; report unusual bleeding",
            },
        ],
        "warnings": ["Monitor INR regularly", "Report unusual bleeding"],
    },
    "insulin": {
        "interactions": [
            {
                "protocol_types": ["longevity", "parasite-cleanse"],
                "substance": "fasting windows",
                "severity": "high",
                "description": "Fasting and caloric restriction can cause hypoglycemia with insulin",
                "recommendation": "Adjust dosing with the prescribing physician before any fasting",
            },
        ],
        "warnings": ["Monitor blood glucose regularly"],
    },
    "metformin": {
        "interactions": [
            {
                "protocol_types": ["longevity"],
                "substance": "berberine and caloric restriction",
                "severity": "medium",
                "description": "Berberine and caloric restriction may enhance glucose-lowering effects",
                "recommendation": "Monitor blood glucose closely",
            },
            {
                "protocol_types": ["parasite-cleanse"],
                "substance": "herbal antimicrobials",
                "severity": "medium",
                "description": "Cleanse herbs can worsen gastrointestinal side effects of metformin",
                "recommendation": "Start the elimination phase at half dose",
            },
        ],
        "warnings": ["Monitor kidney function"],
    },
    "lisinopril": {
        "interactions": [
            {
                "protocol_types": None,
                "substance": "potassium",
                "severity": "medium",
                "description": "ACE inhibitors can increase potassium levels",
                "recommendation": "Avoid high-potassium supplements",
            },
        ],
        "warnings": ["Monitor kidney function and potassium levels"],
    },
    "levothyroxine": {
        "interactions": [
            {
                "protocol_types": None,
                "substance": "calcium and soy",
                "severity": "medium",
                "description": "Calcium and soy can reduce thyroid hormone absorption",
                "recommendation": "Take thyroid medication 4 hours apart from calcium or soy",
            },
        ],
        "warnings": ["Take on an empty stomach"],
    },
    "synthroid": {
        "interactions": [
            {
                "protocol_types": None,
                "substance": "calcium and soy",
                "severity": "medium",
                "description": "Calcium and soy can reduce thyroid hormone absorption",
                "recommendation": "Take thyroid medication 4 hours apart from calcium or soy",
            },
        ],
        "warnings": ["Take on an empty stomach"],
    },
}


# Condition key -> screening note. Matched as case-insensitive substrings.
CONDITION_CHECKS: Dict[str, Dict[str, str]] = {
    "pregnancy": {
        "severity": "high",
        "description": "Many protocol components are not safe during pregnancy",
        "recommendation": "Avoid detox and cleanse protocols during pregnancy",
    },
    "breastfeeding": {
        "severity": "high",
        "description": "Cleanse protocols can affect breast milk",
        "recommendation": "Avoid intensive protocols while breastfeeding",
    },
    "kidney disease": {
        "severity": "high",
        "description": "Kidney disease requires careful monitoring of protein and electrolyte intake",
        "recommendation": "Monitor kidney function closely",
    },
    "liver disease": {
        "severity": "high",
        "description": "Liver disease affects detoxification and supplement metabolism",
        "recommendation": "Avoid detox protocols",
    },
    "diabetes": {
        "severity": "medium",
        "description": "Dietary changes can affect blood sugar control",
        "recommendation": "Monitor blood glucose closely and adjust medications with a provider",
    },
    "heart disease": {
        "severity": "medium",
        "description": "Heart conditions may be affected by dietary and supplement changes",
        "recommendation": "Monitor cardiovascular symptoms",
    },
    "high blood pressure": {
        "severity": "medium",
        "description": "Some protocol components may affect blood pressure",
        "recommendation": "Monitor blood pressure regularly",
    },
}


SEVERITY_RANK = {"low": 0, "medium": 1, "high": 2}

GENERAL_RECOMMENDATIONS = (
    "Consult with your healthcare provider before starting this protocol",
    "Monitor for any unusual symptoms or side effects",
)


class SafetyPolicy(BaseModel):
    """Approval thresholds; change here, not in the evaluation code"""
    model_config = ConfigDict(frozen=True)

    approval_age: int = 65
    minor_age: int = 18
    high_risk_conditions: Tuple[str, ...] = (
        "diabetes",
        "heart disease",
        "kidney disease",
        "liver disease",
        "pregnancy",
        "breastfeeding",
    )
    high_intensity_levels: Tuple[Intensity, ...] = (Intensity.intensive,)
    long_duration_days: int = 120


def _matches(text: str, key: str) -> bool:
    return key in (text or "").strip().lower()


class SafetyValidator:
    """Deterministic rule evaluation: identical input gives identical output"""

    def __init__(
        self,
        policy: Optional[SafetyPolicy] = None,
        drug_interactions: Optional[Dict[str, Dict[str, Any]]] = None,
        condition_checks: Optional[Dict[str, Dict[str, str]]] = None,
    ):
        self.policy = policy or SafetyPolicy()
        self.drug_interactions = drug_interactions if drug_interactions is not None else DRUG_INTERACTIONS
        self.condition_checks = condition_checks if condition_checks is not None else CONDITION_CHECKS

    def is_demanding(self, intensity: Optional[Any], duration: Optional[int]) -> bool:
        """High-intensity or long-duration protocol selection"""
        if intensity is not None and Intensity.parse(intensity) in self.policy.high_intensity_levels:
            return True
        return duration is not None and duration >= self.policy.long_duration_days

    def high_risk_conditions(self, conditions: Iterable[str]) -> List[str]:
        return [
            condition for condition in conditions
            if any(_matches(condition, key) for key in self.policy.high_risk_conditions)
        ]

    def assess(
        self,
        age: Optional[int] = None,
        conditions: Optional[Iterable[str]] = None,
        medications: Optional[Iterable[str]] = None,
        protocol_type: Optional[Any] = None,
        intensity: Optional[Any] = None,
        duration: Optional[int] = None,
    ) -> SafetyAssessment:
        conditions = [c for c in (conditions or []) if c and c.strip()]
        medications = [m for m in (medications or []) if m and m.strip()]
        ptype = ProtocolType(protocol_type).value if protocol_type else None

        warnings: List[SafetyWarning] = []
        recommendations: List[str] = []

        for medication in medications:
            for key in sorted(self.drug_interactions):
                if not _matches(medication, key):
                    continue
                entry = self.drug_interactions[key]
                for interaction in entry.get("interactions", []):
                    types = interaction.get("protocol_types")
                    if types is not None and ptype not in types:
                        continue
                    warnings.append(SafetyWarning(
                        kind="medication",
                        item=medication,
                        severity=interaction["severity"],
                        description=f"{interaction['description']} ({interaction['substance']})",
                        recommendation=interaction["recommendation"],
                    ))
                recommendations.extend(f"{medication}: {w}" for w in entry.get("warnings", []))

        for condition in conditions:
            for key in sorted(self.condition_checks):
                if _matches(condition, key):
                    check = self.condition_checks[key]
                    warnings.append(SafetyWarning(
                        kind="condition",
                        item=condition,
                        severity=check["severity"],
                        description=check["description"],
                        recommendation=check["recommendation"],
                    ))
                    break

        demanding = self.is_demanding(intensity, duration)
        if age is not None and age >= self.policy.approval_age:
            warnings.append(SafetyWarning(
                kind="age",
                item=str(age),
                severity="high" if demanding else "medium",
                description=f"Clients aged {self.policy.approval_age}+ need closer supervision",
                recommendation="Prefer gentle intensity and shorter phases",
            ))
        elif age is not None and age < self.policy.minor_age:
            warnings.append(SafetyWarning(
                kind="age",
                item=str(age),
                severity="medium",
                description="Client is a minor",
                recommendation="Obtain guardian consent; avoid fasting and cleanse components",
            ))

        approval_reasons: List[str] = []
        if demanding:
            if age is not None and age >= self.policy.approval_age:
                approval_reasons.append(f"age {age} with a high-intensity or long-duration protocol")
            for condition in self.high_risk_conditions(conditions):
                approval_reasons.append(f"{condition} with a high-intensity or long-duration protocol")
        requires_approval = bool(approval_reasons)

        if requires_approval:
            recommendations.append("Obtain healthcare provider approval before starting this protocol")
        recommendations.extend(GENERAL_RECOMMENDATIONS)

        assessment = SafetyAssessment(
            warnings=warnings,
            requires_healthcare_approval=requires_approval,
            approval_reasons=approval_reasons,
            safety_rating=self._rating(warnings),
            recommendations=list(dict.fromkeys(recommendations)),
        )
        logger.debug(
            f"Safety assessment: rating={assessment.safety_rating} "
            f"approval={requires_approval} warnings={len(warnings)}"
        )
        return assessment

    def _rating(self, warnings: List[SafetyWarning]) -> str:
        if not warnings:
            return "safe"
        if any(w.kind == "medication" and w.severity == "high" for w in warnings):
            return "contraindicated"
        worst = max(SEVERITY_RANK[w.severity] for w in warnings)
        if worst >= SEVERITY_RANK["high"]:
            return "warning"
        return "caution"


# Shared default validator
safety_validator = SafetyValidator()
