"""
Protocol wizard value objects.

Everything the wizard holds between steps lives on ``WizardSession`` so a
session can be dumped to JSON, parked in the draft store and rebuilt later.
"""

from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple
import uuid

from pydantic import BaseModel, ConfigDict, Field


class ProtocolType(str, Enum):
    longevity = "longevity"
    parasite_cleanse = "parasite-cleanse"
    ailments = "ailments"
    custom = "custom"


class Intensity(str, Enum):
    gentle = "gentle"
    moderate = "moderate"
    intensive = "intensive"

    @classmethod
    def parse(cls, value: Any) -> "Intensity":
        """Accept both protocol (gentle/intensive) and UI (low/high) vocabularies"""
        if isinstance(value, Intensity):
            return value
        aliases = {
            "low": cls.gentle,
            "gentle": cls.gentle,
            "medium": cls.moderate,
            "moderate": cls.moderate,
            "high": cls.intensive,
            "intensive": cls.intensive,
        }
        key = str(value or "").strip().lower()
        if key not in aliases:
            raise ValueError(f"Unknown intensity: {value}")
        return aliases[key]


class AssignmentStatus(str, Enum):
    active = "active"
    paused = "paused"
    completed = "completed"
    cancelled = "cancelled"


class SessionStatus(str, Enum):
    active = "active"
    saved = "saved"
    cancelled = "cancelled"


class WizardStep(IntEnum):
    client_selection = 0
    template_selection = 1
    health_information = 2
    medical_conditions = 3
    customization = 4
    ai_generation = 5
    safety_check = 6
    review = 7
    save_options = 8

    @property
    def title(self) -> str:
        return STEP_TITLES[self]


STEP_TITLES = {
    WizardStep.client_selection: "Client Selection",
    WizardStep.template_selection: "Template Selection",
    WizardStep.health_information: "Health Information",
    WizardStep.medical_conditions: "Medical Conditions",
    WizardStep.customization: "Customization",
    WizardStep.ai_generation: "AI Generation",
    WizardStep.safety_check: "Safety Check",
    WizardStep.review: "Review & Finalize",
    WizardStep.save_options: "Save Options",
}


class Identity(BaseModel):
    """Current user as supplied by the auth collaborator"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: str = "trainer"


class ProtocolTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    protocol_type: ProtocolType
    category: str
    default_duration: int
    default_intensity: Intensity
    target_audience: Tuple[str, ...] = ()
    health_focus: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    base_config: Dict[str, Any] = Field(default_factory=dict)


class HealthInfo(BaseModel):
    age: Optional[int] = None
    weight: Optional[float] = None  # kg
    height: Optional[float] = None  # cm
    activity_level: Optional[str] = None
    goals: List[str] = Field(default_factory=list)


class MedicalInfo(BaseModel):
    conditions: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)


class SafetyWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str  # medication, condition, age
    item: str
    severity: str  # low, medium, high
    description: str
    recommendation: str


class SafetyAssessment(BaseModel):
    warnings: List[SafetyWarning] = Field(default_factory=list)
    requires_healthcare_approval: bool = False
    approval_reasons: List[str] = Field(default_factory=list)
    safety_rating: str = "safe"  # safe, caution, warning, contraindicated
    recommendations: List[str] = Field(default_factory=list)


class GeneratedContent(BaseModel):
    source: str  # ai, template
    title: str
    summary: str = ""
    content: Dict[str, Any] = Field(default_factory=dict)
    model: Optional[str] = None


class WizardSession(BaseModel):
    """Serializable state of one wizard run"""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    operator: Identity
    status: SessionStatus = SessionStatus.active
    step: WizardStep = WizardStep.client_selection

    # Per-step values
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_selection_made: bool = False
    template_id: Optional[str] = None
    template_config: Dict[str, Any] = Field(default_factory=dict)
    health: HealthInfo = Field(default_factory=HealthInfo)
    medical: MedicalInfo = Field(default_factory=MedicalInfo)
    customization: Dict[str, Any] = Field(default_factory=dict)

    # Derived state
    safety: Optional[SafetyAssessment] = None
    safety_acknowledged: bool = False
    generated: Optional[GeneratedContent] = None
    generation_failed: bool = False
    fallback_offered: bool = False
    errors: Dict[str, str] = Field(default_factory=dict)

    # Bumped on navigation and on generation-input changes; in-flight
    # generation compares against it
    epoch: int = 0

    # Set when editing an existing protocol
    protocol_id: Optional[str] = None
    saved_version: Optional[str] = None


class ProtocolReview(BaseModel):
    """Read-only snapshot of the assembled protocol"""
    model_config = ConfigDict(frozen=True)

    name_suggestion: str
    template_id: Optional[str]
    template_name: Optional[str]
    protocol_type: Optional[ProtocolType]
    duration: Optional[int]
    intensity: Optional[Intensity]
    client_id: Optional[str]
    client_name: Optional[str]
    health: HealthInfo
    medical: MedicalInfo
    customization: Dict[str, Any]
    tags: List[str]
    safety: Optional[SafetyAssessment]
    safety_acknowledged: bool
    generated: Optional[GeneratedContent]
    config: Dict[str, Any]


class SaveResult(BaseModel):
    protocol_id: str
    version: str
    assignment_id: Optional[str] = None
    created: bool = True
