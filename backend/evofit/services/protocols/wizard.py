"""
Protocol Creation Wizard

Drives the ordered protocol-creation steps for one operator:

    client selection -> template selection -> health information ->
    medical conditions -> customization -> AI generation -> safety check ->
    review -> save options

All state lives on a serializable ``WizardSession``; the controller only
holds collaborators and the handle of an in-flight generation task.

Gating rules:
- trainers must pick a client before leaving step 1 (admins may pick none)
- a template is required before leaving step 2
- age, weight and height are required before leaving health information
- once the safety assessment requires healthcare approval, every forward move
  and ``save()`` are blocked until ``confirm_safety_check(True)``
- AI generation must have produced content, or the template fallback must
  have been chosen, before leaving the generation step

Backward navigation never touches entered values. A generation result that
arrives after the operator navigated, changed generation inputs or cancelled
is discarded.
"""

from typing import Any, Dict, List, NamedTuple, Optional
import asyncio
import copy
import logging

from evofit.core.config import settings
from evofit.core.errors import (
    GenerationError,
    PermissionDeniedError,
    SafetyGateError,
    ValidationError,
    WizardStateError,
)
from evofit.services.protocols.drafts import DraftStore
from evofit.services.protocols.generation import GenerationClient, GenerationRequest, template_fallback
from evofit.services.protocols.safety_validator import SafetyValidator, safety_validator
from evofit.services.protocols.schemas import (
    GeneratedContent,
    HealthInfo,
    Identity,
    Intensity,
    MedicalInfo,
    ProtocolReview,
    ProtocolTemplate,
    ProtocolType,
    SafetyAssessment,
    SaveResult,
    SessionStatus,
    WizardSession,
    WizardStep,
)
from evofit.services.protocols.storage import ProtocolStore
from evofit.services.protocols.templates_library import ProtocolTemplatesLibrary, templates_library
from evofit.services.protocols.versioning import ProtocolVersioner

logger = logging.getLogger(__name__)

HEALTH_REQUIRED_FIELDS = ("age", "weight", "height")
MIN_AGE = 1
MAX_AGE = 120


class ProtocolParameters(NamedTuple):
    template: Optional[ProtocolTemplate]
    protocol_type: Optional[ProtocolType]
    duration: Optional[int]
    intensity: Optional[Intensity]


class WizardController:
    """Step-gated protocol wizard for one operator session"""

    def __init__(
        self,
        identity: Identity,
        store: ProtocolStore,
        catalog: Optional[ProtocolTemplatesLibrary] = None,
        validator: Optional[SafetyValidator] = None,
        generator: Optional[GenerationClient] = None,
        versioner: Optional[ProtocolVersioner] = None,
        drafts: Optional[DraftStore] = None,
        session: Optional[WizardSession] = None,
        generation_timeout: Optional[float] = None,
    ):
        if identity.role not in settings.wizard_roles:
            raise PermissionDeniedError(f"Role '{identity.role}' cannot create protocols")
        if session is not None and session.operator.user_id != identity.user_id:
            raise PermissionDeniedError("Wizard session belongs to another operator")

        self.identity = identity
        self.store = store
        self.catalog = catalog or templates_library
        self.validator = validator or safety_validator
        self.generator = generator
        self.versioner = versioner or ProtocolVersioner(store)
        self.drafts = drafts
        self.generation_timeout = (
            generation_timeout if generation_timeout is not None else settings.generation_timeout_s
        )
        self.session = session or WizardSession(operator=identity)
        self._generation_task: Optional[asyncio.Future] = None
        self._persist()

    @classmethod
    def resume(cls, identity: Identity, store: ProtocolStore, drafts: DraftStore,
               **kwargs: Any) -> Optional["WizardController"]:
        """Rebuild a controller from the operator's stored draft, if any"""
        session = drafts.load(identity.user_id)
        if session is None or session.status != SessionStatus.active:
            return None
        logger.info(f"Resuming wizard session {session.id} at step {session.step.title}")
        return cls(identity, store, drafts=drafts, session=session, **kwargs)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def step(self) -> WizardStep:
        return self.session.step

    @property
    def requires_client(self) -> bool:
        """Only trainer-initiated flows must pick a client"""
        return self.identity.role == "trainer"

    @property
    def is_active(self) -> bool:
        return self.session.status == SessionStatus.active

    @property
    def fallback_available(self) -> bool:
        return self.session.template_id is not None

    @property
    def generation_in_flight(self) -> bool:
        return self._generation_task is not None and not self._generation_task.done()

    def steps(self) -> List[Dict[str, Any]]:
        return [
            {"index": int(s), "title": s.title, "current": s == self.session.step, "completed": s < self.session.step}
            for s in WizardStep
        ]

    # ------------------------------------------------------------------
    # Step inputs
    # ------------------------------------------------------------------

    def select_client(self, client_id: Optional[str]) -> None:
        self._ensure_active()
        if client_id is None:
            self.session.client_id = None
            self.session.client_name = None
            self.session.client_selection_made = True
            self._persist()
            return

        customer = self._accessible_customer(client_id)

        self.session.client_id = customer.id
        self.session.client_name = customer.name
        self.session.client_selection_made = True

        # Pre-fill only what the operator has not entered yet
        changed = False
        if self.session.health.age is None and customer.age:
            self.session.health = self.session.health.model_copy(update={"age": customer.age})
            changed = True
        if not self.session.medical.conditions and not self.session.medical.medications:
            conditions = list(customer.health_conditions or [])
            medications = list(customer.medications or [])
            if conditions or medications:
                self.session.medical = MedicalInfo(conditions=conditions, medications=medications)
                changed = True
        if changed:
            self._inputs_changed()
        logger.info(f"Wizard {self.session.id}: selected client {customer.id}")
        self._persist()

    def select_template(self, template_id: str) -> ProtocolTemplate:
        self._ensure_active()
        template = self.catalog.get_template(template_id)
        if template_id != self.session.template_id:
            self.session.template_id = template.id
            self.session.template_config = self.catalog.default_configuration(template.id)
            self._inputs_changed(discard_content=True)
        self.session.errors.pop("template_id", None)
        logger.info(f"Wizard {self.session.id}: selected template {template.id}")
        self._persist()
        return template

    def set_health_info(
        self,
        age: Optional[int] = None,
        weight: Optional[float] = None,
        height: Optional[float] = None,
        activity_level: Optional[str] = None,
        goals: Optional[List[str]] = None,
    ) -> HealthInfo:
        self._ensure_active()
        if age is not None and not (MIN_AGE <= age <= MAX_AGE):
            self._fail("age", f"Age must be between {MIN_AGE} and {MAX_AGE}")
        if weight is not None and weight <= 0:
            self._fail("weight", "Weight must be positive")
        if height is not None and height <= 0:
            self._fail("height", "Height must be positive")

        health = HealthInfo(
            age=age,
            weight=weight,
            height=height,
            activity_level=activity_level,
            goals=[g for g in (goals or []) if g],
        )
        if health != self.session.health:
            self.session.health = health
            self._inputs_changed()
        for field in HEALTH_REQUIRED_FIELDS:
            self.session.errors.pop(field, None)
        self._persist()
        return health

    def set_medical_conditions(
        self,
        conditions: Optional[List[str]] = None,
        medications: Optional[List[str]] = None,
    ) -> SafetyAssessment:
        """Record ailments and medications; an empty selection is valid"""
        self._ensure_active()
        medical = MedicalInfo(
            conditions=[c.strip() for c in (conditions or []) if c and c.strip()],
            medications=[m.strip() for m in (medications or []) if m and m.strip()],
        )
        if medical != self.session.medical:
            self.session.medical = medical
            self.session.epoch += 1
        assessment = self._reassess()
        if assessment.requires_healthcare_approval:
            logger.warning(
                f"Wizard {self.session.id}: healthcare approval required "
                f"({'; '.join(assessment.approval_reasons)})"
            )
        self._persist()
        return assessment

    def set_customization(self, preferences: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Free-form preferences; intensity and duration also override the template defaults"""
        self._ensure_active()
        preferences = dict(preferences or {})
        if preferences.get("intensity") is not None:
            try:
                Intensity.parse(preferences["intensity"])
            except ValueError:
                self._fail("intensity", f"Unknown intensity: {preferences['intensity']}")
        if preferences.get("duration") is not None:
            duration = preferences["duration"]
            if not isinstance(duration, int) or isinstance(duration, bool) or duration <= 0:
                self._fail("duration", "Duration must be a positive number of days")

        if preferences != self.session.customization:
            self.session.customization = preferences
            self._inputs_changed()
        self._persist()
        return preferences

    def confirm_safety_check(self, acknowledged: bool) -> SafetyAssessment:
        """Record the operator's acknowledgement of the healthcare-approval requirement"""
        self._ensure_active()
        assessment = self.session.safety or self._reassess()
        self.session.safety_acknowledged = bool(acknowledged)
        if assessment.requires_healthcare_approval:
            logger.info(
                f"Wizard {self.session.id}: healthcare approval "
                f"{'acknowledged' if acknowledged else 'not acknowledged'}"
            )
        self._persist()
        return assessment

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def request_generation(self) -> Optional[GeneratedContent]:
        """Generate personalized content.

        Returns None when the result was discarded because the session moved
        on while the call was in flight. Raises GenerationError on failure,
        after which ``use_template_fallback()`` remains available.
        """
        self._ensure_active()
        request = self._generation_request()
        if self.generator is None:
            self._generation_failed("No generation service configured")
            raise GenerationError("No generation service configured", transient=False)

        if self.generation_in_flight:
            # The superseded call sees a stale epoch and returns None
            self.session.epoch += 1
        self._cancel_generation()
        epoch = self.session.epoch
        task = asyncio.ensure_future(self.generator.generate(request))
        self._generation_task = task
        try:
            done, _ = await asyncio.wait({task}, timeout=self.generation_timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._generation_task is task:
                self._generation_task = None

        if self._is_stale(epoch):
            if not task.done():
                task.cancel()
            elif not task.cancelled():
                # Retrieve so the loop does not report it as unhandled
                task.exception()
            logger.info(f"Wizard {self.session.id}: discarding generation result for a session that moved on")
            return None

        if not done:
            task.cancel()
            self._generation_failed("Protocol generation timed out")
            raise GenerationError("Protocol generation timed out")

        if task.cancelled():
            self._generation_failed("Protocol generation was cancelled")
            raise GenerationError("Protocol generation was cancelled")

        error = task.exception()
        if error is not None:
            self._generation_failed(str(error))
            if isinstance(error, GenerationError):
                raise error
            raise GenerationError(f"Protocol generation failed: {error}") from error

        content = task.result()
        self.session.generated = content
        self.session.generation_failed = False
        self.session.fallback_offered = False
        self.session.errors.pop("generated_content", None)
        logger.info(f"Wizard {self.session.id}: generated content via {content.source}")
        self._persist()
        return content

    def use_template_fallback(self) -> GeneratedContent:
        """Populate protocol content from the template defaults instead of AI output"""
        self._ensure_active()
        params = self._parameters()
        if params.template is None:
            self._fail("template_id", "Select a template before using the template fallback")
        content = template_fallback(
            params.template,
            params.duration,
            params.intensity.value,
            base_config=self._template_base_config(),
        )
        self.session.generated = content
        self.session.errors.pop("generated_content", None)
        logger.warning(f"Wizard {self.session.id}: using template fallback for {params.template.id}")
        self._persist()
        return content

    def cancel_generation(self) -> bool:
        """Cancel an in-flight generation; its result will be discarded"""
        if not self.generation_in_flight:
            return False
        self.session.epoch += 1
        self._cancel_generation()
        self._persist()
        return True

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def next(self) -> WizardStep:
        self._ensure_active()
        current = self.session.step
        if current == WizardStep.save_options:
            raise WizardStateError("Already at the last step; call save()")

        self._validate_step(current)
        if current >= WizardStep.medical_conditions:
            self._check_safety_gate()

        self.session.step = WizardStep(current + 1)
        self.session.epoch += 1
        self.session.errors = {}
        logger.info(f"Wizard {self.session.id}: {current.title} -> {self.session.step.title}")
        self._persist()
        return self.session.step

    def back(self) -> WizardStep:
        """Previous step; entered values are kept"""
        self._ensure_active()
        current = self.session.step
        if current == WizardStep.client_selection:
            return current
        self._cancel_generation()
        self.session.step = WizardStep(current - 1)
        self.session.epoch += 1
        self.session.errors = {}
        logger.info(f"Wizard {self.session.id}: back to {self.session.step.title}")
        self._persist()
        return self.session.step

    def cancel(self) -> None:
        """Discard the session without persisting anything"""
        self._ensure_active()
        self._cancel_generation()
        self.session.status = SessionStatus.cancelled
        self.session.epoch += 1
        if self.drafts:
            self.drafts.discard(self.identity.user_id)
        logger.info(f"Wizard {self.session.id}: cancelled at {self.session.step.title}")

    # ------------------------------------------------------------------
    # Review & save
    # ------------------------------------------------------------------

    def review(self) -> ProtocolReview:
        """Snapshot of the assembled protocol; never mutates the session"""
        session = self.session
        params = self._parameters()
        template = params.template
        name = template.name if template else "Custom Protocol"
        if session.client_name:
            name = f"{name} - {session.client_name}"
        tags = list(template.tags) if template else []
        for tag in session.customization.get("tags") or []:
            if tag not in tags:
                tags.append(tag)

        return ProtocolReview(
            name_suggestion=name,
            template_id=session.template_id,
            template_name=template.name if template else None,
            protocol_type=params.protocol_type,
            duration=params.duration,
            intensity=params.intensity,
            client_id=session.client_id,
            client_name=session.client_name,
            health=session.health.model_copy(deep=True),
            medical=session.medical.model_copy(deep=True),
            customization=copy.deepcopy(session.customization),
            tags=tags,
            safety=session.safety.model_copy(deep=True) if session.safety else None,
            safety_acknowledged=session.safety_acknowledged,
            generated=session.generated.model_copy(deep=True) if session.generated else None,
            config=self._build_config(params, session.generated),
        )

    async def save(self, name: str, assign_to_customer_id: Optional[str] = None) -> SaveResult:
        """Create or update the protocol, record a version and optionally assign it.

        The session stays active and unchanged when any check or write fails.
        """
        self._ensure_active()
        if not name or not name.strip():
            self._fail("name", "Protocol name is required")
        self._check_safety_gate()
        self._validate_complete()

        params = self._parameters()
        content = self.session.generated or template_fallback(
            params.template,
            params.duration,
            params.intensity.value,
            base_config=self._template_base_config(),
        )
        data = {
            "name": name.strip(),
            "description": content.summary or params.template.description,
            "type": params.protocol_type.value,
            "duration": params.duration,
            "intensity": params.intensity.value,
            "tags": self.review().tags,
        }
        # Name and description are versioned with the rest of the protocol
        config = {
            **self._build_config(params, content),
            "name": data["name"],
            "description": data["description"],
        }
        trainer_id = self.identity.user_id
        created = self.session.protocol_id is None

        with self.store.unit_of_work():
            if created:
                protocol = self.store.create_protocol(trainer_id, {**data, "config": config})
                changelog = f"Created from template {params.template.id}"
            else:
                protocol = self.store.update_protocol(self.session.protocol_id, data)
                changelog = "Updated via protocol wizard"
            self.versioner.record(protocol, config, changelog=changelog, created_by=trainer_id)
            assignment = None
            if assign_to_customer_id:
                self._accessible_customer(assign_to_customer_id)
                assignment = self.store.create_assignment(protocol.id, assign_to_customer_id, trainer_id)

        self._cancel_generation()
        self.session.protocol_id = protocol.id
        self.session.saved_version = protocol.version
        self.session.status = SessionStatus.saved
        if self.drafts:
            self.drafts.discard(self.identity.user_id)
        logger.info(f"Wizard {self.session.id}: saved protocol {protocol.id} version {protocol.version}")
        return SaveResult(
            protocol_id=protocol.id,
            version=protocol.version,
            assignment_id=assignment.id if assignment is not None else None,
            created=created,
        )

    def load_protocol(self, protocol_id: str) -> None:
        """Seed the session from a saved protocol so that save() produces a new version"""
        self._ensure_active()
        protocol = self.store.get_protocol(protocol_id)
        if self.identity.role != "admin" and protocol.trainer_id != self.identity.user_id:
            raise PermissionDeniedError(f"Protocol {protocol_id} belongs to another trainer")

        config = dict(protocol.config or {})
        template_id = config.get("template_id")
        if template_id not in {t.id for t in self.catalog.templates}:
            template_id = "custom"
        self.session.protocol_id = protocol.id
        self.session.template_id = template_id
        self.session.template_config = dict(config.get("template_config") or self.catalog.default_configuration(template_id))
        self.session.client_id = config.get("client_id")
        self.session.client_name = config.get("client_name")
        self.session.client_selection_made = True
        self.session.health = HealthInfo(**(config.get("health") or {}))
        self.session.medical = MedicalInfo(
            conditions=list(config.get("conditions") or []),
            medications=list(config.get("medications") or []),
        )
        self.session.customization = dict(config.get("customization") or {})
        content = config.get("content")
        self.session.generated = GeneratedContent(**content) if content else None
        self.session.epoch += 1
        assessment = self._reassess()
        # A stored acknowledgement only carries over for the same risk picture
        stored = config.get("safety") or {}
        self.session.safety_acknowledged = (
            bool(stored.get("acknowledged"))
            and list(stored.get("approval_reasons") or []) == assessment.approval_reasons
        )
        logger.info(f"Wizard {self.session.id}: editing protocol {protocol.id} at version {protocol.version}")
        self._persist()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _accessible_customer(self, customer_id: str):
        customer = self.store.get_customer(customer_id)
        if (
            self.identity.role == "trainer"
            and customer.trainer_id
            and customer.trainer_id != self.identity.user_id
        ):
            raise PermissionDeniedError(f"Customer {customer_id} is not linked to this trainer")
        return customer

    def _ensure_active(self) -> None:
        if self.session.status != SessionStatus.active:
            raise WizardStateError(f"Wizard session is {self.session.status.value}")

    def _persist(self) -> None:
        if self.drafts and self.session.status == SessionStatus.active:
            self.drafts.save(self.session)

    def _fail(self, field: str, message: str) -> None:
        self.session.errors[field] = message
        self._persist()
        raise ValidationError(field, message)

    def _inputs_changed(self, discard_content: bool = False) -> None:
        """Generation inputs changed: invalidate in-flight results and re-run safety screening"""
        self.session.epoch += 1
        if discard_content:
            self.session.generated = None
        self._reassess()

    def _parameters(self) -> ProtocolParameters:
        template = self.catalog.get_template(self.session.template_id) if self.session.template_id else None
        custom = self.session.customization
        duration = custom.get("duration") or (template.default_duration if template else None)
        intensity = None
        if custom.get("intensity") is not None:
            intensity = Intensity.parse(custom["intensity"])
        elif template is not None:
            intensity = template.default_intensity
        return ProtocolParameters(
            template=template,
            protocol_type=template.protocol_type if template else None,
            duration=duration,
            intensity=intensity,
        )

    def _template_base_config(self) -> Dict[str, Any]:
        skeleton = dict(self.session.template_config)
        for key in ("template_id", "type", "duration", "intensity", "target_audience", "tags"):
            skeleton.pop(key, None)
        return skeleton

    def _reassess(self) -> SafetyAssessment:
        params = self._parameters()
        assessment = self.validator.assess(
            age=self.session.health.age,
            conditions=self.session.medical.conditions,
            medications=self.session.medical.medications,
            protocol_type=params.protocol_type,
            intensity=params.intensity,
            duration=params.duration,
        )
        previous = self.session.safety
        if previous is not None and previous.approval_reasons != assessment.approval_reasons:
            # A different risk picture needs a fresh acknowledgement
            self.session.safety_acknowledged = False
        self.session.safety = assessment
        return assessment

    def _check_safety_gate(self) -> None:
        assessment = self.session.safety or self._reassess()
        if assessment.requires_healthcare_approval and not self.session.safety_acknowledged:
            logger.warning(f"Wizard {self.session.id}: blocked by safety gate at {self.session.step.title}")
            self.session.errors["safety_acknowledged"] = "Healthcare provider approval must be acknowledged"
            self._persist()
            raise SafetyGateError(reasons=assessment.approval_reasons)

    def _validate_step(self, step: WizardStep) -> None:
        session = self.session
        if step == WizardStep.client_selection:
            if self.requires_client and not session.client_id:
                self._fail("client_id", "Select a client before continuing")
        elif step == WizardStep.template_selection:
            if not session.template_id:
                self._fail("template_id", "Select a protocol template before continuing")
        elif step == WizardStep.health_information:
            for field in HEALTH_REQUIRED_FIELDS:
                if getattr(session.health, field) is None:
                    self._fail(field, f"'{field}' is required")
        elif step == WizardStep.medical_conditions:
            if session.safety is None:
                self._reassess()
        elif step == WizardStep.ai_generation:
            if session.generated is None:
                self._fail(
                    "generated_content",
                    "Generate the protocol or use the template fallback before continuing",
                )

    def _validate_complete(self) -> None:
        """Everything save() needs, regardless of the current step"""
        for step in (WizardStep.client_selection, WizardStep.template_selection, WizardStep.health_information):
            self._validate_step(step)

    def _generation_request(self) -> GenerationRequest:
        params = self._parameters()
        if params.template is None:
            self._fail("template_id", "Select a protocol template before generating")
        return GenerationRequest(
            template=params.template,
            protocol_type=params.protocol_type.value,
            intensity=params.intensity.value,
            duration=params.duration,
            health=self.session.health.model_copy(deep=True),
            medical=self.session.medical.model_copy(deep=True),
            customization=copy.deepcopy(self.session.customization),
        )

    def _generation_failed(self, reason: str) -> None:
        logger.error(f"Wizard {self.session.id}: generation failed ({reason}); template fallback offered")
        self.session.generation_failed = True
        self.session.fallback_offered = self.fallback_available
        self._persist()

    def _is_stale(self, epoch: int) -> bool:
        return self.session.status != SessionStatus.active or self.session.epoch != epoch

    def _cancel_generation(self) -> None:
        task = self._generation_task
        self._generation_task = None
        if task is not None and not task.done():
            task.cancel()

    def _build_config(self, params: ProtocolParameters, content: Optional[GeneratedContent]) -> Dict[str, Any]:
        session = self.session
        safety = session.safety
        config: Dict[str, Any] = {
            **copy.deepcopy(self._template_base_config()),
            "template_id": session.template_id,
            "template_config": copy.deepcopy(session.template_config),
            "type": params.protocol_type.value if params.protocol_type else None,
            "duration": params.duration,
            "intensity": params.intensity.value if params.intensity else None,
            "client_id": session.client_id,
            "client_name": session.client_name,
            "health": session.health.model_dump(mode="json"),
            "goals": list(session.health.goals),
            "conditions": list(session.medical.conditions),
            "medications": list(session.medical.medications),
            "customization": copy.deepcopy(session.customization),
            "content": content.model_dump(mode="json") if content else None,
            "safety": {
                "safety_rating": safety.safety_rating if safety else None,
                "requires_healthcare_approval": safety.requires_healthcare_approval if safety else False,
                "approval_reasons": list(safety.approval_reasons) if safety else [],
                "acknowledged": session.safety_acknowledged,
            },
        }
        return config
