"""
Protocol content generation.

``GenerationClient`` is the boundary the wizard talks to. The OpenAI-backed
implementation asks for a JSON object and maps every transport, timeout and
parsing failure to ``GenerationError`` so the wizard can offer the template
fallback instead.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import json
import logging

import httpx
from pydantic import BaseModel, Field

from evofit.core.config import settings
from evofit.core.errors import GenerationError
from evofit.core.llm import LLMClient
from evofit.services.protocols.schemas import (
    GeneratedContent,
    HealthInfo,
    MedicalInfo,
    ProtocolTemplate,
)

logger = logging.getLogger(__name__)


class GenerationRequest(BaseModel):
    template: ProtocolTemplate
    protocol_type: str
    intensity: str
    duration: int
    health: HealthInfo = Field(default_factory=HealthInfo)
    medical: MedicalInfo = Field(default_factory=MedicalInfo)
    customization: Dict[str, Any] = Field(default_factory=dict)


class GenerationClient(ABC):
    """External AI generation collaborator"""

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GeneratedContent:
        """Return generated protocol content or raise GenerationError"""


SYSTEM_PROMPT = (
    "You are a certified nutrition and wellness coach writing health protocols for personal trainers. "
    "Never diagnose or prescribe medication. Respond with only a JSON object with the keys "
    "\"title\" (string), \"summary\" (string), \"phases\" (list of objects with name, duration_days, "
    "focus, daily_actions, supplements) and \"precautions\" (list of strings)."
)


def build_prompt(request: GenerationRequest) -> str:
    """Personalized user prompt from template, health information and customization"""
    template = request.template
    health = request.health
    lines = [
        f"Base template: {template.name} ({template.protocol_type.value}).",
        f"Template description: {template.description}",
        f"Duration: {request.duration} days. Intensity: {request.intensity}.",
    ]
    if template.base_config:
        lines.append(f"Template configuration: {json.dumps(template.base_config, sort_keys=True)}")

    profile = []
    if health.age is not None:
        profile.append(f"age {health.age}")
    if health.weight is not None:
        profile.append(f"weight {health.weight} kg")
    if health.height is not None:
        profile.append(f"height {health.height} cm")
    if health.activity_level:
        profile.append(f"activity level {health.activity_level}")
    if profile:
        lines.append("Client profile: " + ", ".join(profile) + ".")
    if health.goals:
        lines.append("Goals: " + ", ".join(health.goals) + ".")
    if request.medical.conditions:
        lines.append("Health conditions: " + ", ".join(request.medical.conditions) + ".")
    if request.medical.medications:
        lines.append(
            "Current medications: " + ", ".join(request.medical.medications)
            + ". Avoid components with known interactions."
        )
    if request.customization:
        lines.append(f"Trainer preferences: {json.dumps(request.customization, sort_keys=True, default=str)}")
    return "\n".join(lines)


def parse_content(text: str) -> Dict[str, Any]:
    """Extract the JSON object from a model reply, tolerating code fences"""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end < start:
        raise GenerationError("Generated content is not a JSON object", transient=True)
    try:
        parsed = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        raise GenerationError(f"Generated content is not valid JSON: {e}", transient=True) from e
    if not isinstance(parsed, dict):
        raise GenerationError("Generated content is not a JSON object", transient=True)
    return parsed


class OpenAIProtocolGenerator(GenerationClient):
    """Generates personalized protocol content through an OpenAI-compatible endpoint"""

    def __init__(self, llm: Optional[LLMClient] = None, temperature: Optional[float] = None,
                 max_tokens: Optional[int] = None):
        self.llm = llm or LLMClient()
        self.temperature = settings.generation_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.generation_max_tokens

    async def generate(self, request: GenerationRequest) -> GeneratedContent:
        messages: List[Dict[str, str]] = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(request)},
        ]
        try:
            result = await self.llm.chat_completion(
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )
        except httpx.TimeoutException as e:
            raise GenerationError(f"Protocol generation timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise GenerationError(
                f"Protocol generation failed with HTTP {status}",
                transient=status == 429 or status >= 500,
            ) from e
        except httpx.HTTPError as e:
            raise GenerationError(f"Protocol generation request failed: {e}") from e

        try:
            text = result["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationError("Unexpected completion response shape") from e

        parsed = parse_content(text)
        logger.info(f"Generated protocol content for template {request.template.id}")
        return GeneratedContent(
            source="ai",
            title=str(parsed.get("title") or request.template.name),
            summary=str(parsed.get("summary") or ""),
            content=parsed,
            model=self.llm.model,
        )


def template_fallback(template: ProtocolTemplate, duration: int, intensity: str,
                      base_config: Optional[Dict[str, Any]] = None) -> GeneratedContent:
    """Protocol content built from the raw template when AI generation is unavailable"""
    config = dict(base_config if base_config is not None else template.base_config)
    phases = config.get("phases") or [
        {"name": "protocol", "duration": duration, "focus": template.description}
    ]
    return GeneratedContent(
        source="template",
        title=template.name,
        summary=template.description,
        content={
            "phases": phases,
            "duration": duration,
            "intensity": intensity,
            "configuration": config,
            "precautions": [],
        },
    )
