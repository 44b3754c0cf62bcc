"""
Protocol Version Manager

Numbers every content-changing save of a protocol (1.0, 1.1, 1.2, ...),
keeps the full configuration of each version and supports rollback and
comparison. History is append-only: a rollback is recorded as a new version.
"""

from typing import Any, Dict, List, Optional, Tuple
import logging

from pydantic import BaseModel, Field

from evofit.core.errors import NotFoundError
from evofit.models.protocol import ProtocolVersion, TrainerProtocol
from evofit.services.protocols.storage import ProtocolStore

logger = logging.getLogger(__name__)

FIRST_VERSION = "1.0"

COMPARED_FIELDS = (
    "duration", "intensity", "type", "fasting_protocol", "calorie_target",
    "conditions", "medications", "goals", "phases", "supplementation",
)
HIGH_IMPACT_FIELDS = ("duration", "intensity", "type", "conditions", "medications")
MEDIUM_IMPACT_FIELDS = ("fasting_protocol", "calorie_target", "goals", "phases", "supplementation")


def parse_version(number: str) -> Tuple[int, int]:
    parts = (number or FIRST_VERSION).split(".")
    major = int(parts[0] or 1)
    minor = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    return major, minor


def next_version_number(current: Optional[str]) -> str:
    """Increment the minor part; the first version is 1.0"""
    if not current:
        return FIRST_VERSION
    major, minor = parse_version(current)
    return f"{major}.{minor + 1}"


class FieldChange(BaseModel):
    path: str
    old_value: Any = None
    new_value: Any = None
    description: str


class VersionComparison(BaseModel):
    protocol_id: str
    old_version: str
    new_version: str
    added: List[FieldChange] = Field(default_factory=list)
    modified: List[FieldChange] = Field(default_factory=list)
    removed: List[FieldChange] = Field(default_factory=list)
    severity: str = "low"
    affected_areas: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


def _format_value(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value) if value else "empty list"
    return str(value)


class ProtocolVersioner:
    def __init__(self, store: ProtocolStore):
        self.store = store

    def history(self, protocol_id: str) -> List[ProtocolVersion]:
        """All versions, oldest first"""
        return self.store.get_version_history(protocol_id)

    def active_version(self, protocol_id: str) -> Optional[ProtocolVersion]:
        versions = self.history(protocol_id)
        return versions[-1] if versions else None

    def get_version(self, protocol_id: str, version_number: str) -> ProtocolVersion:
        """Most recent entry carrying the given number"""
        for version in reversed(self.history(protocol_id)):
            if version.version_number == version_number:
                return version
        raise NotFoundError("protocol version", f"{protocol_id}@{version_number}")

    def record(
        self,
        protocol: TrainerProtocol,
        config: Dict[str, Any],
        changelog: str,
        created_by: str,
        version_name: Optional[str] = None,
    ) -> Optional[ProtocolVersion]:
        """Store a new version if the configuration changed; returns None otherwise"""
        latest = self.active_version(protocol.id)
        if latest is not None and latest.config == config:
            logger.info(f"Protocol {protocol.id} unchanged, staying at version {latest.version_number}")
            return None

        number = next_version_number(self._highest_number(protocol.id))
        with self.store.unit_of_work():
            version = self.store.add_version(
                protocol.id,
                number,
                config,
                changelog=changelog,
                created_by=created_by,
                version_name=version_name,
            )
            self.store.update_protocol(protocol.id, {"config": config, "version": number})
        logger.info(f"Protocol {protocol.id} now at version {number}")
        return version

    def rollback(self, protocol_id: str, to_version: str, reason: str, user_id: str) -> ProtocolVersion:
        """Restore an earlier configuration as a new version"""
        target = self.get_version(protocol_id, to_version)
        protocol = self.store.get_protocol(protocol_id)
        changelog = (
            f"ROLLBACK: {reason}\n\n"
            f"Rolling back to version {target.version_number}"
            f"{f' ({target.version_name})' if target.version_name else ''}\n\n"
            f"Original changelog from {target.version_number}:\n{target.changelog or ''}"
        )
        number = next_version_number(self._highest_number(protocol_id))
        restored = {"config": dict(target.config), "version": number}
        for key in ("name", "description", "duration", "intensity", "type"):
            if key in target.config:
                restored[key] = target.config[key]
        # Version row and protocol row move together
        with self.store.unit_of_work():
            version = self.store.add_version(
                protocol_id,
                number,
                dict(target.config),
                changelog=changelog,
                created_by=user_id,
                version_name=f"Rollback to {target.version_number}",
            )
            self.store.update_protocol(protocol.id, restored)
        logger.info(f"Protocol {protocol_id} rolled back to {to_version} as version {number}")
        return version

    def compare(self, protocol_id: str, old_version: str, new_version: str) -> VersionComparison:
        old = self.get_version(protocol_id, old_version)
        new = self.get_version(protocol_id, new_version)
        comparison = VersionComparison(
            protocol_id=protocol_id,
            old_version=old.version_number,
            new_version=new.version_number,
        )
        for field in COMPARED_FIELDS:
            before = old.config.get(field)
            after = new.config.get(field)
            if before is None and after is not None:
                comparison.added.append(FieldChange(
                    path=field, new_value=after, description=f"Added {field}: {_format_value(after)}"))
            elif before is not None and after is None:
                comparison.removed.append(FieldChange(
                    path=field, old_value=before, description=f"Removed {field}: {_format_value(before)}"))
            elif before != after:
                comparison.modified.append(FieldChange(
                    path=field, old_value=before, new_value=after,
                    description=f"Changed {field} from {_format_value(before)} to {_format_value(after)}"))
        self._assess_impact(comparison)
        return comparison

    def _assess_impact(self, comparison: VersionComparison) -> None:
        severity = "low"
        for change in comparison.added + comparison.modified + comparison.removed:
            if change.path in HIGH_IMPACT_FIELDS:
                severity = "high"
                comparison.recommendations.append(f"Review {change.path} changes with clients")
            elif change.path in MEDIUM_IMPACT_FIELDS:
                if severity != "high":
                    severity = "medium"
                comparison.recommendations.append(f"Monitor client response to {change.path} changes")
            else:
                continue
            if change.path not in comparison.affected_areas:
                comparison.affected_areas.append(change.path)
        if severity == "high":
            comparison.recommendations.append("Consider notifying all assigned clients of major changes")
            comparison.recommendations.append("Re-run safety validation for assigned clients")
        elif severity == "medium":
            comparison.recommendations.append("Document changes in client communication")
        comparison.severity = severity

    def _highest_number(self, protocol_id: str) -> Optional[str]:
        versions = self.history(protocol_id)
        if not versions:
            return None
        return max((v.version_number for v in versions), key=parse_version)

