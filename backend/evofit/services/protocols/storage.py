"""
Protocol storage.

``ProtocolStore`` is the persistence boundary used by the wizard, the
versioner and the assignment/effectiveness services. ``SqlProtocolStore``
implements it on a SQLAlchemy session; every database failure surfaces as
``PersistenceError`` after the transaction has been rolled back.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional
import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from evofit.core.errors import NotFoundError, PersistenceError
from evofit.models.protocol import Customer, ProtocolAssignment, ProtocolVersion, TrainerProtocol

logger = logging.getLogger(__name__)

PROTOCOL_FIELDS = ("name", "description", "type", "duration", "intensity", "config", "tags", "version")
ASSIGNMENT_FIELDS = ("status", "end_date", "completed_date", "notes", "progress_data")


class ProtocolStore(ABC):
    """Storage collaborator for protocols, versions, assignments and customers"""

    @abstractmethod
    def unit_of_work(self):
        """Context manager grouping several writes into one transaction"""

    @abstractmethod
    def get_customer(self, customer_id: str) -> Customer: ...

    @abstractmethod
    def create_protocol(self, trainer_id: str, data: Dict[str, Any]) -> TrainerProtocol: ...

    @abstractmethod
    def update_protocol(self, protocol_id: str, data: Dict[str, Any]) -> TrainerProtocol: ...

    @abstractmethod
    def get_protocol(self, protocol_id: str) -> TrainerProtocol: ...

    @abstractmethod
    def add_version(self, protocol_id: str, version_number: str, config: Dict[str, Any],
                    changelog: str, created_by: str, version_name: Optional[str] = None) -> ProtocolVersion: ...

    @abstractmethod
    def get_version_history(self, protocol_id: str) -> List[ProtocolVersion]: ...

    @abstractmethod
    def create_assignment(self, protocol_id: str, customer_id: str, trainer_id: str,
                          notes: Optional[str] = None) -> ProtocolAssignment: ...

    @abstractmethod
    def get_assignment(self, assignment_id: str) -> ProtocolAssignment: ...

    @abstractmethod
    def update_assignment(self, assignment_id: str, data: Dict[str, Any]) -> ProtocolAssignment: ...

    @abstractmethod
    def list_assignments(self, protocol_id: Optional[str] = None,
                         customer_id: Optional[str] = None) -> List[ProtocolAssignment]: ...


class SqlProtocolStore(ProtocolStore):
    def __init__(self, db: Session):
        self.db = db
        self._depth = 0

    @contextmanager
    def unit_of_work(self) -> Iterator["SqlProtocolStore"]:
        self._depth += 1
        try:
            yield self
        except SQLAlchemyError as e:
            self._depth -= 1
            if self._depth == 0:
                self.db.rollback()
            logger.error(f"Error writing protocol data: {e}")
            raise PersistenceError(f"Failed to write protocol data: {e}") from e
        except Exception:
            self._depth -= 1
            if self._depth == 0:
                self.db.rollback()
            raise
        self._depth -= 1
        if self._depth == 0:
            self._commit()

    def _commit(self):
        if self._depth > 0:
            try:
                self.db.flush()
            except SQLAlchemyError as e:
                logger.error(f"Error flushing protocol changes: {e}")
                raise PersistenceError(f"Failed to write protocol data: {e}") from e
            return
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error committing protocol changes: {e}")
            raise PersistenceError(f"Failed to write protocol data: {e}") from e

    def get_customer(self, customer_id: str) -> Customer:
        customer = self.db.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError("customer", customer_id)
        return customer

    def create_protocol(self, trainer_id: str, data: Dict[str, Any]) -> TrainerProtocol:
        if not trainer_id:
            raise PersistenceError("A protocol must belong to a trainer")
        protocol = TrainerProtocol(
            trainer_id=trainer_id,
            **{k: v for k, v in data.items() if k in PROTOCOL_FIELDS},
        )
        self.db.add(protocol)
        self._commit()
        logger.info(f"Created protocol {protocol.id} for trainer {trainer_id}")
        return protocol

    def update_protocol(self, protocol_id: str, data: Dict[str, Any]) -> TrainerProtocol:
        protocol = self.get_protocol(protocol_id)
        for key, value in data.items():
            if key in PROTOCOL_FIELDS:
                setattr(protocol, key, value)
        protocol.updated_at = datetime.now(timezone.utc)
        self._commit()
        return protocol

    def get_protocol(self, protocol_id: str) -> TrainerProtocol:
        protocol = self.db.get(TrainerProtocol, protocol_id)
        if protocol is None:
            raise NotFoundError("protocol", protocol_id)
        return protocol

    def add_version(self, protocol_id: str, version_number: str, config: Dict[str, Any],
                    changelog: str, created_by: str, version_name: Optional[str] = None) -> ProtocolVersion:
        self.get_protocol(protocol_id)
        last_seq = (
            self.db.query(func.max(ProtocolVersion.sequence))
            .filter(ProtocolVersion.protocol_id == protocol_id)
            .scalar()
        )
        # Only the newest version is active
        self.db.query(ProtocolVersion).filter(
            ProtocolVersion.protocol_id == protocol_id,
            ProtocolVersion.is_active.is_(True),
        ).update({"is_active": False}, synchronize_session="fetch")
        version = ProtocolVersion(
            protocol_id=protocol_id,
            sequence=(last_seq or 0) + 1,
            version_number=version_number,
            version_name=version_name,
            changelog=changelog,
            config=config,
            is_active=True,
            created_by=created_by,
        )
        self.db.add(version)
        self._commit()
        return version

    def get_version_history(self, protocol_id: str) -> List[ProtocolVersion]:
        self.get_protocol(protocol_id)
        return (
            self.db.query(ProtocolVersion)
            .filter(ProtocolVersion.protocol_id == protocol_id)
            .order_by(ProtocolVersion.sequence.asc())
            .all()
        )

    def create_assignment(self, protocol_id: str, customer_id: str, trainer_id: str,
                          notes: Optional[str] = None) -> ProtocolAssignment:
        protocol = self.get_protocol(protocol_id)
        self.get_customer(customer_id)
        start = datetime.now(timezone.utc)
        assignment = ProtocolAssignment(
            protocol_id=protocol_id,
            customer_id=customer_id,
            trainer_id=trainer_id,
            status="active",
            start_date=start,
            end_date=start + timedelta(days=protocol.duration or 0),
            notes=notes,
            progress_data={},
        )
        self.db.add(assignment)
        self._commit()
        logger.info(f"Assigned protocol {protocol_id} to customer {customer_id}")
        return assignment

    def get_assignment(self, assignment_id: str) -> ProtocolAssignment:
        assignment = self.db.get(ProtocolAssignment, assignment_id)
        if assignment is None:
            raise NotFoundError("assignment", assignment_id)
        return assignment

    def update_assignment(self, assignment_id: str, data: Dict[str, Any]) -> ProtocolAssignment:
        assignment = self.get_assignment(assignment_id)
        for key, value in data.items():
            if key in ASSIGNMENT_FIELDS:
                setattr(assignment, key, value)
        assignment.updated_at = datetime.now(timezone.utc)
        self._commit()
        return assignment

    def list_assignments(self, protocol_id: Optional[str] = None,
                         customer_id: Optional[str] = None) -> List[ProtocolAssignment]:
        q = self.db.query(ProtocolAssignment)
        if protocol_id:
            q = q.filter(ProtocolAssignment.protocol_id == protocol_id)
        if customer_id:
            q = q.filter(ProtocolAssignment.customer_id == customer_id)
        return q.order_by(ProtocolAssignment.assigned_at.asc(), ProtocolAssignment.id.asc()).all()
