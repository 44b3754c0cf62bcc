from datetime import datetime, timezone
from typing import List, Optional
import logging

from evofit.core.errors import PermissionDeniedError, ValidationError
from evofit.models.protocol import ProtocolAssignment
from evofit.services.protocols.schemas import AssignmentStatus
from evofit.services.protocols.storage import ProtocolStore

logger = logging.getLogger(__name__)

# completed and cancelled are terminal
ALLOWED_TRANSITIONS = {
    AssignmentStatus.active: {AssignmentStatus.paused, AssignmentStatus.completed, AssignmentStatus.cancelled},
    AssignmentStatus.paused: {AssignmentStatus.active, AssignmentStatus.completed, AssignmentStatus.cancelled},
    AssignmentStatus.completed: set(),
    AssignmentStatus.cancelled: set(),
}


class AssignmentService:
    """Links saved protocols to customers and moves assignments through their lifecycle"""

    def __init__(self, store: ProtocolStore):
        self.store = store

    def assign(self, protocol_id: str, customer_id: str, trainer_id: str,
               notes: Optional[str] = None) -> ProtocolAssignment:
        protocol = self.store.get_protocol(protocol_id)
        if protocol.trainer_id != trainer_id:
            raise PermissionDeniedError(f"Protocol {protocol_id} belongs to another trainer")
        customer = self.store.get_customer(customer_id)
        if customer.trainer_id and customer.trainer_id != trainer_id:
            raise PermissionDeniedError(f"Customer {customer_id} is not linked to trainer {trainer_id}")
        with self.store.unit_of_work():
            assignment = self.store.create_assignment(protocol_id, customer_id, trainer_id, notes=notes)
        return assignment

    def transition(self, assignment_id: str, new_status) -> ProtocolAssignment:
        try:
            target = AssignmentStatus(new_status)
        except ValueError:
            raise ValidationError("status", f"Unknown assignment status: {new_status}")

        assignment = self.store.get_assignment(assignment_id)
        current = AssignmentStatus(assignment.status)
        if target == current:
            return assignment
        if target not in ALLOWED_TRANSITIONS[current]:
            raise ValidationError(
                "status", f"Cannot move assignment from {current.value} to {target.value}"
            )

        data = {"status": target.value}
        if target == AssignmentStatus.completed:
            data["completed_date"] = datetime.now(timezone.utc)
        with self.store.unit_of_work():
            assignment = self.store.update_assignment(assignment_id, data)
        logger.info(f"Assignment {assignment_id}: {current.value} -> {target.value}")
        return assignment

    def for_customer(self, customer_id: str) -> List[ProtocolAssignment]:
        return self.store.list_assignments(customer_id=customer_id)

    def for_protocol(self, protocol_id: str) -> List[ProtocolAssignment]:
        return self.store.list_assignments(protocol_id=protocol_id)
