"""Tests for the SQLAlchemy protocol store and assignment lifecycle."""

import pytest
from sqlalchemy.exc import OperationalError

from evofit.core.errors import NotFoundError, PermissionDeniedError, PersistenceError, ValidationError
from evofit.models import Customer, TrainerProtocol
from evofit.services.protocols.assignments import AssignmentService


def protocol_data(**overrides):
    data = {
        "name": "Longevity basics",
        "description": "Ninety days of steady habits",
        "type": "longevity",
        "duration": 90,
        "intensity": "moderate",
        "config": {"duration": 90, "intensity": "moderate", "type": "longevity"},
        "tags": ["longevity"],
    }
    data.update(overrides)
    return data


class TestSqlProtocolStore:
    def test_create_and_get_protocol(self, store):
        protocol = store.create_protocol("trainer-1", protocol_data())
        loaded = store.get_protocol(protocol.id)
        assert loaded.trainer_id == "trainer-1"
        assert loaded.version == "1.0"
        assert loaded.to_dict()["tags"] == ["longevity"]

    def test_protocol_requires_trainer(self, store):
        with pytest.raises(PersistenceError):
            store.create_protocol("", protocol_data())

    def test_unknown_ids(self, store):
        with pytest.raises(NotFoundError):
            store.get_protocol("missing")
        with pytest.raises(NotFoundError):
            store.get_customer("missing")
        with pytest.raises(NotFoundError):
            store.get_assignment("missing")

    def test_update_ignores_unknown_fields(self, store):
        protocol = store.create_protocol("trainer-1", protocol_data())
        store.update_protocol(protocol.id, {"name": "Renamed", "trainer_id": "someone-else"})
        loaded = store.get_protocol(protocol.id)
        assert loaded.name == "Renamed"
        assert loaded.trainer_id == "trainer-1"

    def test_commit_failure_becomes_persistence_error(self, store, db, monkeypatch):
        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db, "commit", failing_commit)
        with pytest.raises(PersistenceError):
            store.create_protocol("trainer-1", protocol_data())

    def test_unit_of_work_rolls_back_everything(self, store, db):
        with pytest.raises(NotFoundError):
            with store.unit_of_work():
                protocol = store.create_protocol("trainer-1", protocol_data())
                store.create_assignment(protocol.id, "missing-customer", "trainer-1")
        assert db.query(TrainerProtocol).count() == 0

    def test_versions_are_ordered_and_single_active(self, store):
        protocol = store.create_protocol("trainer-1", protocol_data())
        store.add_version(protocol.id, "1.0", {"duration": 90}, "first", "trainer-1")
        store.add_version(protocol.id, "1.1", {"duration": 60}, "shorter", "trainer-1")
        history = store.get_version_history(protocol.id)
        assert [v.version_number for v in history] == ["1.0", "1.1"]
        assert [v.is_active for v in history] == [False, True]


class TestAssignments:
    @pytest.fixture
    def protocol(self, store):
        return store.create_protocol("trainer-1", protocol_data())

    @pytest.fixture
    def service(self, store):
        return AssignmentService(store)

    def test_assign(self, service, protocol, client_customer):
        assignment = service.assign(protocol.id, client_customer.id, "trainer-1", notes="start monday")
        assert assignment.status == "active"
        assert assignment.notes == "start monday"
        assert [a.id for a in service.for_customer(client_customer.id)] == [assignment.id]
        assert [a.id for a in service.for_protocol(protocol.id)] == [assignment.id]

    def test_assign_requires_existing_customer(self, service, protocol):
        with pytest.raises(NotFoundError):
            service.assign(protocol.id, "missing", "trainer-1")

    def test_assign_requires_protocol_owner(self, service, protocol, client_customer):
        with pytest.raises(PermissionDeniedError):
            service.assign(protocol.id, client_customer.id, "trainer-2")

    def test_assign_requires_customer_of_trainer(self, service, protocol, db):
        db.add(Customer(id="cust-other", trainer_id="trainer-2", name="Sam Ortiz", age=41))
        db.commit()
        with pytest.raises(PermissionDeniedError):
            service.assign(protocol.id, "cust-other", "trainer-1")
        assert service.for_customer("cust-other") == []

    def test_pause_resume_complete(self, service, protocol, client_customer):
        assignment = service.assign(protocol.id, client_customer.id, "trainer-1")
        assert service.transition(assignment.id, "paused").status == "paused"
        assert service.transition(assignment.id, "active").status == "active"
        completed = service.transition(assignment.id, "completed")
        assert completed.status == "completed"
        assert completed.completed_date is not None

    @pytest.mark.parametrize("terminal", ["completed", "cancelled"])
    def test_terminal_states(self, service, protocol, client_customer, terminal):
        assignment = service.assign(protocol.id, client_customer.id, "trainer-1")
        service.transition(assignment.id, terminal)
        with pytest.raises(ValidationError):
            service.transition(assignment.id, "active")

    def test_unknown_status(self, service, protocol, client_customer):
        assignment = service.assign(protocol.id, client_customer.id, "trainer-1")
        with pytest.raises(ValidationError) as exc:
            service.transition(assignment.id, "archived")
        assert exc.value.field == "status"

    def test_unknown_assignment(self, service):
        with pytest.raises(NotFoundError):
            service.transition("missing", "paused")
