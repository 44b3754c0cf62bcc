"""Shared fixtures: in-memory SQLite store, scripted generator and operators."""

import asyncio
from typing import List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from evofit.db.session import create_tables
from evofit.models import Customer
from evofit.services.protocols.drafts import InMemoryDraftStore
from evofit.services.protocols.generation import GenerationClient, GenerationRequest
from evofit.services.protocols.schemas import GeneratedContent, Identity
from evofit.services.protocols.storage import SqlProtocolStore
from evofit.services.protocols.wizard import WizardController


class ScriptedGenerator(GenerationClient):
    """Generation collaborator with a controllable delay and failure"""

    def __init__(self, delay: float = 0.0, error: Optional[Exception] = None):
        self.delay = delay
        self.error = error
        self.requests: List[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> GeneratedContent:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return GeneratedContent(
            source="ai",
            title=f"{request.template.name} for you",
            summary="Personalized plan",
            content={
                "phases": [{"name": "foundation", "duration_days": request.duration}],
                "precautions": ["Stay hydrated"],
            },
            model="scripted",
        )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine)()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return SqlProtocolStore(db)


@pytest.fixture
def trainer():
    return Identity(user_id="trainer-1", role="trainer")


@pytest.fixture
def admin():
    return Identity(user_id="admin-1", role="admin")


@pytest.fixture
def client_customer(db, trainer):
    customer = Customer(
        id="cust-young",
        trainer_id=trainer.user_id,
        name="Maya Chen",
        email="maya@example.com",
        age=34,
        health_conditions=[],
        medications=[],
    )
    db.add(customer)
    db.commit()
    return customer


@pytest.fixture
def senior_customer(db, trainer):
    customer = Customer(
        id="cust-senior",
        trainer_id=trainer.user_id,
        name="Ruth Adams",
        email="ruth@example.com",
        age=70,
        health_conditions=["Type 2 diabetes"],
        medications=["Metformin"],
    )
    db.add(customer)
    db.commit()
    return customer


@pytest.fixture
def drafts():
    return InMemoryDraftStore()


@pytest.fixture
def generator():
    return ScriptedGenerator()


@pytest.fixture
def wizard(trainer, store, generator, drafts):
    return WizardController(trainer, store, generator=generator, drafts=drafts, generation_timeout=2.0)


def fill_to_customization(wizard, client_id, template_id, age=34, conditions=None, medications=None):
    """Complete client, template, health and medical steps"""
    wizard.select_client(client_id)
    wizard.next()
    wizard.select_template(template_id)
    wizard.next()
    wizard.set_health_info(age=age, weight=68.0, height=172.0, activity_level="moderate", goals=["energy"])
    wizard.next()
    wizard.set_medical_conditions(conditions=conditions or [], medications=medications or [])
    wizard.next()


@pytest.fixture
def walk():
    return fill_to_customization
