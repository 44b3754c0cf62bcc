"""Tests for wizard draft storage."""

import pytest
import redis

from evofit.services.protocols.drafts import DraftStore, InMemoryDraftStore, RedisDraftStore
from evofit.services.protocols.schemas import HealthInfo, Identity, WizardSession, WizardStep
from evofit.services.protocols.wizard import WizardController


class RecordingRedis:
    """Minimal stand-in for the redis client calls the draft store makes"""

    def __init__(self):
        self.values = {}
        self.ttls = {}

    def setex(self, key, ttl, value):
        self.values[key] = value.encode("utf-8")
        self.ttls[key] = ttl

    def get(self, key):
        return self.values.get(key)

    def delete(self, key):
        self.values.pop(key, None)


class UnavailableRedis(RecordingRedis):
    def setex(self, key, ttl, value):
        raise redis.ConnectionError("connection refused")

    def get(self, key):
        raise redis.ConnectionError("connection refused")

    def delete(self, key):
        raise redis.ConnectionError("connection refused")


def make_session():
    return WizardSession(
        operator=Identity(user_id="trainer-1"),
        step=WizardStep.health_information,
        template_id="longevity",
        health=HealthInfo(age=40, weight=70, height=175),
        customization={"notes": "no dairy"},
    )


def test_in_memory_round_trip():
    store = InMemoryDraftStore()
    session = make_session()
    store.save(session)
    assert store.load("trainer-1") == session
    store.discard("trainer-1")
    assert store.load("trainer-1") is None


def test_redis_store_uses_prefix_and_ttl():
    client = RecordingRedis()
    store = RedisDraftStore(client, prefix="test:wizard", ttl=60)
    session = make_session()
    store.save(session)

    assert client.ttls == {"test:wizard:trainer-1": 60}
    loaded = store.load("trainer-1")
    assert loaded.step == WizardStep.health_information
    assert loaded.customization == {"notes": "no dairy"}


def test_redis_outage_does_not_break_the_wizard():
    store = RedisDraftStore(UnavailableRedis())
    store.save(make_session())
    store.discard("trainer-1")
    assert store.load("trainer-1") is None


def test_resume_during_redis_outage_starts_fresh(trainer, store):
    drafts = RedisDraftStore(UnavailableRedis())
    assert WizardController.resume(trainer, store, drafts) is None

    wizard = WizardController(trainer, store, drafts=drafts)
    wizard.select_template("longevity")
    assert wizard.step == WizardStep.client_selection


def test_draft_store_requires_a_backend():
    with pytest.raises(TypeError):
        DraftStore()
