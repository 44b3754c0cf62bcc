from abc import ABC, abstractmethod
from typing import Dict, Optional
import logging

import redis

from evofit.core.config import settings
from evofit.services.protocols.schemas import WizardSession

logger = logging.getLogger(__name__)


class DraftStore(ABC):
    """Ephemeral wizard session storage keyed by operator"""

    def __init__(self, prefix: Optional[str] = None, ttl: Optional[int] = None):
        self.prefix = prefix or settings.draft_key_prefix
        self.ttl = ttl or settings.draft_ttl_s

    def key(self, operator_id: str) -> str:
        return f"{self.prefix}:{operator_id}"

    def save(self, session: WizardSession) -> None:
        self._set(self.key(session.operator.user_id), session.model_dump_json())

    def load(self, operator_id: str) -> Optional[WizardSession]:
        raw = self._get(self.key(operator_id))
        return WizardSession.model_validate_json(raw) if raw else None

    def discard(self, operator_id: str) -> None:
        self._delete(self.key(operator_id))

    @abstractmethod
    def _set(self, key: str, payload: str) -> None: ...

    @abstractmethod
    def _get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    def _delete(self, key: str) -> None: ...


class InMemoryDraftStore(DraftStore):
    def __init__(self, prefix: Optional[str] = None, ttl: Optional[int] = None):
        super().__init__(prefix, ttl)
        self._drafts: Dict[str, str] = {}

    def _set(self, key: str, payload: str) -> None:
        self._drafts[key] = payload

    def _get(self, key: str) -> Optional[str]:
        return self._drafts.get(key)

    def _delete(self, key: str) -> None:
        self._drafts.pop(key, None)


class RedisDraftStore(DraftStore):
    def __init__(self, client: redis.Redis, prefix: Optional[str] = None, ttl: Optional[int] = None):
        super().__init__(prefix, ttl)
        self.redis = client

    def _set(self, key: str, payload: str) -> None:
        try:
            self.redis.setex(key, self.ttl, payload)
        except redis.RedisError as e:
            # Draft loss only affects resume; the live session is unchanged
            logger.warning(f"Failed to store wizard draft {key}: {e}")

    def _get(self, key: str) -> Optional[str]:
        try:
            raw = self.redis.get(key)
        except redis.RedisError as e:
            logger.warning(f"Failed to read wizard draft {key}: {e}")
            return None
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return raw

    def _delete(self, key: str) -> None:
        try:
            self.redis.delete(key)
        except redis.RedisError as e:
            logger.warning(f"Failed to discard wizard draft {key}: {e}")


_draft_store: Optional[DraftStore] = None


def get_draft_store() -> DraftStore:
    """Redis-backed store when REDIS_URL is configured, in-process otherwise"""
    global _draft_store
    if _draft_store is not None:
        return _draft_store
    if settings.redis_url:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        _draft_store = RedisDraftStore(client)
        logger.info("Wizard drafts stored in Redis")
    else:
        _draft_store = InMemoryDraftStore()
        logger.info("Wizard drafts stored in-process")
    return _draft_store
