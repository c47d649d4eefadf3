"""Device-scoped draft persistence with ownership and staleness rules.

One draft slot per device.  save() overwrites it unconditionally and
stamps owner + savedAt; load() refuses drafts owned by someone else and
clears drafts older than the retention window.

Backends are plain key/value stores:
  RedisDraftBackend    → default, keys expire with the retention window
  SqlDraftBackend      → draft_slots table via SQLAlchemy
  InMemoryDraftBackend → process-local dict, for tests and single-node dev
Backend failures surface as PersistenceError.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

import redis.asyncio as redis
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from openshop.config import settings
from openshop.middleware.exceptions import PersistenceError
from openshop.models.draft import DraftSlot
from openshop.schemas.wizard import AutosaveStatus, Draft, WizardState
from openshop.utils.debounce import Debouncer

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Backends ────────────────────────────────────────────────

class DraftBackend(Protocol):
    async def read(self, key: str) -> dict | None: ...

    async def write(self, key: str, payload: dict) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryDraftBackend:
    def __init__(self):
        self.slots: dict[str, dict] = {}

    async def read(self, key: str) -> dict | None:
        return self.slots.get(key)

    async def write(self, key: str, payload: dict) -> None:
        self.slots[key] = payload

    async def delete(self, key: str) -> None:
        self.slots.pop(key, None)


class RedisDraftBackend:
    def __init__(self, client: redis.Redis, ttl_seconds: int | None = None):
        self._redis = client
        self._ttl = ttl_seconds

    async def read(self, key: str) -> dict | None:
        try:
            raw = await self._redis.get(key)
        except redis.RedisError as e:
            raise PersistenceError(f"Failed to read draft: {e}") from e
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding unreadable draft at {key}")
            return {}

    async def write(self, key: str, payload: dict) -> None:
        try:
            await self._redis.set(key, json.dumps(payload), ex=self._ttl)
        except redis.RedisError as e:
            raise PersistenceError(f"Failed to save draft: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except redis.RedisError as e:
            raise PersistenceError(f"Failed to delete draft: {e}") from e


class SqlDraftBackend:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def read(self, key: str) -> dict | None:
        try:
            async with self._sessions() as db:
                slot = await db.get(DraftSlot, key)
                return dict(slot.payload) if slot else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read draft: {e}") from e

    async def write(self, key: str, payload: dict) -> None:
        try:
            async with self._sessions() as db:
                slot = await db.get(DraftSlot, key)
                if slot is None:
                    db.add(DraftSlot(key=key, payload=payload))
                else:
                    slot.payload = payload
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save draft: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            async with self._sessions() as db:
                slot = await db.get(DraftSlot, key)
                if slot is not None:
                    await db.delete(slot)
                    await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete draft: {e}") from e


# ── Store ───────────────────────────────────────────────────

class DraftStore:
    def __init__(
        self,
        backend: DraftBackend,
        device_id: str = "default",
        retention_days: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._backend = backend
        self.key = f"{settings.draft_key}:{device_id}"
        self.retention_days = (
            settings.draft_retention_days if retention_days is None else retention_days
        )
        self._clock = clock

    async def save(self, owner_user_id: str, state: WizardState) -> Draft:
        draft = Draft(state=state, owner_user_id=owner_user_id, saved_at=self._clock())
        await self._backend.write(self.key, draft.model_dump(mode="json"))
        return draft

    async def _read(self) -> Draft | None:
        payload = await self._backend.read(self.key)
        if payload is None:
            return None
        try:
            return Draft.model_validate(payload)
        except ValidationError:
            logger.warning(f"Clearing malformed draft at {self.key}")
            await self.clear()
            return None

    async def load(self, owner_user_id: str) -> Draft | None:
        draft = await self._read()
        if draft is None:
            return None
        if self.is_stale(draft):
            logger.info(f"Clearing stale draft saved {draft.saved_at.isoformat()}")
            await self.clear()
            return None
        if draft.owner_user_id != owner_user_id:
            return None
        return draft

    async def clear(self) -> None:
        await self._backend.delete(self.key)

    async def clear_if_foreign(self, user_id: str) -> bool:
        """Drop a draft left on this device by another user."""
        draft = await self._read()
        if draft is not None and draft.owner_user_id != user_id:
            logger.info("Clearing draft owned by a different user")
            await self.clear()
            return True
        return False

    def is_stale(self, draft: Draft, max_age_days: int | None = None) -> bool:
        days = self.retention_days if max_age_days is None else max_age_days
        saved_at = draft.saved_at
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=timezone.utc)
        return self._clock() - saved_at > timedelta(days=days)


class AutoSaver:
    """Debounced draft saves for one session.

    The state is read when the save fires, not when it was scheduled, so
    a burst of edits produces one save of the newest state.  Failures set
    status to "error" and never raise.
    """

    def __init__(
        self,
        store: DraftStore,
        owner_user_id: str,
        get_state: Callable[[], WizardState],
        delay: float | None = None,
    ):
        self._store = store
        self._owner = owner_user_id
        self._get_state = get_state
        self.status: AutosaveStatus = "idle"
        self.last_error: str | None = None
        self.last_saved_at: datetime | None = None
        self._stopped = False
        self._debouncer = Debouncer(
            settings.autosave_debounce_seconds if delay is None else delay,
            self._save,
            name="autosave",
        )

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    def schedule(self) -> bool:
        if self._stopped or self._get_state().store_id is None:
            return False
        self._debouncer.trigger()
        return True

    async def _save(self) -> None:
        self.status = "saving"
        try:
            draft = await self._store.save(self._owner, self._get_state())
        except PersistenceError as e:
            self.status = "error"
            self.last_error = e.message
            logger.warning(f"Auto-save failed: {e.message}")
            return
        self.status = "saved"
        self.last_error = None
        self.last_saved_at = draft.saved_at

    async def flush(self) -> None:
        await self._debouncer.flush()

    def stop(self) -> None:
        self._stopped = True
        self._debouncer.cancel()
