"""Durable cache of in-progress onboarding selections.

Three keys per wizard session, cleared together:
    tenant_id           plain string
    selected_plan_data  WizardCacheSnapshot as JSON
    tenant_form_data    TenantBasicInfo as JSON

Writes are write-through: the session calls save() right after every
mutation. Reads never raise on bad data; a missing or corrupt entry comes
back as None and the caller falls back to defaults.
"""

import logging

import redis.asyncio as redis
from pydantic import ValidationError

from app.schemas.onboarding import TenantBasicInfo, WizardCacheSnapshot
from app.utils.store import KeyValueStore, session_key

logger = logging.getLogger(__name__)

TENANT_ID_KEY = "tenant_id"
SELECTED_PLAN_DATA_KEY = "selected_plan_data"
TENANT_FORM_DATA_KEY = "tenant_form_data"

ALL_KEYS = (TENANT_ID_KEY, SELECTED_PLAN_DATA_KEY, TENANT_FORM_DATA_KEY)


class WizardCache:
    def __init__(self, store: KeyValueStore, session_id: str, prefix: str | None = None):
        self.store = store
        self.session_id = session_id
        self.prefix = prefix

    def key(self, name: str) -> str:
        return session_key(self.session_id, name, self.prefix)

    # ── Selections ───────────────────────────────────────────

    async def save(self, snapshot: WizardCacheSnapshot) -> None:
        await self.store.set(self.key(SELECTED_PLAN_DATA_KEY), snapshot.model_dump_json())

    async def load(self) -> WizardCacheSnapshot | None:
        raw = await self._read(SELECTED_PLAN_DATA_KEY)
        if not raw:
            return None
        try:
            return WizardCacheSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                f"Discarding corrupt wizard snapshot for session {self.session_id}: "
                f"{e.error_count()} error(s)"
            )
            return None

    # ── Basic info ───────────────────────────────────────────

    async def save_basic_info(self, info: TenantBasicInfo) -> None:
        await self.store.set(self.key(TENANT_FORM_DATA_KEY), info.model_dump_json())

    async def load_basic_info(self) -> TenantBasicInfo | None:
        raw = await self._read(TENANT_FORM_DATA_KEY)
        if not raw:
            return None
        try:
            return TenantBasicInfo.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Discarding corrupt basic info for session {self.session_id}")
            return None

    # ── Tenant id ────────────────────────────────────────────

    async def get_tenant_id(self) -> str | None:
        return await self._read(TENANT_ID_KEY) or None

    async def set_tenant_id(self, tenant_id: str) -> None:
        await self.store.set(self.key(TENANT_ID_KEY), tenant_id)

    async def _read(self, name: str) -> str | None:
        try:
            return await self.store.get(self.key(name))
        except redis.RedisError as e:
            logger.warning(f"Redis error reading {name} for session {self.session_id}: {e}")
            return None

    async def clear(self) -> None:
        """Remove all three persisted keys."""
        await self.store.delete(*(self.key(k) for k in ALL_KEYS))
        logger.info(f"Cleared wizard cache for session {self.session_id}")
