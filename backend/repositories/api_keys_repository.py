"""Lookup of hashed API keys used by the external transaction intake."""

from __future__ import annotations

import hashlib
from typing import Protocol
from uuid import UUID, uuid4

from backend.db.supabase_client import SupabaseClient
from backend.repositories.row_utils import parse_timestamp
from shared.models import ApiKey, utc_now


def hash_api_key(raw_key: str) -> str:
    """Return the hex SHA-256 digest stored in place of the raw key."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


class ApiKeysRepository(Protocol):
    def get_by_hash(self, key_hash: str) -> ApiKey | None:
        """Return the API key matching a SHA-256 hash."""

    def touch_last_used(self, api_key_id: UUID) -> None:
        """Record that the key was just used."""


class InMemoryApiKeysRepository:
    def __init__(self) -> None:
        self._keys: dict[str, ApiKey] = {}

    def add_key(self, *, user_id: UUID, raw_key: str, name: str | None = None) -> ApiKey:
        api_key = ApiKey(id=uuid4(), user_id=user_id, name=name, key_hash=hash_api_key(raw_key))
        self._keys[api_key.key_hash] = api_key
        return api_key

    def get_by_hash(self, key_hash: str) -> ApiKey | None:
        return self._keys.get(key_hash)

    def touch_last_used(self, api_key_id: UUID) -> None:
        for key_hash, api_key in self._keys.items():
            if api_key.id == api_key_id:
                self._keys[key_hash] = api_key.model_copy(update={"last_used_at": utc_now()})
                return


class SupabaseApiKeysRepository:
    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    def get_by_hash(self, key_hash: str) -> ApiKey | None:
        rows, _ = self._client.get_rows(
            table="api_keys",
            query={
                "select": "id,user_id,name,key_hash,last_used_at",
                "key_hash": f"eq.{key_hash}",
                "limit": 1,
            },
            with_count=False,
        )
        if not rows:
            return None
        row = rows[0]
        return ApiKey(
            id=row.get("id"),
            user_id=row.get("user_id"),
            name=row.get("name"),
            key_hash=str(row.get("key_hash")),
            last_used_at=parse_timestamp(row.get("last_used_at")),
        )

    def touch_last_used(self, api_key_id: UUID) -> None:
        self._client.patch_rows(
            table="api_keys",
            query={"id": f"eq.{api_key_id}"},
            payload={"last_used_at": utc_now().isoformat()},
        )
