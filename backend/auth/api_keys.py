"""API key validation for partner systems posting transactions."""

from __future__ import annotations

import logging

from backend.repositories.api_keys_repository import ApiKeysRepository, hash_api_key
from shared.errors import UnauthorizedError
from shared.models import ApiKey


logger = logging.getLogger(__name__)


def validate_api_key(raw_key: str | None, repository: ApiKeysRepository, *, prefix: str) -> ApiKey:
    """Return the stored key matching `raw_key` and record its use."""

    candidate = (raw_key or "").strip()
    if not candidate:
        raise UnauthorizedError("Missing API key")
    if not candidate.startswith(prefix):
        raise UnauthorizedError("Invalid API key format")

    api_key = repository.get_by_hash(hash_api_key(candidate))
    if api_key is None:
        logger.info("api_key_rejected prefix=%s", prefix)
        raise UnauthorizedError("Invalid API key")

    repository.touch_last_used(api_key.id)
    logger.info("api_key_accepted api_key_id=%s user_id=%s", api_key.id, api_key.user_id)
    return api_key
