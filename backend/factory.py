"""Composition root for backend services."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from backend.db.supabase_client import SupabaseClient, SupabaseSettings
from backend.repositories.api_keys_repository import (
    ApiKeysRepository,
    InMemoryApiKeysRepository,
    SupabaseApiKeysRepository,
)
from backend.repositories.notifications_repository import (
    InMemoryNotificationsRepository,
    NotificationsRepository,
    SupabaseNotificationsRepository,
)
from backend.repositories.offers_repository import InMemoryOffersRepository, SupabaseOffersRepository
from backend.repositories.transactions_repository import (
    InMemoryTransactionsRepository,
    SupabaseTransactionsRepository,
)
from backend.services.lifecycle import TransactionLifecycleController
from backend.services.notification_store import NotificationStore
from backend.services.presence import InMemoryPresenceChannel, PresenceChannel, StaticPresenceChannel
from shared import config


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DeskServices:
    lifecycle: TransactionLifecycleController
    notification_store: NotificationStore
    notifications_repository: NotificationsRepository
    api_keys_repository: ApiKeysRepository
    presence_channel: PresenceChannel


def build_supabase_client() -> SupabaseClient | None:
    """Return a configured client, or None when Supabase is disabled."""

    if not config.supabase_enabled():
        return None
    return SupabaseClient(
        settings=SupabaseSettings(
            url=config.supabase_url() or "",
            service_role_key=config.supabase_service_role_key() or "",
            anon_key=config.supabase_anon_key(),
            timeout_seconds=config.store_timeout_seconds(),
        )
    )


def build_presence_channel() -> PresenceChannel:
    if config.presence_mode() == "live":
        return InMemoryPresenceChannel(ttl_seconds=config.presence_ttl_seconds())
    return StaticPresenceChannel()


def build_desk_services(client: SupabaseClient | None = None) -> DeskServices:
    """Build lifecycle, notification and presence services with repository adapters.

    Supabase adapters are used when a client is given or configured; otherwise
    every store is in-memory.
    """

    supabase_client = client or build_supabase_client()
    if supabase_client is not None:
        transactions_repository = SupabaseTransactionsRepository(client=supabase_client)
        offers_repository = SupabaseOffersRepository(client=supabase_client)
        notifications_repository = SupabaseNotificationsRepository(client=supabase_client)
        api_keys_repository = SupabaseApiKeysRepository(client=supabase_client)
    else:
        transactions_repository = InMemoryTransactionsRepository()
        offers_repository = InMemoryOffersRepository(transactions_repository)
        notifications_repository = InMemoryNotificationsRepository()
        api_keys_repository = InMemoryApiKeysRepository()

    notification_store = NotificationStore(repository=notifications_repository)
    lifecycle = TransactionLifecycleController(
        transactions_repository=transactions_repository,
        offers_repository=offers_repository,
        notification_store=notification_store,
        app_base_url=config.app_base_url(),
    )
    logger.info(
        "desk_services_built store=%s presence_mode=%s",
        "supabase" if supabase_client is not None else "memory",
        config.presence_mode(),
    )
    return DeskServices(
        lifecycle=lifecycle,
        notification_store=notification_store,
        notifications_repository=notifications_repository,
        api_keys_repository=api_keys_repository,
        presence_channel=build_presence_channel(),
    )
