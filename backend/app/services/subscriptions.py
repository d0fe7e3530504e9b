"""Application wiring for the subscription engine."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Callable, Optional

from ..subscriptions import (
    AssociationSynchronizer,
    EngineConfig,
    EntitlementAllocator,
    EntitlementStore,
    InMemoryRecordStore,
    IssueEligibilitySelector,
    RecordStore,
    RecordStoreOrderGateway,
    RenewalOrderService,
    ShippingListService,
    ShortageAlertEmitter,
    SubscriptionLifecycleManager,
    load_engine_config,
)
from ..subscriptions.postgres import PostgresRecordStore


logger = logging.getLogger("subscriptions")


@dataclass(frozen=True)
class SubscriptionEngine:
    """Every engine component, built once over a shared record store."""

    config: EngineConfig
    record_store: RecordStore
    store: EntitlementStore
    lifecycle: SubscriptionLifecycleManager
    sync: AssociationSynchronizer
    alerts: ShortageAlertEmitter
    renewals: RenewalOrderService
    shipping: ShippingListService


def build_engine(
    config: EngineConfig,
    record_store: RecordStore,
    *,
    clock: Optional[Callable[[], datetime]] = None,
) -> SubscriptionEngine:
    store = EntitlementStore(record_store, page_size=config.page_size)
    selector = IssueEligibilitySelector(store, clock=clock)
    allocator = EntitlementAllocator(store)
    alerts = ShortageAlertEmitter(store, clock=clock)
    lifecycle = SubscriptionLifecycleManager(
        store,
        selector,
        allocator,
        alerts,
        magazine_tag=config.magazine_tag,
        update_attempts=config.subscription_update_attempts,
        clock=clock,
    )
    return SubscriptionEngine(
        config=config,
        record_store=record_store,
        store=store,
        lifecycle=lifecycle,
        sync=AssociationSynchronizer(store),
        alerts=alerts,
        renewals=RenewalOrderService(store, RecordStoreOrderGateway(record_store, clock=clock), lifecycle),
        shipping=ShippingListService(store),
    )


def create_record_store(config: EngineConfig) -> RecordStore:
    if config.store_backend == "memory":
        logger.warning("Using the in-memory record store; data is lost on restart")
        return InMemoryRecordStore()
    return PostgresRecordStore()


@lru_cache(maxsize=1)
def get_engine_config() -> EngineConfig:
    return load_engine_config()


@lru_cache(maxsize=1)
def get_engine() -> SubscriptionEngine:
    config = get_engine_config()
    engine = build_engine(config, create_record_store(config))
    logger.info(
        "Subscription engine ready backend=%s page_size=%d tag=%r verify_requests=%s",
        config.store_backend,
        config.page_size,
        config.magazine_tag,
        config.verifies_requests,
    )
    return engine


__all__ = ["SubscriptionEngine", "build_engine", "create_record_store", "get_engine", "get_engine_config"]
