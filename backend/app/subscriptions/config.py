"""Engine configuration helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

_STORE_BACKENDS = {"postgres", "memory"}


@dataclass(frozen=True)
class EngineConfig:
    """Runtime settings for the subscription engine and its HTTP surface."""

    store_backend: str
    page_size: int
    magazine_tag: str
    subscription_update_attempts: int
    shopify_api_key: str
    shopify_api_secret: str

    @property
    def verifies_requests(self) -> bool:
        return bool(self.shopify_api_secret)


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def load_engine_config(env: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """Load :class:`EngineConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    store_backend = (env_mapping.get("STORE_BACKEND") or "postgres").strip().lower()
    if store_backend not in _STORE_BACKENDS:
        raise ValueError(f"STORE_BACKEND must be one of {sorted(_STORE_BACKENDS)}, got {store_backend!r}")

    page_size = _to_int(env_mapping.get("STORE_PAGE_SIZE"), default=250)
    if page_size < 1:
        raise ValueError("STORE_PAGE_SIZE must be >= 1")

    attempts = max(1, _to_int(env_mapping.get("SUBSCRIPTION_UPDATE_ATTEMPTS"), default=3))
    magazine_tag = (env_mapping.get("MAGAZINE_PRODUCT_TAG") or "magazine").strip() or "magazine"

    return EngineConfig(
        store_backend=store_backend,
        page_size=page_size,
        magazine_tag=magazine_tag,
        subscription_update_attempts=attempts,
        shopify_api_key=env_mapping.get("SHOPIFY_API_KEY", ""),
        shopify_api_secret=env_mapping.get("SHOPIFY_API_SECRET", ""),
    )


__all__ = ["EngineConfig", "load_engine_config"]
