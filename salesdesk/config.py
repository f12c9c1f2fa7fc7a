"""Runtime configuration for the app (toggleable during tests/runtime)."""
import logging
import os
from typing import NamedTuple

PRICE_POLICIES = ("latest", "effective")


class ConfigState(NamedTuple):
    search_limit: int
    price_policy: str
    id_attempts: int
    store_timeout: float


def load_from_env() -> ConfigState:
    policy = os.getenv("PRICE_POLICY", "latest").lower()
    if policy not in PRICE_POLICIES:
        raise ValueError(f"PRICE_POLICY must be one of {', '.join(PRICE_POLICIES)}")
    return ConfigState(
        search_limit=max(1, int(os.getenv("SEARCH_LIMIT", "50"))),
        price_policy=policy,
        id_attempts=max(1, int(os.getenv("ORDER_ID_ATTEMPTS", "5"))),
        store_timeout=float(os.getenv("STORE_TIMEOUT", "5")),
    )


state = load_from_env()


def set_config(**changes) -> ConfigState:
    global state
    if "price_policy" in changes and changes["price_policy"] not in PRICE_POLICIES:
        raise ValueError(f"price_policy must be one of {', '.join(PRICE_POLICIES)}")
    if "search_limit" in changes and int(changes["search_limit"]) < 1:
        raise ValueError("search_limit must be positive")
    state = state._replace(**changes)
    return state


def get() -> ConfigState:
    return state


def configure_logging(level: str | None = None):
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
