"""Dependency injection for FastAPI routes."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from fastapi import Request

from valora.core.config import ValoraConfig
from valora.quotes.cache import TTLCache
from valora.refresh.runtime import Runtime
from valora.storage.store import SqliteStore


@dataclass
class AppState:
    """Shared application state, attached to app.state during lifespan."""

    config: ValoraConfig
    store: SqliteStore
    cache: TTLCache
    runtime: Runtime | None = None
    clock: Callable[[], float] = field(default=time.time)


def get_app_state(request: Request) -> AppState:
    """Dependency: retrieve AppState from the request."""
    return request.app.state.app_state


def get_config(request: Request) -> ValoraConfig:
    """Dependency: retrieve config."""
    return request.app.state.app_state.config


def get_store(request: Request) -> SqliteStore:
    """Dependency: retrieve storage backend."""
    return request.app.state.app_state.store


def get_cache(request: Request) -> TTLCache:
    """Dependency: retrieve the response cache."""
    return request.app.state.app_state.cache
