"""CLI helpers for backend-aware table store construction."""

from __future__ import annotations

import os

from fattable.config import FatTableConfig
from fattable.keys import clean_table_name
from fattable.storage import TableStoreProtocol, open_table_store


def resolve_storage_binding() -> tuple[str | None, str | None]:
    """Return (db_path, storage_uri) from CLI state."""
    from fattable.cli import state

    if state.storage_uri:
        return None, state.storage_uri
    return state.db, None


def _float_env(name: str) -> float | None:
    raw = os.getenv(name)
    return float(raw) if raw else None


def _config_from_env() -> FatTableConfig:
    """Build config from FATTABLE_* environment variables."""
    config = FatTableConfig(
        dynamodb_region=os.getenv("FATTABLE_DYNAMODB_REGION") or os.getenv("AWS_REGION"),
        dynamodb_endpoint_url=os.getenv("FATTABLE_DYNAMODB_ENDPOINT_URL"),
        request_timeout_s=_float_env("FATTABLE_REQUEST_TIMEOUT"),
    )
    page_size = os.getenv("FATTABLE_PAGE_SIZE")
    if page_size:
        config.page_size = int(page_size)
    return config


def require_table() -> str:
    from fattable.cli import state

    if not state.table:
        raise ValueError("no table selected; pass --table or set FATTABLE_TABLE")
    return clean_table_name(state.table)


def open_store() -> TableStoreProtocol:
    """Open the selected table using global CLI storage selection."""
    db_path, storage_uri = resolve_storage_binding()
    return open_table_store(
        require_table(),
        storage_uri=storage_uri,
        db_path=db_path,
        config=_config_from_env(),
    )
