"""Configuration for fattable table contexts and backends."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class FatTableConfig:
    """Configuration for table contexts, the write engine, and storage backends."""

    max_workers: int = 8
    page_size: int = 1000
    request_timeout_s: float | None = None
    max_chunk_size: int = 63_997
    max_slots: int = 16
    # None follows the backend's requires_upsert_before_delete flag
    upsert_before_delete: bool | None = None
    default_index_name: str = "Default"
    sqlite_busy_timeout_s: float = 5.0
    dynamodb_region: str | None = None
    dynamodb_endpoint_url: str | None = None
    dynamodb_request_timeout_s: float = 10.0
    dynamodb_max_attempts: int = 5
    dynamodb_read_capacity: int | None = None
    dynamodb_write_capacity: int | None = None
