"""Typed data models used across windchimes."""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, Field

RESOURCE_PATTERN = re.compile(r"scratch/[0-9]{3,11}")

DEFAULT_ALLOWED_ORIGINS = [
    "https://turbowarp.org",
    "https://experiments.turbowarp.org",
    "https://staging.turbowarp.org",
    "https://mirror.turbowarp.xyz",
]


class EventKind(str, Enum):
    """Recognized view interactions."""

    INDEX = "view/index"
    EMBED = "view/embed"


class RejectReason(str, Enum):
    """Why the abuse guard dropped a submission."""

    INVALID_INPUT = "invalid_input"
    NOT_IN_SAMPLE = "not_in_sample"
    DUPLICATE_EVENT = "duplicate_event"
    TOO_MANY_EVENTS_PER_USER = "too_many_events_per_user"
    TOO_MANY_USERS = "too_many_users"
    SHUTTING_DOWN = "shutting_down"


def is_valid_resource(resource: object) -> bool:
    """True if *resource* names a countable content item."""
    return isinstance(resource, str) and RESOURCE_PATTERN.fullmatch(resource) is not None


def is_valid_event(event: object) -> bool:
    return isinstance(event, str) and event in {kind.value for kind in EventKind}


def day_index(timestamp: float) -> int:
    """Whole days elapsed since the Unix epoch at *timestamp* (seconds)."""
    return int(timestamp // 86_400)


class TallyEntry(BaseModel):
    """One durable increment produced by a flush."""

    resource: str
    event: str
    day: int = Field(..., ge=0)
    delta: int = Field(..., ge=0)


class TotalRecord(BaseModel):
    """Cumulative tally for a (resource, event) key."""

    resource: str
    event: str
    tally: int = Field(..., ge=0)


class RetryConfig(BaseModel):
    """Bounded retry policy for durable merges."""

    max_retries: int = Field(3, ge=0)
    base_delay: float = Field(0.5, gt=0.0)
    max_delay: float = Field(10.0, gt=0.0)
    jitter: bool = True


class ChimeConfig(BaseModel):
    """Runtime configuration switches."""

    period_seconds: float = Field(3600.0, gt=0.0)
    max_events_per_user: int = Field(10, ge=1)
    max_users_per_period: int = Field(100_000, ge=1)
    counting_probability: float = Field(1.0, ge=0.0, le=1.0)
    salt_size_bytes: int = Field(256, ge=32)
    store_path: str | None = None
    store_url: str | None = None
    allowed_origins: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    retry: RetryConfig = Field(default_factory=RetryConfig)
