"""Bounded, backed-off retries for merging a flush into durable storage."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Sequence

from .models import RetryConfig, TallyEntry
from .storage import ChimeStore, StorageError

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Seconds to wait after failed *attempt* (0-based), capped at ``max_delay``."""
    delay = min(config.base_delay * (2**attempt), config.max_delay)
    if config.jitter:
        delay *= random.uniform(0.5, 1.5)  # noqa: S311
    return delay


def merge_with_retry(
    store: ChimeStore,
    batch: Sequence[TallyEntry],
    config: RetryConfig,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Merge *batch* into *store*, retrying on :class:`StorageError`.

    A merge is all-or-nothing, so repeating a failed one cannot double
    count. Returns the number of attempts used. The last ``StorageError``
    is re-raised once ``config.max_retries`` retries are spent; any other
    exception propagates on the first failure.
    """
    attempts = config.max_retries + 1
    for attempt in range(attempts):
        try:
            store.merge(batch)
            return attempt + 1
        except StorageError as exc:
            if attempt + 1 >= attempts:
                raise
            delay = backoff_delay(attempt, config)
            logger.warning(
                "Merge of %d entries failed (attempt %d/%d), retrying in %.2fs: %s",
                len(batch),
                attempt + 1,
                attempts,
                delay,
                exc,
            )
            sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover
