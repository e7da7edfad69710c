"""Prahari — Record Normalizer."""

import logging
from typing import Any, Iterable, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger("prahari.normalizer")

RecordT = TypeVar("RecordT", bound=BaseModel)


def normalize_record(raw: Any, model: type[RecordT]) -> RecordT:
    """Validate a raw upstream dict (or an already-built record) into `model`."""
    if isinstance(raw, model):
        return raw
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=False)
    return model.model_validate(raw)


def normalize_batch(raw_records: Iterable[Any], model: type[RecordT]) -> tuple[list[RecordT], int]:
    """Normalize a batch, skipping invalid records.

    Returns the valid records and the number of records that were dropped.
    """
    results: list[RecordT] = []
    dropped = 0
    for raw in raw_records or []:
        try:
            results.append(normalize_record(raw, model))
        except (ValidationError, TypeError) as e:
            dropped += 1
            title = raw.get("title") if isinstance(raw, dict) else None
            logger.warning("Failed to normalize %s: %s, title: %s",
                           model.__name__, e.errors() if isinstance(e, ValidationError) else e, title)
    return results, dropped
