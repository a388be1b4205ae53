"""Shared schema base and helpers."""
from datetime import date
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel

from capa.core.time import as_date

T = TypeVar("T")


class WireModel(BaseModel):
    """Base for entities parsed from the remote store.

    Keys are snake_case by the time a payload reaches a model; the
    normalizer has already translated them.
    """

    class Config:
        from_attributes = True
        coerce_numbers_to_str = True


def coerce_date(value: Any) -> Optional[date]:
    """Accept ISO date or datetime strings for date-only fields."""
    if value is None or isinstance(value, (date, str)):
        return as_date(value)
    return value


class FetchResult(BaseModel, Generic[T]):
    """Result of a list read against the remote store.

    A failed read keeps ``items`` empty (or stale, when the caller passes
    previous items back in) and sets ``failed`` so callers can tell
    "no data" apart from "could not load".
    """
    items: List[T] = []
    failed: bool = False
    error: Optional[str] = None

    @classmethod
    def ok(cls, items: List[T]) -> "FetchResult[T]":
        return cls(items=items)

    @classmethod
    def failure(cls, error: str, stale: Optional[List[T]] = None) -> "FetchResult[T]":
        return cls(items=list(stale or []), failed=True, error=error)
