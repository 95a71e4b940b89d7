"""Filtered, sorted and paginated read views over ledger entries.

Queries fail closed: a malformed filter, sort or page raises
:class:`QueryError` instead of returning a partially filtered result.
Nothing here mutates the entries it is given.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from pydantic import field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..errors import QueryError
from .models import ActorType, EventCategory, EventType, LedgerEntry, ReviewStatus, Severity


class _QueryModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="forbid"
    )

    @classmethod
    def parse(cls, data: Mapping[str, Any] | None = None, **kwargs: Any):
        """Build from a mapping, converting pydantic errors to :class:`QueryError`."""
        payload = dict(data or {}, **kwargs)
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as exc:
            issues = [
                f"{'.'.join(str(part) for part in err['loc']) or cls.__name__}: {err['msg']}"
                for err in exc.errors()
            ]
            raise QueryError(f"invalid {cls.__name__}", issues) from exc


class LedgerFilter(_QueryModel):
    """Conjunction of predicates. An empty or missing set places no constraint."""

    actor_types: list[ActorType] = Field(default_factory=list)
    actor_ids: list[str] = Field(default_factory=list)
    categories: list[EventCategory] = Field(default_factory=list)
    severities: list[Severity] = Field(default_factory=list)
    event_types: list[EventType] = Field(default_factory=list)
    statuses: list[str] = Field(default_factory=list)
    space_ids: list[str] = Field(default_factory=list)
    project_ids: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    review_statuses: list[ReviewStatus] = Field(default_factory=list)
    flagged_only: bool = False
    search: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None

    @field_validator("date_from", "date_to")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_range(self) -> "LedgerFilter":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("dateFrom must not be after dateTo")
        return self

    def matches(self, entry: LedgerEntry) -> bool:
        if self.actor_types and entry.who.type not in self.actor_types:
            return False
        if self.actor_ids and entry.who.id not in self.actor_ids:
            return False
        if self.categories and entry.what.category not in self.categories:
            return False
        if self.severities and entry.what.severity not in self.severities:
            return False
        if self.event_types and entry.what.type not in self.event_types:
            return False
        if self.statuses and entry.what.status not in self.statuses:
            return False
        if self.space_ids and entry.where.space_id not in self.space_ids:
            return False
        if self.project_ids and entry.where.project_id not in self.project_ids:
            return False
        if self.tags and not set(self.tags) & set(entry.tags):
            return False
        if self.review_statuses and entry.review_status not in self.review_statuses:
            return False
        if self.flagged_only and not entry.is_flagged:
            return False
        if self.search and not _search_hit(entry, self.search.lower()):
            return False
        if self.date_from and entry.when < self.date_from:
            return False
        if self.date_to and entry.when > self.date_to:
            return False
        return True


class SortField(str, Enum):
    WHEN = "when"
    SEQUENCE = "sequence"
    SEVERITY = "severity"
    CATEGORY = "category"


_SORT_KEYS: dict[SortField, Callable[[LedgerEntry], Any]] = {
    SortField.WHEN: lambda entry: entry.when,
    SortField.SEQUENCE: lambda entry: entry.sequence,
    SortField.SEVERITY: lambda entry: entry.what.severity.rank,
    SortField.CATEGORY: lambda entry: entry.what.category.value,
}


class LedgerSort(_QueryModel):
    field: SortField = SortField.WHEN
    descending: bool = True


class PageRequest(_QueryModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=25, ge=1)


class LedgerPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    entries: list[LedgerEntry]
    page: int
    page_size: int
    total_count: int
    total_pages: int

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


def run_query(
    entries: Sequence[LedgerEntry],
    filter: LedgerFilter | Mapping[str, Any] | None = None,
    sort: LedgerSort | Mapping[str, Any] | None = None,
    page: PageRequest | Mapping[str, Any] | None = None,
    *,
    max_page_size: int | None = None,
) -> LedgerPage:
    """Filter, then sort, then paginate ``entries`` (given in sequence order).

    Sorting is stable, so entries with equal keys keep sequence order.
    """
    flt = _coerce(LedgerFilter, filter)
    order = _coerce(LedgerSort, sort)
    paging = _coerce(PageRequest, page)
    if max_page_size is not None and paging.page_size > max_page_size:
        raise QueryError(
            "invalid PageRequest", [f"pageSize: must be at most {max_page_size}"]
        )

    selected = [entry for entry in entries if flt.matches(entry)]
    selected.sort(key=lambda entry: entry.sequence)
    selected.sort(key=_SORT_KEYS[order.field], reverse=order.descending)

    total = len(selected)
    start = (paging.page - 1) * paging.page_size
    return LedgerPage(
        entries=selected[start : start + paging.page_size],
        page=paging.page,
        page_size=paging.page_size,
        total_count=total,
        total_pages=math.ceil(total / paging.page_size),
    )


def _coerce(model: type[_QueryModel], value: Any) -> Any:
    if value is None:
        return model()
    if isinstance(value, model):
        return value
    if isinstance(value, Mapping):
        return model.parse(value)
    raise QueryError(f"invalid {model.__name__}", [f"expected mapping, got {type(value).__name__}"])


def _search_hit(entry: LedgerEntry, needle: str) -> bool:
    if needle in entry.what.description.lower():
        return True
    if entry.who.name and needle in entry.who.name.lower():
        return True
    return any(needle in tag.lower() for tag in entry.tags)
