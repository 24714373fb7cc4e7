"""
Table Params - parse the data-table query string into a typed PageRequest.

Query string contract::

    ?page=2&perPage=20&columns=cert,name,asset
    &filters=[{"id":"stalp","value":"CA","operator":"eq"}]
    &sort=[{"id":"asset","desc":true}]
    &joinOperator=or

Malformed input never rejects the request: bad JSON becomes an empty list,
individual bad descriptors are dropped, bad integers fall back to defaults.
"""
from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

log = logging.getLogger(__name__)

ID_COLUMN = "id"
DEFAULT_PER_PAGE = 10
MAX_PER_PAGE = 500
DEFAULT_COLUMNS = ["cert", "name", "city", "stalp", "asset", "dep", "estymd"]


class FilterOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    ILIKE = "iLike"
    IN_ARRAY = "inArray"


class FilterDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    column_id: str = Field(alias="id", min_length=1)
    operator: FilterOperator = FilterOperator.EQ
    value: str | list[str] | None = None

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        # JSON numbers and booleans arrive typed; the builder coerces per column
        if isinstance(v, (int, float, bool)):
            return str(v)
        if isinstance(v, list):
            return [str(x) for x in v if x is not None]
        return v

    def is_empty(self) -> bool:
        if self.value is None:
            return True
        if isinstance(self.value, list):
            return not any(str(x).strip() for x in self.value)
        return not self.value.strip()


class SortDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    column_id: str = Field(alias="id", min_length=1)
    desc: bool = False


class PageRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int = 1
    per_page: int = DEFAULT_PER_PAGE
    filters: tuple[FilterDescriptor, ...] = ()
    sort: tuple[SortDescriptor, ...] = ()
    join_operator: Literal["and", "or"] = "and"
    columns: tuple[str, ...] = (ID_COLUMN, *DEFAULT_COLUMNS)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    def cache_params(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def _parse_int(raw: str | None, default: int, lo: int = 1, hi: int | None = None) -> int:
    try:
        val = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    if val < lo:
        return default
    if hi is not None and val > hi:
        return hi
    return val


def _parse_json_list(raw: str | None, param: str) -> list:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        log.warning("Ignoring malformed %s parameter: %r", param, raw[:200])
        return []
    if not isinstance(data, list):
        log.warning("Ignoring non-list %s parameter: %r", param, raw[:200])
        return []
    return data


def parse_filters(raw: str | None) -> tuple[FilterDescriptor, ...]:
    out = []
    for item in _parse_json_list(raw, "filters"):
        try:
            out.append(FilterDescriptor.model_validate(item))
        except ValidationError as e:
            log.warning("Dropping invalid filter %r: %s", item, e.errors()[0].get("msg", e))
    return tuple(out)


def parse_sort(raw: str | None) -> tuple[SortDescriptor, ...]:
    out = []
    for item in _parse_json_list(raw, "sort"):
        try:
            out.append(SortDescriptor.model_validate(item))
        except ValidationError as e:
            log.warning("Dropping invalid sort %r: %s", item, e.errors()[0].get("msg", e))
    return tuple(out)


def parse_columns(raw: str | None) -> tuple[str, ...]:
    """Comma list -> ordered unique ids, always led by the identifier column."""
    requested = [c.strip() for c in (raw or "").split(",") if c.strip()]
    if not requested:
        requested = list(DEFAULT_COLUMNS)
    seen = {ID_COLUMN}
    cols = [ID_COLUMN]
    for col in requested:
        if col not in seen:
            seen.add(col)
            cols.append(col)
    return tuple(cols)


def parse_page_request(
    page: str | None = None,
    per_page: str | None = None,
    columns: str | None = None,
    filters: str | None = None,
    sort: str | None = None,
    join_operator: str | None = None,
    default_per_page: int = DEFAULT_PER_PAGE,
) -> PageRequest:
    join = (join_operator or "").strip().lower()
    return PageRequest(
        page=_parse_int(page, 1),
        per_page=_parse_int(per_page, default_per_page, hi=MAX_PER_PAGE),
        filters=parse_filters(filters),
        sort=parse_sort(sort),
        join_operator="or" if join == "or" else "and",
        columns=parse_columns(columns),
    )


def valid_filters(filters: tuple[FilterDescriptor, ...]) -> tuple[FilterDescriptor, ...]:
    """Drop filters whose value is empty; they never constrain the result."""
    return tuple(f for f in filters if not f.is_empty())
