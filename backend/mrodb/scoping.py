# backend/mrodb/scoping.py
"""
Tenant-scoped query helpers.

Every read and write in the apps goes through these:
- `build_filter` always ANDs `company_id == principal.company_id` and
  composes the optional search / enum-set / date-range / self-scope parts.
- `get_scoped` fetches one row for the principal's tenant or raises
  NotFound; a foreign-tenant id looks exactly like a missing one.
- `paginate` applies most-recent-first ordering with the id as tie-breaker.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.orm import Query, Session

from .errors import NotFound
from .security import Principal

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass
class ListParams:
    search: Optional[str] = None
    search_fields: Sequence[Any] = ()
    enum_filters: Mapping[Any, Optional[Iterable[Any]]] = field(default_factory=dict)
    date_field: Any = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    owner_field: Any = None


def _as_start(value):
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    return value


def _as_end(value):
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.max, tzinfo=timezone.utc)
    return value


def build_filter(principal: Principal, model, params: Optional[ListParams] = None):
    """Return the predicate for `model` rows visible to `principal`."""
    clauses = [model.company_id == principal.company_id]
    if params is None:
        return and_(*clauses)

    term = (params.search or "").strip()
    if term and params.search_fields:
        like = f"%{term}%"
        clauses.append(or_(*[column.ilike(like) for column in params.search_fields]))

    for column, values in params.enum_filters.items():
        # An empty set means "no filter", not "match nothing".
        values = [v for v in (values or []) if v is not None and v != ""]
        if values:
            clauses.append(column.in_(values))

    if params.date_field is not None:
        if params.start is not None:
            clauses.append(params.date_field >= _as_start(params.start))
        if params.end is not None:
            clauses.append(params.date_field <= _as_end(params.end))

    if params.owner_field is not None and not principal.is_admin:
        clauses.append(params.owner_field == principal.user_id)

    return and_(*clauses)


def scoped_query(db: Session, principal: Principal, model, params: Optional[ListParams] = None) -> Query:
    return db.query(model).filter(build_filter(principal, model, params))


def get_scoped(
    db: Session,
    principal: Principal,
    model,
    object_id,
    *,
    resource: str = "Resource",
    owner_field: Any = None,
    fresh: bool = False,
):
    """
    Fetch one row in the principal's tenant or raise NotFound.

    `fresh` reloads the row and its eager relationships even when the
    session already holds it.
    """
    params = ListParams(owner_field=owner_field) if owner_field is not None else None
    query = db.query(model)
    if fresh:
        query = query.populate_existing()
    obj = query.filter(model.id == object_id, build_filter(principal, model, params)).first()
    if obj is None:
        raise NotFound(resource)
    return obj


def clamp_page(page: Optional[int], limit: Optional[int], default_limit: int = DEFAULT_PAGE_SIZE):
    page = max(int(page or 1), 1)
    limit = int(limit or default_limit)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    return page, limit


def paginate(query: Query, order_field, id_field, page: Optional[int], limit: Optional[int],
             default_limit: int = DEFAULT_PAGE_SIZE) -> dict:
    page, limit = clamp_page(page, limit, default_limit)
    total = query.order_by(None).count()
    items = (
        query.order_by(order_field.desc(), id_field.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "items": items,
        "pagination": {
            "current_page": page,
            "total_pages": total_pages,
            "total_count": total,
            "limit": limit,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
