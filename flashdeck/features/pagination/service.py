"""
flashdeck/features/pagination/service.py

List query compiler.

Each resource declares one ListQueryConfig at import time: which table, which
query params map to which columns, which columns may be sorted on and which
associations get nested into each row. Request params only ever select among
those declared options; nothing from the query string reaches SQL as a column
name or operator.

Two statements per call: COUNT(DISTINCT pk) over the filtered join, then the
page of distinct base rows. Associations are batch-loaded for the page.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from math import ceil
from typing import Any, Callable, ContextManager, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple
import logging

from sqlalchemy import Boolean, Column, Table, and_, distinct, func, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from flashdeck.core.database import MAX_INTEGER, get_db_session
from flashdeck.core.errors import InvalidSortFieldError, ValidationError
from flashdeck.core.fields import to_snake_key


logger = logging.getLogger(__name__)

SORT_ORDERS = {"ASC", "DESC"}
TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Join:
    """
    Association nested under `name` in every returned row.

    many-to-one:  base.local_key == target.remote_key           (many=False)
    one-to-many:  base.local_key == target.remote_key           (many=True)
    many-to-many: base.local_key == through.through_local,
                  through.through_remote == target.remote_key   (many=True)
    """
    name: str
    target: Table
    columns: Tuple[str, ...]
    local_key: str
    remote_key: str
    many: bool = False
    through: Optional[Table] = None
    through_local: Optional[str] = None
    through_remote: Optional[str] = None


@dataclass(frozen=True)
class JoinFilter:
    """Restrict base rows to those with at least one association matching `clause`."""
    join: Join
    clause: ColumnElement


@dataclass(frozen=True)
class ListQueryConfig:
    resource: str
    table: Table
    allowed_sort_fields: FrozenSet[str]
    default_sort: str
    default_order: str = "DESC"
    named_filters: Mapping[str, str] = field(default_factory=dict)
    base_filter: Tuple[ColumnElement, ...] = ()
    projection: Optional[Tuple[str, ...]] = None
    joins: Tuple[Join, ...] = ()
    default_limit: int = 12
    max_limit: int = 100

    @property
    def primary_key(self) -> Column:
        return list(self.table.primary_key.columns)[0]


@dataclass
class Pagination:
    total: int
    page: int
    limit: int
    total_pages: int
    has_more: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
            "hasMore": self.has_more,
        }


@dataclass
class PaginatedResult:
    items: List[Dict[str, Any]]
    pagination: Pagination

    def to_dict(self) -> Dict[str, Any]:
        return {"items": self.items, "pagination": self.pagination.to_dict()}


@dataclass(frozen=True)
class PageRequest:
    page: int
    limit: int
    offset: int
    sort_field: str
    sort_order: str


def _parse_int(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def resolve_page_request(config: ListQueryConfig, query: Mapping[str, Any]) -> PageRequest:
    """
    Parse page/limit/sortBy/sortOrder.

    Numeric params are permissive (bad values fall back to defaults, limit is
    clamped to max_limit). Sorting is strict: the field must be allow-listed.
    """
    limit = _parse_int(query.get("limit"))
    if limit is None or limit < 1:
        limit = config.default_limit
    limit = min(limit, config.max_limit)

    page = _parse_int(query.get("page")) or 1
    if page < 1:
        page = 1
    # Far-out pages are simply empty; keep the offset bindable
    page = min(page, MAX_INTEGER // limit)

    raw_sort = query.get("sortBy") or config.default_sort
    sort_field = to_snake_key(str(raw_sort))
    if sort_field not in config.allowed_sort_fields:
        raise InvalidSortFieldError(str(raw_sort), config.allowed_sort_fields)

    raw_order = query.get("sortOrder") or config.default_order
    sort_order = str(raw_order).strip().upper()
    if sort_order not in SORT_ORDERS:
        raise ValidationError(f"Invalid sort order: {raw_order}")

    return PageRequest(
        page=page,
        limit=limit,
        offset=(page - 1) * limit,
        sort_field=sort_field,
        sort_order=sort_order,
    )


def coerce_filter_value(column: Column, raw: Any) -> Any:
    """Convert a query-string value to the column's Python type."""
    if not isinstance(raw, str):
        return raw
    text = raw.strip()
    if isinstance(column.type, Boolean):
        lowered = text.lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
        raise ValidationError(f"Invalid value for {column.name}: {raw}")
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return text
    try:
        if python_type is int:
            value = int(text)
            if abs(value) > MAX_INTEGER:
                raise ValidationError(f"Invalid value for {column.name}: {raw}")
            return value
        if python_type is Decimal:
            return Decimal(text)
        if python_type is float:
            return float(text)
    except (ValueError, InvalidOperation):
        raise ValidationError(f"Invalid value for {column.name}: {raw}")
    return text


def build_where(config: ListQueryConfig, query: Mapping[str, Any], extra: Sequence[ColumnElement] = ()) -> List[ColumnElement]:
    clauses: List[ColumnElement] = list(config.base_filter)
    for param, column_name in config.named_filters.items():
        raw = query.get(param)
        if raw is None or raw == "":
            continue
        column = config.table.c[column_name]
        clauses.append(column == coerce_filter_value(column, raw))
    clauses.extend(extra)
    return clauses


def _from_clause(config: ListQueryConfig, join_filters: Sequence[JoinFilter]):
    base = config.table
    from_clause = base
    for jf in join_filters:
        j = jf.join
        if j.through is not None:
            from_clause = from_clause.join(j.through, base.c[j.local_key] == j.through.c[j.through_local])
            from_clause = from_clause.join(j.target, j.through.c[j.through_remote] == j.target.c[j.remote_key])
        else:
            from_clause = from_clause.join(j.target, base.c[j.local_key] == j.target.c[j.remote_key])
    return from_clause


def _projection_columns(config: ListQueryConfig, sort_field: str) -> List[Column]:
    table = config.table
    names = list(config.projection) if config.projection else [c.name for c in table.columns]
    # Page keys, the sort column and every join key must be selectable
    required = [config.primary_key.name, sort_field] + [j.local_key for j in config.joins]
    for name in required:
        if name not in names:
            names.append(name)
    return [table.c[name] for name in names]


def load_joins(session: Session, joins: Sequence[Join], rows: List[Dict[str, Any]]) -> None:
    for j in joins:
        keys = sorted({row[j.local_key] for row in rows if row.get(j.local_key) is not None})
        grouped: Dict[Any, List[Dict[str, Any]]] = {}
        if keys:
            target_cols = [j.target.c[name] for name in j.columns]
            if j.through is not None:
                owner = j.through.c[j.through_local]
                stmt = (
                    select(owner.label("_owner"), *target_cols)
                    .select_from(j.through.join(j.target, j.through.c[j.through_remote] == j.target.c[j.remote_key]))
                    .where(owner.in_(keys))
                )
            else:
                owner = j.target.c[j.remote_key]
                stmt = select(owner.label("_owner"), *target_cols).where(owner.in_(keys))
            order_col = j.target.c[j.columns[0]]
            for rec in session.execute(stmt.order_by(order_col)).mappings():
                item = {name: rec[name] for name in j.columns}
                grouped.setdefault(rec["_owner"], []).append(item)

        for row in rows:
            matches = grouped.get(row.get(j.local_key), [])
            row[j.name] = matches if j.many else (matches[0] if matches else None)


def paginate(
    config: ListQueryConfig,
    query: Mapping[str, Any],
    *,
    where: Sequence[ColumnElement] = (),
    join_filters: Sequence[JoinFilter] = (),
    session_scope: Callable[[], ContextManager[Session]] = get_db_session,
) -> PaginatedResult:
    """
    Run a bounded, allow-listed list query.

    Args:
        config: per-resource declaration
        query: raw request params (camelCase keys, string values)
        where: extra clauses computed by the caller (search, presets)
        join_filters: association constraints (tag name, liked-by user)

    Raises:
        InvalidSortFieldError: sortBy not allow-listed (raised before any SQL runs)
        ValidationError: bad sortOrder or an uncoercible named filter value
    """
    page_req = resolve_page_request(config, query)
    clauses = build_where(config, query, where)
    clauses.extend(jf.clause for jf in join_filters)
    condition = and_(*clauses) if clauses else None

    from_clause = _from_clause(config, join_filters)
    pk = config.primary_key
    sort_col = config.table.c[page_req.sort_field]
    ordering = sort_col.asc() if page_req.sort_order == "ASC" else sort_col.desc()

    count_stmt = select(func.count(distinct(pk))).select_from(from_clause)
    page_stmt = select(*_projection_columns(config, page_req.sort_field)).select_from(from_clause)
    if condition is not None:
        count_stmt = count_stmt.where(condition)
        page_stmt = page_stmt.where(condition)
    page_stmt = (
        page_stmt.distinct()
        .order_by(ordering, pk.asc())
        .limit(page_req.limit)
        .offset(page_req.offset)
    )

    with session_scope() as session:
        total = session.execute(count_stmt).scalar() or 0
        rows = [dict(r) for r in session.execute(page_stmt).mappings()]
        if rows and config.joins:
            load_joins(session, config.joins, rows)

    total_pages = ceil(total / page_req.limit) if total else 0
    logger.debug(
        "[pagination] page computed",
        extra={"resource": config.resource, "total": total, "page": page_req.page},
    )
    return PaginatedResult(
        items=rows,
        pagination=Pagination(
            total=total,
            page=page_req.page,
            limit=page_req.limit,
            total_pages=total_pages,
            has_more=page_req.page < total_pages,
        ),
    )


def date_range_filter(column: Column, start: Optional[Any] = None, end: Optional[Any] = None) -> List[ColumnElement]:
    """Inclusive date range; ISO strings or datetimes. Missing bounds are open."""
    clauses: List[ColumnElement] = []
    for bound, op in ((start, "ge"), (end, "le")):
        if bound in (None, ""):
            continue
        if isinstance(bound, str):
            try:
                bound = datetime.fromisoformat(bound)
            except ValueError:
                raise ValidationError(f"Invalid date: {bound}")
        clauses.append(column >= bound if op == "ge" else column <= bound)
    return clauses


def text_search_filter(columns: Sequence[Column], term: Optional[str]) -> Optional[ColumnElement]:
    """Case-insensitive substring match across columns; terms under 2 or over 100 chars are ignored."""
    if not term or not isinstance(term, str):
        return None
    trimmed = term.strip()
    if len(trimmed) < 2 or len(trimmed) > 100:
        return None
    escaped = trimmed.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{escaped}%"
    return or_(*[func.lower(col).like(pattern, escape="\\") for col in columns])
