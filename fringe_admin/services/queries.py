"""Backend-neutral description of table queries.

Routes build a :class:`TableQuery` and hand it to
:class:`~fringe_admin.services.database_service.DatabaseService`, which turns it
into either a Supabase PostgREST request or a scan over the local JSON store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

OPERATORS = {"eq", "neq", "gt", "gte", "lt", "lte", "in", "is_null", "not_null", "ilike", "ov"}


class DatabaseError(Exception):
    """Raised when the hosted database (or the local store) rejects an operation."""


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any = None

    def __post_init__(self) -> None:
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


@dataclass(frozen=True)
class Relation:
    """A to-one embed such as ``courses_categories(id,name,slug)``."""

    table: str
    foreign_key: str
    columns: Tuple[str, ...] = ("id", "name")

    def select_fragment(self) -> str:
        return f"{self.table}({','.join(self.columns)})"


@dataclass
class TableQuery:
    table: str
    filters: List[Filter] = field(default_factory=list)
    search: Optional[str] = None
    search_columns: Sequence[str] = ()
    order: List[Tuple[str, bool]] = field(default_factory=list)
    offset: Optional[int] = None
    limit: Optional[int] = None
    count: bool = False
    relations: Sequence[Relation] = ()
    columns: Sequence[str] = ()

    def where(self, column: str, value: Any, op: str = "eq") -> "TableQuery":
        self.filters.append(Filter(column, op, value))
        return self

    def matching(self, term: Optional[str], columns: Sequence[str]) -> "TableQuery":
        term = (term or "").strip()
        if term and columns:
            self.search = term
            self.search_columns = tuple(columns)
        return self

    def order_by(self, column: str, descending: bool = False) -> "TableQuery":
        self.order.append((column, descending))
        return self

    def page(self, page: int, per_page: int) -> "TableQuery":
        self.offset = (page - 1) * per_page
        self.limit = per_page
        self.count = True
        return self

    def take(self, limit: int, offset: int = 0) -> "TableQuery":
        self.limit = limit
        self.offset = offset
        return self

    def select_clause(self) -> str:
        parts = [",".join(self.columns) if self.columns else "*"]
        parts.extend(relation.select_fragment() for relation in self.relations)
        return ", ".join(parts)


@dataclass
class QueryResult:
    rows: List[Dict[str, Any]]
    count: Optional[int] = None

    @property
    def total(self) -> int:
        return self.count if self.count is not None else len(self.rows)
