from __future__ import annotations

import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

import redis
from supabase import Client as SupabaseClient, create_client

from ..utils.dates import now_iso, parse_datetime
from .queries import DatabaseError, Filter, QueryResult, Relation, TableQuery

logger = logging.getLogger(__name__)


class DatabaseService:
    """Table access for the admin console.

    Talks to Supabase when credentials are configured. Without them every table
    lives in a JSON document under ``STORAGE_DATA_DIR`` (mirrored to Redis when
    ``REDIS_URL`` is set) so the console can be exercised locally and in tests.
    """

    def __init__(self) -> None:
        self._supabase: Optional[SupabaseClient] = self._init_supabase()
        self._redis: Optional[Any] = None if self._supabase else self._init_redis()
        self._lock = threading.RLock()

        data_dir = Path(os.getenv('STORAGE_DATA_DIR', '/tmp/fringe-admin-data')).expanduser()
        data_dir.mkdir(parents=True, exist_ok=True)
        self._data_dir = data_dir.resolve()

    @property
    def client(self) -> Optional[SupabaseClient]:
        return self._supabase

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def backend(self) -> str:
        return 'supabase' if self._supabase else 'local'

    # ------------------------------------------------------------------ reads
    def select(self, query: TableQuery) -> QueryResult:
        if self._supabase:
            return self._supabase_select(query)
        return self._local_select(query)

    def get(self, table: str, record_id: Any, relations: Sequence[Relation] = ()) -> Optional[Dict[str, Any]]:
        result = self.select(TableQuery(table, filters=[Filter('id', 'eq', record_id)], relations=relations, limit=1))
        return result.rows[0] if result.rows else None

    def find_one(self, table: str, filters: Iterable[Filter]) -> Optional[Dict[str, Any]]:
        result = self.select(TableQuery(table, filters=list(filters), limit=1))
        return result.rows[0] if result.rows else None

    def exists(self, table: str, filters: Iterable[Filter]) -> bool:
        return self.find_one(table, filters) is not None

    def count(self, table: str, filters: Iterable[Filter] = ()) -> int:
        filters = list(filters)
        if self._supabase:
            builder = self._supabase.table(table).select('id', count='exact', head=True)
            builder = self._apply_filters(builder, filters)
            response = self._execute(builder, table)
            return int(response.count or 0)
        return len(self._filtered(self._load_table(table), filters, None, ()))

    # ----------------------------------------------------------------- writes
    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        rows = self.insert_many(table, [values])
        if not rows:
            raise DatabaseError(f'Insert into {table} returned no rows')
        return rows[0]

    def insert_many(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not rows:
            return []
        if self._supabase:
            response = self._execute(self._supabase.table(table).insert(rows), table)
            return list(response.data or [])

        with self._lock:
            stored = self._load_table(table)
            created = []
            for values in rows:
                record = dict(values)
                record.setdefault('id', str(uuid4()))
                record.setdefault('created_at', now_iso())
                stored.append(record)
                created.append(dict(record))
            self._save_table(table, stored)
        return created

    def update(self, table: str, values: Dict[str, Any], filters: Iterable[Filter]) -> List[Dict[str, Any]]:
        filters = list(filters)
        if not filters:
            raise DatabaseError('Refusing to update without filters')
        if self._supabase:
            builder = self._apply_filters(self._supabase.table(table).update(values), filters)
            response = self._execute(builder, table)
            return list(response.data or [])

        with self._lock:
            stored = self._load_table(table)
            updated = []
            for record in stored:
                if self._matches(record, filters):
                    record.update(values)
                    updated.append(dict(record))
            self._save_table(table, stored)
        return updated

    def update_by_id(self, table: str, record_id: Any, values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = self.update(table, values, [Filter('id', 'eq', record_id)])
        return rows[0] if rows else None

    def delete(self, table: str, filters: Iterable[Filter]) -> List[Dict[str, Any]]:
        filters = list(filters)
        if not filters:
            raise DatabaseError('Refusing to delete without filters')
        if self._supabase:
            builder = self._apply_filters(self._supabase.table(table).delete(), filters)
            response = self._execute(builder, table)
            return list(response.data or [])

        with self._lock:
            stored = self._load_table(table)
            kept, removed = [], []
            for record in stored:
                (removed if self._matches(record, filters) else kept).append(record)
            self._save_table(table, kept)
        return removed

    def upsert(self, table: str, values: Dict[str, Any], on_conflict: Sequence[str]) -> Dict[str, Any]:
        if self._supabase:
            builder = self._supabase.table(table).upsert(values, on_conflict=','.join(on_conflict))
            response = self._execute(builder, table)
            rows = list(response.data or [])
            if not rows:
                raise DatabaseError(f'Upsert into {table} returned no rows')
            return rows[0]

        with self._lock:
            match = [Filter(column, 'eq', values.get(column)) for column in on_conflict]
            existing = self._filtered(self._load_table(table), match, None, ())
            if existing:
                return self.update(table, values, [Filter('id', 'eq', existing[0]['id'])])[0]
            return self.insert(table, values)

    # --------------------------------------------------------------- supabase
    def _supabase_select(self, query: TableQuery) -> QueryResult:
        builder = self._supabase.table(query.table).select(
            query.select_clause(), count='exact' if query.count else None
        )
        builder = self._apply_filters(builder, query.filters)
        if query.search and query.search_columns:
            term = re.sub(r'[,()]', ' ', query.search)
            builder = builder.or_(','.join(f'{column}.ilike.%{term}%' for column in query.search_columns))
        for column, descending in query.order:
            builder = builder.order(column, desc=descending)
        if query.limit is not None:
            start = query.offset or 0
            builder = builder.range(start, start + query.limit - 1)
        response = self._execute(builder, query.table)
        rows = list(response.data or [])
        return QueryResult(rows=rows, count=response.count if query.count else None)

    def _apply_filters(self, builder, filters: Iterable[Filter]):
        for item in filters:
            column, value = item.column, item.value
            if item.op == 'is_null' or (item.op == 'eq' and value is None):
                builder = builder.is_(column, 'null')
            elif item.op == 'not_null':
                builder = builder.filter(column, 'not.is', 'null')
            elif item.op == 'in':
                builder = builder.in_(column, list(value))
            elif item.op == 'ov':
                builder = builder.filter(column, 'ov', '{' + ','.join(str(v) for v in value) + '}')
            elif item.op == 'ilike':
                builder = builder.ilike(column, value)
            else:
                builder = getattr(builder, item.op)(column, self._postgrest_value(value))
        return builder

    @staticmethod
    def _postgrest_value(value: Any) -> Any:
        if isinstance(value, bool):
            return 'true' if value else 'false'
        return value

    @staticmethod
    def _execute(builder, table: str):
        try:
            return builder.execute()
        except Exception as exc:
            logger.warning('Supabase request against %s failed', table, exc_info=True)
            raise DatabaseError(str(exc)) from exc

    # ------------------------------------------------------------ local store
    def _local_select(self, query: TableQuery) -> QueryResult:
        rows = self._filtered(
            self._load_table(query.table), query.filters, query.search, query.search_columns
        )
        total = len(rows)
        for column, descending in reversed(query.order):
            present = [row for row in rows if row.get(column) is not None]
            missing = [row for row in rows if row.get(column) is None]
            present.sort(key=lambda row: self._sort_key(row.get(column)), reverse=descending)
            rows = present + missing
        if query.limit is not None:
            start = query.offset or 0
            rows = rows[start:start + query.limit]
        rows = [self._embed(dict(row), query.relations) for row in rows]
        if query.columns:
            rows = [
                {key: value for key, value in row.items() if key in query.columns or key in {r.table for r in query.relations}}
                for row in rows
            ]
        return QueryResult(rows=rows, count=total if query.count else None)

    def _filtered(self, rows, filters, search, search_columns) -> List[Dict[str, Any]]:
        matched = [row for row in rows if self._matches(row, filters)]
        if search and search_columns:
            pattern = search.lower()
            matched = [
                row for row in matched
                if any(pattern in str(row.get(column) or '').lower() for column in search_columns)
            ]
        return matched

    def _matches(self, row: Dict[str, Any], filters: Iterable[Filter]) -> bool:
        return all(self._check(row.get(item.column), item) for item in filters)

    def _check(self, actual: Any, item: Filter) -> bool:
        expected = item.value
        if item.op == 'is_null':
            return actual is None
        if item.op == 'not_null':
            return actual is not None
        if item.op == 'eq':
            return self._equals(actual, expected)
        if item.op == 'neq':
            return not self._equals(actual, expected)
        if item.op == 'in':
            return any(self._equals(actual, candidate) for candidate in expected)
        if item.op == 'ov':
            return bool(set(actual or []) & set(expected or []))
        if item.op == 'ilike':
            if actual is None:
                return False
            regex = '.*'.join(re.escape(part) for part in str(expected).split('%'))
            return re.fullmatch(regex.replace('_', '.'), str(actual), re.IGNORECASE | re.DOTALL) is not None
        if actual is None:
            return False
        left, right = self._comparable(actual), self._comparable(expected)
        try:
            return {
                'gt': left > right,
                'gte': left >= right,
                'lt': left < right,
                'lte': left <= right,
            }[item.op]
        except TypeError:
            return False

    @staticmethod
    def _equals(actual: Any, expected: Any) -> bool:
        if actual is None or expected is None:
            return actual is expected
        if isinstance(actual, bool) or isinstance(expected, bool):
            return actual is expected or str(actual).lower() == str(expected).lower()
        if type(actual) is type(expected):
            return actual == expected
        return str(actual) == str(expected)

    @staticmethod
    def _comparable(value: Any) -> Any:
        if isinstance(value, str):
            parsed = parse_datetime(value) if len(value) >= 10 and value[4:5] == '-' else None
            return parsed if parsed is not None else value
        return value

    @classmethod
    def _sort_key(cls, value: Any) -> tuple:
        """Rank numbers (numeric strings included), then timestamps, then text."""

        if isinstance(value, (bool, int, float)):
            return (0, float(value))
        if isinstance(value, str):
            try:
                return (0, float(value))
            except ValueError:
                pass
            comparable = cls._comparable(value)
            if comparable is not value:
                return (1, comparable)
            return (2, value)
        return (3, json.dumps(value, sort_keys=True, default=str))

    def _embed(self, row: Dict[str, Any], relations: Sequence[Relation]) -> Dict[str, Any]:
        for relation in relations:
            foreign_id = row.get(relation.foreign_key)
            target = None
            if foreign_id is not None:
                for candidate in self._load_table(relation.table):
                    if self._equals(candidate.get('id'), foreign_id):
                        target = {column: candidate.get(column) for column in relation.columns}
                        break
            row[relation.table] = target
        return row

    def _load_table(self, table: str) -> List[Dict[str, Any]]:
        data = self._read_json(self._table_path(table))
        return data if isinstance(data, list) else []

    def _save_table(self, table: str, rows: List[Dict[str, Any]]) -> None:
        self._write_json(self._table_path(table), rows)

    def _table_path(self, table: str) -> Path:
        safe = table.replace('/', '_')
        return self._data_dir / 'tables' / f'{safe}.json'

    def _write_json(self, path: Path, data) -> None:
        if self._redis is not None:
            try:
                self._redis.set(self._redis_key(path), json.dumps(data))
                return
            except redis.RedisError:
                logger.warning('Redis write failed; using filesystem fallback', exc_info=True)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))

    def _read_json(self, path: Path):
        if self._redis is not None:
            try:
                raw = self._redis.get(self._redis_key(path))
            except redis.RedisError:
                logger.warning('Redis read failed; using filesystem fallback', exc_info=True)
            else:
                if raw is not None:
                    if isinstance(raw, bytes):
                        raw = raw.decode('utf-8')
                    try:
                        return json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning('Redis value was not valid JSON for %s', path.name)

        if not path.exists():
            return None
        try:
            return json.loads(path.read_text())
        except json.JSONDecodeError:
            logger.warning('Ignoring corrupt table file %s', path)
            return None

    def _redis_key(self, path: Path) -> str:
        return f'fringe:{path.name}'

    # ------------------------------------------------------------------- init
    def _init_supabase(self) -> Optional[SupabaseClient]:
        url = self._get_env_value('SUPABASE_URL', 'NEXT_PUBLIC_SUPABASE_URL', 'SUPABASE_PROJECT_URL')
        key = self._get_env_value(
            'SUPABASE_SERVICE_ROLE_KEY',
            'SUPABASE_ANON_KEY',
            'NEXT_PUBLIC_SUPABASE_ANON_KEY',
        )
        if not url or not key:
            logger.info('Supabase disabled (missing env); using local table store')
            return None
        try:
            return create_client(url, key)
        except Exception as exc:
            logger.warning('Supabase init failed: %s', exc)
            return None

    def _init_redis(self) -> Optional[Any]:
        redis_url = self._get_env_value('REDIS_URL', 'UPSTASH_REDIS_URL')
        if not redis_url:
            return None
        try:
            return redis.from_url(redis_url, decode_responses=True)
        except (redis.RedisError, ValueError):  # pragma: no cover - network dependent
            logger.warning('Redis init failed', exc_info=True)
            return None

    @staticmethod
    def _get_env_value(*names: str) -> Optional[str]:
        for name in names:
            value = os.getenv(name)
            if value:
                return value
        return None
