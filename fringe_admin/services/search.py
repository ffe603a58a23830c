"""Global search across the console's content tables."""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .database_service import DatabaseService
from .queries import DatabaseError, Filter, TableQuery, eq

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
DEFAULT_LIMIT = 20
MAX_LIMIT = 50
DESCRIPTION_LENGTH = 150


def _excerpt(text: Optional[str]) -> str:
    return f'{(text or "")[:DESCRIPTION_LENGTH]}...'


@dataclass(frozen=True)
class SearchSource:
    type: str
    table: str
    columns: Tuple[str, ...]
    search_columns: Tuple[str, ...]
    page: str
    describe: Callable[[Dict[str, Any]], Tuple[str, str, Dict[str, Any]]]
    filters: Tuple[Filter, ...] = field(default=())


SOURCES: Sequence[SearchSource] = (
    SearchSource(
        'course', 'courses', ('id', 'title', 'description', 'slug'), ('title', 'description'), 'courses',
        lambda row: (row.get('title') or '', _excerpt(row.get('description')), {'slug': row.get('slug')}),
        (eq('is_active', True),),
    ),
    SearchSource(
        'service', 'services', ('id', 'title', 'description', 'slug'), ('title', 'description'), 'services',
        lambda row: (row.get('title') or '', _excerpt(row.get('description')), {'slug': row.get('slug')}),
        (eq('is_active', True),),
    ),
    SearchSource(
        'offer', 'offers', ('id', 'title', 'description'), ('title', 'description'), 'offers',
        lambda row: (row.get('title') or '', _excerpt(row.get('description')), {}),
        (eq('is_active', True),),
    ),
    SearchSource(
        'faq', 'faqs', ('id', 'question', 'answer', 'category'), ('question', 'answer'), 'faqs',
        lambda row: (row.get('question') or '', _excerpt(row.get('answer')), {'category': row.get('category')}),
        (eq('is_active', True),),
    ),
    SearchSource(
        'contact', 'contact_submissions', ('id', 'name', 'email', 'subject', 'message'),
        ('name', 'email', 'subject'), 'contacts',
        lambda row: (f"{row.get('name')} - {row.get('subject')}", _excerpt(row.get('message')), {'email': row.get('email')}),
    ),
    SearchSource(
        'newsletter', 'newsletter_subscriptions', ('id', 'email', 'first_name', 'last_name'),
        ('email', 'first_name', 'last_name'), 'newsletter',
        lambda row: (
            f"{row.get('first_name') or ''} {row.get('last_name') or ''}".strip() or row.get('email') or '',
            row.get('email') or '',
            {},
        ),
        (eq('status', 'subscribed'),),
    ),
    SearchSource(
        'review', 'reviews', ('id', 'name', 'email', 'title', 'content', 'rating'), ('name', 'title', 'content'), 'reviews',
        lambda row: (f"{row.get('name')} - {row.get('title')}", _excerpt(row.get('content')), {'rating': row.get('rating')}),
    ),
    SearchSource(
        'testimonial', 'testimonials', ('id', 'name', 'email', 'company', 'content', 'rating'),
        ('name', 'company', 'content'), 'testimonials',
        lambda row: (
            f"{row.get('name')}{' - ' + row['company'] if row.get('company') else ''}",
            _excerpt(row.get('content')),
            {'rating': row.get('rating')},
        ),
        (eq('is_approved', True),),
    ),
)

SEARCH_TYPES = tuple(source.type for source in SOURCES)


class SearchService:
    def __init__(self, database: DatabaseService) -> None:
        self._db = database

    def search(self, term: Optional[str], kind: Optional[str] = None, limit: int = DEFAULT_LIMIT) -> Dict[str, Any]:
        term = (term or '').strip()
        limit = max(1, min(limit, MAX_LIMIT))
        if len(term) < MIN_QUERY_LENGTH:
            return {'results': [], 'total': 0, 'query': term, 'type': kind or 'all'}

        per_source = math.ceil(limit / len(SOURCES))
        sources = [source for source in SOURCES if not kind or source.type == kind]
        with ThreadPoolExecutor(max_workers=len(SOURCES)) as pool:
            batches = list(pool.map(lambda source: self._search_source(source, term, per_source), sources))

        results = [item for batch in batches for item in batch]
        return {'results': results[:limit], 'total': len(results), 'query': term, 'type': kind or 'all'}

    def _search_source(self, source: SearchSource, term: str, limit: int) -> List[Dict[str, Any]]:
        query = TableQuery(source.table, filters=list(source.filters), columns=source.columns, limit=limit)
        query.matching(term, source.search_columns)
        try:
            rows = self._db.select(query).rows
        except DatabaseError:
            logger.warning('Search failed for %s', source.type, exc_info=True)
            return []

        results = []
        for row in rows:
            title, description, metadata = source.describe(row)
            results.append({
                'id': row.get('id'),
                'type': source.type,
                'title': title,
                'description': description,
                'url': f'/admin/{source.page}',
                'metadata': metadata,
            })
        return results
