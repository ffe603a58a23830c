from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from ..utils.dates import date_stamp, now_iso
from .database_service import DatabaseService
from .queries import DatabaseError, eq

logger = logging.getLogger(__name__)

STATISTICS_TABLE = 'statistics'
DEFAULT_PERIOD = 'current'


class StatisticsTracker:
    """Keeps the ``statistics`` table in step with live counts.

    Tracking is best effort: a failed write is logged and reported as ``None``
    so that a caller refreshing many keys is never interrupted by one of them.
    """

    def __init__(self, database: DatabaseService) -> None:
        self._db = database

    def update_statistic(
        self,
        key: str,
        value: float,
        label: Optional[str] = None,
        category: str = 'general',
        period: str = DEFAULT_PERIOD,
    ) -> Optional[Dict[str, Any]]:
        record = {
            'key': key,
            'value': value,
            'label': label or key.replace('_', ' ').title(),
            'category': category,
            'period': period,
            'updated_at': now_iso(),
        }
        try:
            return self._db.upsert(STATISTICS_TABLE, record, on_conflict=('key', 'period'))
        except DatabaseError:
            logger.warning('Failed to update statistic %s', key, exc_info=True)
            return None

    def increment_statistic(self, key: str, amount: float = 1, period: str = DEFAULT_PERIOD) -> Optional[Dict[str, Any]]:
        try:
            current = self._db.find_one(STATISTICS_TABLE, [eq('key', key), eq('period', period)])
        except DatabaseError:
            logger.warning('Failed to read statistic %s', key, exc_info=True)
            return None
        if current is None:
            return self.update_statistic(key, amount, period=period)
        return self.update_statistic(
            key,
            (current.get('value') or 0) + amount,
            label=current.get('label'),
            category=current.get('category') or 'general',
            period=period,
        )

    def bulk_update(self, updates: Iterable[Dict[str, Any]]) -> int:
        written = 0
        for update in updates:
            result = self.update_statistic(
                update['key'],
                update['value'],
                label=update.get('label'),
                category=update.get('category', 'general'),
                period=update.get('period') or DEFAULT_PERIOD,
            )
            written += result is not None
        return written

    def track_user_engagement(self) -> int:
        counts = {
            'total_contacts': ('contact_submissions', 'Total Contacts'),
            'total_newsletter_subscribers': ('newsletter_subscriptions', 'Newsletter Subscribers'),
            'total_reviews': ('reviews', 'Total Reviews'),
            'total_testimonials': ('testimonials', 'Total Testimonials'),
        }
        return self.bulk_update(
            {'key': key, 'value': self._safe_count(table), 'label': label, 'category': 'user_engagement'}
            for key, (table, label) in counts.items()
        )

    def track_content_performance(self) -> int:
        updates = []
        for table, noun in (('courses', 'Courses'), ('services', 'Services'), ('offers', 'Offers')):
            updates.append({'key': f'total_{table}', 'value': self._safe_count(table), 'label': f'Total {noun}', 'category': 'content'})
            updates.append({
                'key': f'active_{table}',
                'value': self._safe_count(table, eq('is_active', True)),
                'label': f'Active {noun}',
                'category': 'content',
            })
        return self.bulk_update(updates)

    def track_performance_metrics(self) -> int:
        result = self.update_statistic(
            'system_uptime', 1, label='System Uptime', category='performance', period=date_stamp()
        )
        return int(result is not None)

    def refresh_all(self) -> Dict[str, int]:
        return {
            'user_engagement': self.track_user_engagement(),
            'content': self.track_content_performance(),
            'performance': self.track_performance_metrics(),
        }

    def _safe_count(self, table: str, *filters) -> int:
        try:
            return self._db.count(table, filters)
        except DatabaseError:
            logger.warning('Failed to count %s for statistics', table, exc_info=True)
            return 0
