"""Row-by-row CSV imports for courses and newsletter subscribers.

Every data row is validated and inserted on its own; a bad row is reported in
:attr:`ImportResult.errors` and never aborts the rest of the file. Problems with
the file as a whole (no data, missing columns) raise :class:`CsvImportError`.
"""

from __future__ import annotations

import csv
import io
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from ..utils.dates import now_iso
from .database_service import DatabaseService
from .queries import DatabaseError, eq

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
COURSE_REQUIRED = ('title', 'slug', 'price', 'duration')
NEWSLETTER_REQUIRED = ('email',)
NEWSLETTER_STATUSES = ('pending', 'subscribed', 'unsubscribed')


class CsvImportError(ValueError):
    """The uploaded file cannot be imported at all."""


@dataclass
class ImportResult:
    total: int = 0
    successful: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def fail(self, **error: Any) -> None:
        self.failed += 1
        self.errors.append(error)

    @property
    def message(self) -> str:
        return f'Import completed: {self.successful} successful, {self.failed} failed'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'successful': self.successful,
            'failed': self.failed,
            'errors': self.errors,
        }


def read_rows(text: str, required: Sequence[str]) -> List[Tuple[int, Dict[str, str]]]:
    """Parse ``text`` into ``(row_number, values)`` pairs; the header is row 1."""

    records = [
        record
        for record in csv.reader(io.StringIO(text.lstrip('\ufeff')))
        if any(cell.strip() for cell in record)
    ]
    if len(records) < 2:
        raise CsvImportError('CSV file must contain at least a header row and one data row')

    headers = [header.strip().lower() for header in records[0]]
    missing = [name for name in required if name not in headers]
    if missing:
        raise CsvImportError(f'Missing required columns: {", ".join(missing)}')

    rows = []
    for index, record in enumerate(records[1:], start=2):
        values = {header: (record[i].strip() if i < len(record) else '') for i, header in enumerate(headers)}
        rows.append((index, values))
    return rows


def import_courses(db: DatabaseService, text: str) -> ImportResult:
    rows = read_rows(text, COURSE_REQUIRED)
    result = ImportResult(total=len(rows))
    seen_slugs = set()

    for row_number, values in rows:
        missing = [name for name in COURSE_REQUIRED if not values.get(name)]
        if missing:
            result.fail(row=row_number, field='required', error=f'Missing required fields: {", ".join(missing)}')
            continue

        try:
            price = float(values['price'])
        except ValueError:
            price = -1.0
        if math.isnan(price) or price < 0:
            result.fail(row=row_number, field='price', error='Price must be a valid number greater than or equal to 0')
            continue

        try:
            duration = int(values['duration'])
        except ValueError:
            duration = 0
        if duration <= 0:
            result.fail(row=row_number, field='duration', error='Duration must be a positive integer')
            continue

        active_raw = values.get('is_active', '').lower()
        if active_raw and active_raw not in ('true', 'false'):
            result.fail(row=row_number, field='is_active', error='is_active must be true or false')
            continue

        slug = values['slug'].lower()
        if slug in seen_slugs or db.exists('courses', [eq('slug', slug)]):
            result.fail(row=row_number, field='slug', error='Course with this slug already exists')
            continue

        timestamp = now_iso()
        record = {
            'title': values['title'],
            'slug': slug,
            'description': values.get('description') or '',
            'price': price,
            'duration': duration,
            'category_id': values.get('category_id') or None,
            'is_active': active_raw != 'false',
            'created_at': timestamp,
            'updated_at': timestamp,
        }
        try:
            db.insert('courses', record)
        except DatabaseError as exc:
            result.fail(row=row_number, field='database', error=str(exc))
            continue
        seen_slugs.add(slug)
        result.successful += 1

    logger.info('Course import finished: %s', result.message)
    return result


def import_newsletter(db: DatabaseService, text: str) -> ImportResult:
    rows = read_rows(text, NEWSLETTER_REQUIRED)
    result = ImportResult(total=len(rows))
    seen = set()

    for row_number, values in rows:
        email = values.get('email', '').lower()
        if not EMAIL_PATTERN.match(email):
            result.fail(row=row_number, email=email, error='Invalid email address')
            continue

        status = (values.get('status') or 'pending').lower()
        if status not in NEWSLETTER_STATUSES:
            result.fail(row=row_number, email=email, error='Invalid status. Must be pending, subscribed, or unsubscribed')
            continue

        if email in seen or db.exists('newsletter_subscriptions', [eq('email', email)]):
            result.fail(row=row_number, email=email, error='Email already exists in newsletter subscriptions')
            continue

        timestamp = now_iso()
        interests = [item.strip() for item in values.get('interests', '').split(';') if item.strip()]
        record = {
            'email': email,
            'first_name': values.get('first_name') or values.get('firstname') or None,
            'last_name': values.get('last_name') or values.get('lastname') or None,
            'interests': interests,
            'status': status,
            'subscribed_at': timestamp if status == 'subscribed' else None,
            'created_at': timestamp,
            'updated_at': timestamp,
        }
        try:
            db.insert('newsletter_subscriptions', record)
        except DatabaseError as exc:
            result.fail(row=row_number, email=email, error=str(exc))
            continue
        seen.add(email)
        result.successful += 1

    logger.info('Newsletter import finished: %s', result.message)
    return result
