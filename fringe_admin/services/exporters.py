"""CSV and Excel rendering for console exports."""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Tuple

from openpyxl import Workbook

from ..utils.dates import date_stamp

CSV_MIMETYPE = 'text/csv; charset=utf-8'
JSON_MIMETYPE = 'application/json'
XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


class ExportError(ValueError):
    """Raised for an unsupported export format."""


@dataclass(frozen=True)
class Column:
    header: str
    value: Callable[[Mapping[str, Any]], Any]


@dataclass
class ExportFile:
    filename: str
    content: bytes
    mimetype: str

    @property
    def size(self) -> int:
        return len(self.content)

    def text(self) -> str:
        return self.content.decode('utf-8')


def field(name: str) -> Callable[[Mapping[str, Any]], Any]:
    return lambda row: row.get(name) if row.get(name) is not None else ''


def yes_no(name: str) -> Callable[[Mapping[str, Any]], str]:
    return lambda row: 'Yes' if row.get(name) else 'No'


def _category_name(relation: str) -> Callable[[Mapping[str, Any]], str]:
    def getter(row: Mapping[str, Any]) -> str:
        category = row.get(relation) or {}
        return category.get('name') or ''

    return getter


def catalogue_columns(relation: str) -> List[Column]:
    return [
        Column('Title', field('title')),
        Column('Slug', field('slug')),
        Column('Description', field('description')),
        Column('Price', field('price')),
        Column('Duration', field('duration')),
        Column('Category', _category_name(relation)),
        Column('Active', yes_no('is_active')),
        Column('Created At', field('created_at')),
    ]


CONTACT_COLUMNS = [
    Column('ID', field('id')),
    Column('Name', field('name')),
    Column('Email', field('email')),
    Column('Phone', field('phone')),
    Column('Subject', field('subject')),
    Column('Message', field('message')),
    Column('Is Read', yes_no('is_read')),
    Column('Responded At', field('responded_at')),
    Column('Response', field('response')),
    Column('Created At', field('created_at')),
]

NEWSLETTER_COLUMNS = [
    Column('ID', field('id')),
    Column('Email', field('email')),
    Column('First Name', field('first_name')),
    Column('Last Name', field('last_name')),
    Column('Status', field('status')),
    Column('Subscribed At', field('subscribed_at')),
    Column('Unsubscribed At', field('unsubscribed_at')),
    Column('Interests', lambda row: '; '.join(row.get('interests') or [])),
    Column('Created At', field('created_at')),
    Column('Updated At', field('updated_at')),
]


def table_rows(columns: Sequence[Column], rows: Iterable[Mapping[str, Any]]) -> List[List[Any]]:
    return [[column.value(row) for column in columns] for row in rows]


def to_csv(columns: Sequence[Column], rows: Iterable[Mapping[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow([column.header for column in columns])
    writer.writerows(table_rows(columns, rows))
    return buffer.getvalue()


def to_xlsx(columns: Sequence[Column], rows: Iterable[Mapping[str, Any]], title: str) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = title[:31]
    sheet.append([column.header for column in columns])
    for values in table_rows(columns, rows):
        sheet.append(values)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def render(
    columns: Sequence[Column],
    rows: Sequence[Mapping[str, Any]],
    fmt: str,
    basename: str,
    title: str,
) -> ExportFile:
    """Render ``rows`` as ``csv`` or ``xls`` (an Excel ``.xlsx`` workbook)."""

    stamp = date_stamp()
    if fmt == 'csv':
        return ExportFile(f'{basename}_{stamp}.csv', to_csv(columns, rows).encode('utf-8'), CSV_MIMETYPE)
    if fmt == 'xls':
        return ExportFile(f'{basename}_{stamp}.xlsx', to_xlsx(columns, rows, title), XLSX_MIMETYPE)
    raise ExportError('Invalid format. Supported formats: csv, xls')


def _plain_rows(rows: Sequence[Mapping[str, Any]]) -> Tuple[List[str], List[List[Any]]]:
    headers: List[str] = []
    for row in rows:
        for key, value in row.items():
            if key not in headers and not isinstance(value, (dict, list)):
                headers.append(key)
    return headers, [[row.get(key, '') if row.get(key) is not None else '' for key in headers] for row in rows]


def sectioned_csv(sections: Mapping[str, Sequence[Mapping[str, Any]]]) -> str:
    """Titled CSV blocks (``SUMMARY``, ``CONTACTS``...) separated by blank lines."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    for position, (title, rows) in enumerate(sections.items()):
        if position:
            writer.writerow([])
        writer.writerow([title.upper()])
        if not rows:
            writer.writerow(['No records'])
            continue
        headers, values = _plain_rows(rows)
        writer.writerow(headers)
        writer.writerows(values)
    return buffer.getvalue()


def json_document(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, indent=2, default=str).encode('utf-8')
