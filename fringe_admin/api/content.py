"""CSV imports, exports, scheduled reports, global search and offer pricing."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from flask import Response, current_app, request

from ..resources import get_resource
from ..services import exporters
from ..services.discounts import (
    calculate_discount_amount,
    calculate_discounted_price,
    format_discount_text,
    is_offer_valid,
)
from ..services.importers import CsvImportError, import_courses, import_newsletter
from ..services.mailer import OutgoingEmail
from ..services.queries import TableQuery
from ..services.search import SEARCH_TYPES, SearchService
from ..utils.dates import date_stamp, now_iso
from . import api_bp, database
from .envelope import ApiError, is_valid_email, json_body, parse_int, success_response

logger = logging.getLogger(__name__)


def download(export: exporters.ExportFile) -> Response:
    return Response(
        export.content,
        mimetype=export.mimetype,
        headers={'Content-Disposition': f'attachment; filename="{export.filename}"'},
    )


def _uploaded_csv_text() -> str:
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        raise ApiError('No file provided', 400)
    if not upload.filename.lower().endswith('.csv'):
        raise ApiError('File must be a CSV file', 400)
    return upload.read().decode('utf-8', errors='replace')


def _run_import(importer):
    text = _uploaded_csv_text()
    try:
        result = importer(database(), text)
    except CsvImportError as exc:
        raise ApiError(str(exc), 400) from exc
    return success_response(result.to_dict(), result.message)


@api_bp.route('/courses/import', methods=['POST'])
def import_courses_csv():
    return _run_import(import_courses)


@api_bp.route('/newsletter/import', methods=['POST'])
def import_newsletter_csv():
    return _run_import(import_newsletter)


def _catalogue_export(resource_name: str, noun: str) -> Response:
    if request.args.get('format', 'csv') != 'csv':
        raise ApiError('Only CSV format is supported', 400)
    resource = get_resource(resource_name)
    query = TableQuery(resource.table, relations=resource.relations, order=[('created_at', True)])
    for param in resource.filters:
        param.apply(query, request.args)
    rows = database().select(query).rows
    if not rows:
        raise ApiError(f'No {noun} found to export', 404)
    relation = resource.relations[0].table
    return download(exporters.render(exporters.catalogue_columns(relation), rows, 'csv', noun, noun.title()))


@api_bp.route('/courses/export', methods=['GET'])
def export_courses():
    return _catalogue_export('courses', 'courses')


@api_bp.route('/services/export', methods=['GET'])
def export_services():
    return _catalogue_export('services', 'services')


def _date_window(query: TableQuery, date_from: Optional[str], date_to: Optional[str]) -> TableQuery:
    if date_from:
        query.where('created_at', date_from, 'gte')
    if date_to:
        query.where('created_at', date_to, 'lte')
    return query


def contacts_rows(is_read: Optional[Any] = None, date_from: Optional[str] = None, date_to: Optional[str] = None) -> List[Dict[str, Any]]:
    query = TableQuery('contact_submissions', order=[('created_at', True)])
    if is_read is not None:
        query.where('is_read', is_read if isinstance(is_read, bool) else str(is_read) == 'true')
    return database().select(_date_window(query, date_from, date_to)).rows


def newsletter_rows(status: Optional[str] = None, date_from: Optional[str] = None, date_to: Optional[str] = None) -> List[Dict[str, Any]]:
    query = TableQuery('newsletter_subscriptions', order=[('created_at', True)])
    if status:
        query.where('status', status)
    return database().select(_date_window(query, date_from, date_to)).rows


def _export_format() -> str:
    fmt = request.args.get('format', 'csv')
    if fmt not in ('csv', 'xls'):
        raise ApiError('Invalid format. Supported formats: csv, xls', 400)
    return fmt


@api_bp.route('/contacts/export', methods=['GET'])
def export_contacts():
    fmt = _export_format()
    rows = contacts_rows(request.args.get('is_read'), request.args.get('date_from'), request.args.get('date_to'))
    return download(exporters.render(exporters.CONTACT_COLUMNS, rows, fmt, 'contacts', 'Contacts'))


@api_bp.route('/newsletter/export', methods=['GET'])
def export_newsletter():
    fmt = _export_format()
    rows = newsletter_rows(request.args.get('status'), request.args.get('date_from'), request.args.get('date_to'))
    return download(exporters.render(exporters.NEWSLETTER_COLUMNS, rows, fmt, 'newsletter', 'Newsletter'))


def build_report(kind: str, filters: Mapping[str, Any]) -> exporters.ExportFile:
    date_from, date_to = filters.get('dateFrom'), filters.get('dateTo')
    stamp = date_stamp()
    if kind == 'newsletter':
        content = exporters.to_csv(exporters.NEWSLETTER_COLUMNS, newsletter_rows(filters.get('status'), date_from, date_to))
    elif kind == 'contacts':
        content = exporters.to_csv(exporters.CONTACT_COLUMNS, contacts_rows(filters.get('isRead'), date_from, date_to))
    elif kind == 'combined':
        newsletter_csv = exporters.to_csv(exporters.NEWSLETTER_COLUMNS, newsletter_rows(None, date_from, date_to))
        contacts_csv = exporters.to_csv(exporters.CONTACT_COLUMNS, contacts_rows(None, date_from, date_to))
        content = f'NEWSLETTER SUBSCRIBERS\n\n{newsletter_csv}\n\n\nCONTACT SUBMISSIONS\n\n{contacts_csv}'
    else:
        raise ApiError('Invalid report type. Must be newsletter, contacts, or combined', 400)
    return exporters.ExportFile(f'{kind}_report_{stamp}.csv', content.encode('utf-8'), exporters.CSV_MIMETYPE)


@api_bp.route('/reports/scheduled', methods=['POST'])
def scheduled_report():
    body = json_body()
    filters = body.get('filters') or {}
    report = build_report(body.get('type'), filters)

    message = 'Report generated successfully'
    recipient = body.get('email')
    if recipient:
        if not is_valid_email(recipient):
            raise ApiError('Invalid email format', 400)
        result = current_app.mailer.send(OutgoingEmail(
            to=recipient,
            subject=f'Your {body["type"]} report',
            html=f'<p>Your {body["type"]} report is attached.</p>',
            attachments=[(report.filename, report.content, 'text/csv')],
        ))
        if not result.success:
            raise ApiError(f'Report generated but could not be emailed: {result.error}', 502)
        message = f'Report generated and sent to {recipient}'

    return success_response({
        'message': message,
        'filename': report.filename,
        'data': report.text(),
        'size': report.size,
        'generated_at': now_iso(),
    })


@api_bp.route('/search', methods=['GET'])
def global_search():
    kind = request.args.get('type') or None
    if kind and kind not in SEARCH_TYPES:
        raise ApiError(f'Invalid search type. Must be one of: {", ".join(SEARCH_TYPES)}', 400)
    results = SearchService(database()).search(
        request.args.get('q'), kind, parse_int(request.args.get('limit'), 20)
    )
    return success_response(results)


@api_bp.route('/offers/<record_id>/pricing', methods=['GET'])
def offer_pricing(record_id: str):
    offer = database().get('offers', record_id)
    if offer is None:
        raise ApiError('Offer not found', 404)
    try:
        price = float(request.args.get('price', ''))
    except ValueError:
        raise ApiError('A numeric price query parameter is required', 400) from None
    return success_response({
        'original_price': price,
        'discounted_price': calculate_discounted_price(price, offer),
        'discount_amount': calculate_discount_amount(price, offer),
        'is_valid': is_offer_valid(offer),
        'label': format_discount_text(offer),
    })
