from __future__ import annotations

from flask import current_app

from ..services import exporters
from ..services.analytics import parse_range
from . import api_bp
from .content import download
from .envelope import ApiError, json_body, success_response


def _window(body):
    try:
        return parse_range(body.get('startDate'), body.get('endDate'))
    except ValueError as exc:
        raise ApiError(str(exc), 400) from exc


@api_bp.route('/analytics', methods=['POST'])
def analytics_report():
    body = json_body()
    report = current_app.analytics_service.period_report(_window(body))
    report['dateRange'] = {'startDate': body['startDate'], 'endDate': body['endDate']}
    return success_response(report)


@api_bp.route('/analytics/export', methods=['POST'])
def analytics_export():
    body = json_body()
    fmt = body.get('format', 'csv')
    if fmt not in ('csv', 'json'):
        raise ApiError('Invalid format. Supported formats: csv, json', 400)
    window = _window(body)
    start, end = body['startDate'], body['endDate']

    dataset = current_app.analytics_service.export_dataset(window)
    totals = dataset.pop('totals')
    basename = f'analytics-report-{start}-to-{end}'

    if fmt == 'json':
        document = {
            'summary': {'dateRange': {'startDate': start, 'endDate': end}, 'totals': totals},
            **dataset,
        }
        export = exporters.ExportFile(f'{basename}.json', exporters.json_document(document), exporters.JSON_MIMETYPE)
    else:
        content = exporters.sectioned_csv({'summary': [totals], **dataset})
        export = exporters.ExportFile(f'{basename}.csv', content.encode('utf-8'), exporters.CSV_MIMETYPE)
    return download(export)


@api_bp.route('/dashboard/stats', methods=['GET'])
def dashboard_stats():
    return success_response(current_app.analytics_service.dashboard_stats())
