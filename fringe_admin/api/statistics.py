"""Stored statistics: listing, manual edits and recomputation from live tables."""

from __future__ import annotations

from flask import current_app, request

from ..services.queries import TableQuery, eq
from ..services.statistics import DEFAULT_PERIOD, STATISTICS_TABLE
from ..utils.auth import role_required
from ..utils.dates import now_iso
from . import api_bp, database
from .envelope import ApiError, json_body, parse_int, require_fields, success_response


@api_bp.route('/statistics', methods=['GET'])
def list_statistics():
    query = TableQuery(STATISTICS_TABLE, order=[('category', False), ('key', False)])
    for name in ('category', 'key'):
        if request.args.get(name):
            query.where(name, request.args[name])
    if request.args.get('limit'):
        query.take(max(parse_int(request.args['limit'], 50), 1))
    return success_response(database().select(query).rows)


@api_bp.route('/statistics', methods=['POST'])
def create_statistic():
    body = json_body()
    require_fields(body, ['key', 'label'])
    if body.get('value') is None:
        raise ApiError('Missing required fields: value', 400)
    period = body.get('period') or DEFAULT_PERIOD
    if database().exists(STATISTICS_TABLE, [eq('key', body['key']), eq('period', period)]):
        raise ApiError('Statistic already exists for this period', 409)
    record = database().insert(STATISTICS_TABLE, {
        'key': body['key'],
        'value': body['value'],
        'label': body['label'],
        'category': body.get('category') or 'general',
        'period': period,
        'updated_at': now_iso(),
    })
    return success_response(record, 'Statistic created successfully', 201)


@api_bp.route('/statistics', methods=['PUT'])
def bulk_update_statistics():
    updates = json_body().get('updates')
    if not isinstance(updates, list) or not updates:
        raise ApiError('Updates must be a non-empty array', 400)
    if any(not isinstance(update, dict) or not update.get('key') or update.get('value') is None for update in updates):
        raise ApiError('Each update requires key and value', 400)

    updated = []
    for update in updates:
        rows = database().update(
            STATISTICS_TABLE,
            {'value': update['value'], 'updated_at': now_iso()},
            [eq('key', update['key']), eq('period', update.get('period') or DEFAULT_PERIOD)],
        )
        updated.extend(rows)
    return success_response(updated, f'{len(updated)} statistics updated successfully')


@api_bp.route('/statistics/refresh', methods=['POST'])
@role_required('admin')
def refresh_statistics():
    summary = current_app.statistics_tracker.refresh_all()
    return success_response(summary, 'Statistics refreshed')


def _period() -> str:
    return request.args.get('period') or DEFAULT_PERIOD


def _load(key: str):
    record = database().find_one(STATISTICS_TABLE, [eq('key', key), eq('period', _period())])
    if record is None:
        raise ApiError('Statistic not found', 404)
    return record


@api_bp.route('/statistics/<key>', methods=['GET'])
def get_statistic(key: str):
    return success_response(_load(key))


@api_bp.route('/statistics/<key>', methods=['PUT'])
def update_statistic(key: str):
    record = _load(key)
    body = json_body()
    values = {name: body[name] for name in ('value', 'label', 'category') if name in body}
    values['updated_at'] = now_iso()
    updated = database().update_by_id(STATISTICS_TABLE, record['id'], values)
    return success_response(updated, 'Statistic updated successfully')


@api_bp.route('/statistics/<key>', methods=['DELETE'])
@role_required('admin')
def delete_statistic(key: str):
    record = _load(key)
    database().delete(STATISTICS_TABLE, [eq('id', record['id'])])
    return success_response(None, 'Statistic deleted successfully')
