"""File uploads, bucket initialisation and the web-vitals beacon."""

from __future__ import annotations

import logging

from flask import current_app, request

from ..services.file_storage import BUCKETS, FOLDERS, FileValidationError, generate_file_path, validate_file
from ..utils.auth import role_required
from . import api_bp
from .envelope import ApiError, json_body, success_response

logger = logging.getLogger(__name__)


@api_bp.route('/upload', methods=['POST'])
def upload_file():
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        raise ApiError('No file provided', 400)

    bucket = request.form.get('bucket', 'public')
    folder = request.form.get('folder', 'temp')
    category = request.form.get('type', 'image')
    prefix = request.form.get('prefix') or None
    if bucket not in BUCKETS:
        raise ApiError('Invalid bucket specified', 400)
    if folder not in FOLDERS:
        raise ApiError('Invalid folder specified', 400)

    data = upload.read()
    content_type = upload.mimetype or 'application/octet-stream'
    try:
        validate_file(upload.filename, content_type, len(data), category)
    except FileValidationError as exc:
        raise ApiError(str(exc), 400) from exc

    path = generate_file_path(folder, upload.filename, prefix)
    stored = current_app.file_storage.upload(bucket, path, data, content_type)
    return success_response(stored.to_dict(), 'File uploaded successfully')


@api_bp.route('/upload', methods=['DELETE'])
def delete_file():
    path = request.args.get('path')
    bucket = request.args.get('bucket', 'public')
    if not path:
        raise ApiError('File path is required', 400)
    if bucket not in BUCKETS:
        raise ApiError('Invalid bucket specified', 400)
    current_app.file_storage.remove(bucket, path)
    return success_response(None, 'File deleted successfully')


@api_bp.route('/storage/init', methods=['POST'])
@role_required('super_admin')
def initialise_storage():
    created = current_app.file_storage.initialise_buckets()
    return success_response({'created': created, 'buckets': list(BUCKETS)}, 'Storage initialised')


@api_bp.route('/web-vitals', methods=['POST'], endpoint='web_vitals')
def web_vitals():
    metric = json_body()
    logger.info(
        'web-vital name=%s value=%s id=%s label=%s',
        metric.get('name'),
        metric.get('value'),
        metric.get('id'),
        metric.get('label'),
    )
    return success_response(None)
