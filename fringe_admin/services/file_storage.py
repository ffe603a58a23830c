"""Uploads to Supabase Storage buckets, or to a local directory tree."""

from __future__ import annotations

import logging
import re
import secrets
import string
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from werkzeug.utils import secure_filename

from .database_service import DatabaseService

logger = logging.getLogger(__name__)

BUCKETS = {
    'public': {'public': True},
    'private': {'public': False},
    'temp': {'public': False},
}

FOLDERS = (
    'courses',
    'services',
    'offers',
    'business-info',
    'testimonials',
    'reviews',
    'email-templates',
    'temp',
)

MB = 1024 * 1024

FILE_CONSTRAINTS = {
    'image': {
        'max_size': 5 * MB,
        'types': ('image/jpeg', 'image/png', 'image/webp', 'image/gif'),
    },
    'document': {
        'max_size': 10 * MB,
        'types': (
            'application/pdf',
            'application/msword',
            'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
        ),
    },
    'video': {
        'max_size': 50 * MB,
        'types': ('video/mp4', 'video/webm', 'video/ogg'),
    },
}

_UNSAFE_NAME = re.compile(r'(\.\.)|(^[.\-])|([<>:"|?*\x00-\x1f])')


class FileValidationError(ValueError):
    """The uploaded file breaks a size, type or naming rule."""


@dataclass
class StoredFile:
    path: str
    url: Optional[str]
    bucket: str
    size: int
    type: str

    def to_dict(self) -> Dict[str, Any]:
        return {'path': self.path, 'url': self.url, 'bucket': self.bucket, 'size': self.size, 'type': self.type}


def validate_file(filename: str, content_type: str, size: int, category: str = 'image') -> None:
    constraints = FILE_CONSTRAINTS.get(category)
    if constraints is None:
        raise FileValidationError(f'Unknown file type category: {category}')
    if size > constraints['max_size']:
        limit = constraints['max_size'] // MB
        raise FileValidationError(f'File size exceeds the {limit}MB limit')
    if content_type not in constraints['types']:
        raise FileValidationError(f'File type {content_type} is not allowed')
    if not filename or len(filename) > 255:
        raise FileValidationError('Filename is too long')
    if _UNSAFE_NAME.search(filename):
        raise FileValidationError('Filename contains invalid characters')


def generate_file_path(folder: str, original_name: str, prefix: Optional[str] = None) -> str:
    """``folder/[prefix-]<millis>-<random6>-<sanitised base>.<ext>``."""

    stem, _, extension = original_name.rpartition('.')
    if not stem:
        stem, extension = extension, ''
    base = re.sub(r'[^a-zA-Z0-9]', '-', stem).lower()[:50]
    alphabet = string.ascii_lowercase + string.digits
    random_part = ''.join(secrets.choice(alphabet) for _ in range(6))
    name = f'{int(time.time() * 1000)}-{random_part}-{base}'
    if prefix:
        name = f'{prefix}-{name}'
    if extension:
        name = f'{name}.{extension.lower()}'
    return f'{folder}/{name}'


class FileStorage:
    def __init__(self, database: DatabaseService) -> None:
        self._db = database
        self._local_root = database.data_dir / 'uploads'

    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> StoredFile:
        client = self._db.client
        if client:
            client.storage.from_(bucket).upload(path, data, {'content-type': content_type})
            url = client.storage.from_(bucket).get_public_url(path) if BUCKETS[bucket]['public'] else None
        else:
            target = self._local_path(bucket, path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            url = f'/uploads/{bucket}/{path}' if BUCKETS[bucket]['public'] else None
        logger.info('Stored %s in bucket %s (%d bytes)', path, bucket, len(data))
        return StoredFile(path=path, url=url, bucket=bucket, size=len(data), type=content_type)

    def remove(self, bucket: str, path: str) -> None:
        client = self._db.client
        if client:
            client.storage.from_(bucket).remove([path])
            return
        target = self._local_path(bucket, path)
        if target.exists():
            target.unlink()

    def local_file(self, bucket: str, path: str) -> Optional[Path]:
        target = self._local_path(bucket, path)
        return target if target.is_file() else None

    def initialise_buckets(self) -> List[str]:
        """Create any missing buckets and return the names that were created."""

        created: List[str] = []
        client = self._db.client
        if not client:
            for name in BUCKETS:
                bucket_dir = self._local_root / name
                if not bucket_dir.exists():
                    bucket_dir.mkdir(parents=True)
                    created.append(name)
            return created

        existing = {bucket.name for bucket in client.storage.list_buckets()}
        for name, options in BUCKETS.items():
            if name in existing:
                continue
            client.storage.create_bucket(name, options={'public': options['public']})
            created.append(name)
        return created

    def _local_path(self, bucket: str, path: str) -> Path:
        parts = [secure_filename(part) for part in path.split('/') if part]
        return self._local_root.joinpath(secure_filename(bucket), *parts)
