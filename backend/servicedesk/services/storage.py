"""Binary object storage for ticket images.

Objects live under STORAGE_ROOT and are addressed by the same relative paths the
hosted bucket used: tickets/<ticket_id>/<stem>-<ms>.<ext>.
"""
from __future__ import annotations
import logging
import os
import time
from typing import Dict, List

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.security import safe_join
from werkzeug.utils import secure_filename

from servicedesk.errors import ImageRejected
from servicedesk.models.user import utcnow
from servicedesk.utils.listing import iso

logger = logging.getLogger(__name__)

URL_PREFIX = '/storage/'


def storage_root() -> str:
    return current_app.config['STORAGE_ROOT']


def object_url(path: str) -> str:
    return URL_PREFIX + path


def resolve(path: str) -> str:
    full = safe_join(storage_root(), path)
    if full is None:
        raise ImageRejected(description='Invalid storage path')
    return full


def _size(file: FileStorage) -> int:
    stream = file.stream
    pos = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(pos)
    return size


def object_name(original: str) -> str:
    safe = secure_filename(original or '') or 'image'
    stem, dot, ext = safe.rpartition('.')
    if not dot:
        stem, ext = safe, 'bin'
    return f'{stem}-{time.time_ns() // 1_000_000}.{ext}'


def upload_image(file: FileStorage, ticket_id: str) -> Dict[str, str]:
    if file is None or not file.filename:
        raise ImageRejected(description='No file')
    if not (file.mimetype or '').startswith('image/'):
        raise ImageRejected(description='File must be an image')
    limit = int(current_app.config['MAX_IMAGE_BYTES'])
    if _size(file) > limit:
        raise ImageRejected(description=f'File too large (max {limit // (1024 * 1024)}MB)')
    filename = object_name(file.filename)
    path = f'tickets/{ticket_id}/{filename}'
    full = resolve(path)
    os.makedirs(os.path.dirname(full), exist_ok=True)
    file.save(full)
    logger.info('image stored at %s', path)
    return {
        'url': object_url(path),
        'path': path,
        'filename': filename,
        'uploaded_at': iso(utcnow()),
    }


def delete_image(path: str) -> None:
    full = resolve(path)
    try:
        os.remove(full)
    except FileNotFoundError:
        logger.warning('image %s already gone from storage', path)
        return
    logger.info('image %s deleted', path)


def list_ticket_images(ticket_id: str) -> List[Dict[str, str]]:
    folder = resolve(f'tickets/{ticket_id}')
    if not os.path.isdir(folder):
        return []
    out = []
    for name in sorted(os.listdir(folder)):
        path = f'tickets/{ticket_id}/{name}'
        out.append({'url': object_url(path), 'path': path, 'name': name})
    return out


__all__ = ['storage_root', 'object_url', 'resolve', 'object_name', 'upload_image', 'delete_image', 'list_ticket_images']
