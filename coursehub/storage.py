import os
import time

from flask import current_app
from werkzeug.utils import secure_filename

MIME_TYPES = {
    '.pdf': 'application/pdf',
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.svg': 'image/svg+xml',
    '.mp4': 'video/mp4',
    '.webm': 'video/webm',
    '.mov': 'video/quicktime',
    '.mp3': 'audio/mpeg',
    '.wav': 'audio/wav',
    '.txt': 'text/plain',
    '.csv': 'text/csv',
    '.doc': 'application/msword',
    '.docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    '.ppt': 'application/vnd.ms-powerpoint',
    '.pptx': 'application/vnd.openxmlformats-officedocument.presentationml.presentation',
    '.xls': 'application/vnd.ms-excel',
    '.xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    '.zip': 'application/zip',
}

INLINE_PREFIXES = ('image/', 'video/', 'audio/', 'text/plain')


def save_upload(file_storage):
    """Write an uploaded file as <ms timestamp><ext>; returns the stored name or None."""
    if file_storage is None or not file_storage.filename:
        return None
    ext = os.path.splitext(secure_filename(file_storage.filename))[1].lower()
    folder = current_app.config['UPLOAD_FOLDER']
    stamp = int(time.time() * 1000)
    # Two uploads in the same millisecond must not overwrite each other
    while os.path.exists(os.path.join(folder, f"{stamp}{ext}")):
        stamp += 1
    name = f"{stamp}{ext}"
    file_storage.save(os.path.join(folder, name))
    return name


def content_type_for(filename):
    ext = os.path.splitext(filename)[1].lower()
    return MIME_TYPES.get(ext, 'application/octet-stream')


def disposition_for(mime_type):
    if mime_type == 'application/pdf' or mime_type.startswith(INLINE_PREFIXES):
        return 'inline'
    return 'attachment'
