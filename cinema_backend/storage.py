"""
Poster image storage on the local filesystem.

Files live under ``<UPLOAD_FOLDER>/movies/`` with a random name; the movie row
keeps the path relative to the upload folder (``movies/<hex>.<ext>``).
"""

import logging
import os
import uuid
from pathlib import Path
from typing import List, Optional

from flask import current_app
from werkzeug.datastructures import FileStorage

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'jpeg', 'jpg', 'png', 'gif'}

# leading bytes of each accepted format
SIGNATURES = (
    b'\xff\xd8\xff',        # jpeg
    b'\x89PNG\r\n\x1a\n',   # png
    b'GIF87a',
    b'GIF89a',
)


class PosterStorage:
    def __init__(self, root, max_kb: int = 2048, directory: str = 'movies'):
        self.root = Path(root)
        self.max_kb = max_kb
        self.directory = directory

    def path(self, relative: str) -> Path:
        return self.root / relative

    def exists(self, relative: Optional[str]) -> bool:
        return bool(relative) and self.path(relative).is_file()

    def check(self, upload: Optional[FileStorage], required: bool = True) -> List[str]:
        """Messages describing why ``upload`` is not an acceptable poster"""
        if upload is None or not upload.filename:
            return ['The image field is required.'] if required else []

        errors = []
        ext = upload.filename.rsplit('.', 1)[-1].lower() if '.' in upload.filename else ''
        if ext not in ALLOWED_EXTENSIONS:
            errors.append('The image must be a file of type: jpeg, png, jpg, gif.')

        stream = upload.stream
        head = stream.read(16)
        stream.seek(0, os.SEEK_END)
        size = stream.tell()
        stream.seek(0)
        if not head.startswith(SIGNATURES):
            errors.append('The image must be an image.')
        if size > self.max_kb * 1024:
            errors.append(f'The image may not be greater than {self.max_kb} kilobytes.')
        return errors

    def save(self, upload: FileStorage) -> str:
        ext = upload.filename.rsplit('.', 1)[-1].lower()
        relative = f'{self.directory}/{uuid.uuid4().hex}.{ext}'
        target = self.path(relative)
        target.parent.mkdir(parents=True, exist_ok=True)
        upload.save(target)
        logger.info('poster_saved path=%s', relative)
        return relative

    def delete(self, relative: Optional[str]) -> None:
        if not relative:
            return
        try:
            self.path(relative).unlink()
        except FileNotFoundError:
            logger.warning('poster_missing path=%s', relative)
            return
        logger.info('poster_deleted path=%s', relative)


def get_storage() -> PosterStorage:
    return PosterStorage(
        current_app.config['UPLOAD_FOLDER'],
        max_kb=current_app.config.get('MAX_IMAGE_KB', 2048),
    )
