"""
Blob storage for uploaded images, kept in GridFS next to the documents.

Files are addressed by url ("/files/<file id>"); the path given on upload is
stored as the GridFS filename.
"""
import logging
from typing import Optional

import gridfs
from bson import ObjectId
from pymongo.database import Database

logger = logging.getLogger(__name__)

URL_PREFIX = "/files/"


def file_url(file_id) -> str:
    return f"{URL_PREFIX}{file_id}"


def file_id_from_url(url: str) -> Optional[ObjectId]:
    raw = url.rsplit(URL_PREFIX, 1)[-1] if URL_PREFIX in url else url
    return ObjectId(raw) if ObjectId.is_valid(raw) else None


class BlobStore:
    def __init__(self, db: Database, bucket: str = "uploads"):
        self.fs = gridfs.GridFS(db, collection=bucket)

    def upload(self, data: bytes, path: str, content_type: Optional[str] = None) -> str:
        file_id = self.fs.put(data, filename=path, content_type=content_type or "application/octet-stream")
        logger.info("Stored %s (%d bytes) as %s", path, len(data), file_id)
        return file_url(file_id)

    def delete(self, url: str) -> None:
        file_id = file_id_from_url(url)
        if file_id is None or not self.fs.exists(file_id):
            logger.warning("Blob %s not found, nothing to delete", url)
            return
        self.fs.delete(file_id)

    def open(self, file_id: str):
        oid = file_id_from_url(file_id)
        if oid is None:
            return None
        try:
            return self.fs.get(oid)
        except gridfs.NoFile:
            return None
