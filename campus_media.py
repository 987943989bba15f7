"""Object storage for event media and chat attachments.

The service only needs to upload bytes, fetch them back and delete them by id.
``InMemoryObjectStorage`` backs development and tests; ``GridFSObjectStorage``
keeps the files in MongoDB next to the aggregate.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable

import gridfs
from gridfs.errors import NoFile
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from campus_errors import NotFound, PersistenceError

logger = logging.getLogger(__name__)

FILE_URL_PREFIX = "/api/media/file/"


@dataclass
class StoredObject:
    url: str
    external_id: str


def resource_kind(content_type: str) -> str:
    """Map a MIME type to ``image`` or ``video``; anything else is rejected upstream."""
    return "image" if content_type.startswith("image/") else "video"


def safe_filename(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9._-]", "", re.sub(r"\s+", "_", name or "")) or "file"


@runtime_checkable
class ObjectStorage(Protocol):
    def upload(self, data: bytes, content_type: str, folder: str, filename: str = "") -> StoredObject: ...
    def open(self, external_id: str) -> Tuple[bytes, str]: ...
    def delete(self, external_id: str, kind: str) -> None: ...


class InMemoryObjectStorage:
    def __init__(self) -> None:
        self.objects: Dict[str, Tuple[bytes, str, str]] = {}

    def upload(self, data: bytes, content_type: str, folder: str, filename: str = "") -> StoredObject:
        external_id = f"{folder}/{uuid.uuid4().hex}_{safe_filename(filename)}"
        self.objects[external_id] = (bytes(data), content_type, folder)
        return StoredObject(url=f"{FILE_URL_PREFIX}{external_id}", external_id=external_id)

    def open(self, external_id: str) -> Tuple[bytes, str]:
        if external_id not in self.objects:
            raise NotFound("File not found")
        data, content_type, _ = self.objects[external_id]
        return data, content_type

    def delete(self, external_id: str, kind: str) -> None:
        if self.objects.pop(external_id, None) is None:
            raise NotFound("File not found")


class StagedStorage:
    """Storage view for one aggregate transaction.

    Deletes are queued until ``commit`` so a failed save never leaves records
    pointing at removed files. ``rollback`` removes whatever was uploaded
    through this view.
    """

    def __init__(self, storage: ObjectStorage) -> None:
        self.storage = storage
        self.uploaded: List[Tuple[str, str]] = []
        self.pending_deletes: List[Tuple[str, str]] = []

    def upload(self, data: bytes, content_type: str, folder: str, filename: str = "") -> StoredObject:
        stored = self.storage.upload(data, content_type, folder, filename)
        self.uploaded.append((stored.external_id, resource_kind(content_type)))
        return stored

    def open(self, external_id: str) -> Tuple[bytes, str]:
        return self.storage.open(external_id)

    def delete(self, external_id: str, kind: str) -> None:
        self.pending_deletes.append((external_id, kind))

    def commit(self) -> None:
        pending, self.pending_deletes = self.pending_deletes, []
        self.uploaded = []
        for external_id, kind in pending:
            self._remove(external_id, kind)

    def rollback(self) -> None:
        uploaded, self.uploaded = self.uploaded, []
        self.pending_deletes = []
        for external_id, kind in uploaded:
            logger.info("Discarding %s file %s from an unsaved change", kind, external_id)
            self._remove(external_id, kind)

    def _remove(self, external_id: str, kind: str) -> None:
        try:
            self.storage.delete(external_id, kind)
        except Exception as e:
            logger.error("Failed to delete %s file %s: %s", kind, external_id, e)


class GridFSObjectStorage:
    """GridFS-backed storage; files are tagged with their folder and kind."""

    def __init__(
        self,
        uri: str,
        db_name: str = "campus_events",
        bucket: str = "media",
        timeout_ms: int = 5000,
        client: Optional[MongoClient] = None,
    ) -> None:
        self.client = client or MongoClient(uri, serverSelectionTimeoutMS=timeout_ms, socketTimeoutMS=timeout_ms)
        self.fs = gridfs.GridFS(self.client[db_name], collection=bucket)

    def upload(self, data: bytes, content_type: str, folder: str, filename: str = "") -> StoredObject:
        try:
            file_id = self.fs.put(
                data,
                filename=safe_filename(filename),
                metadata={"folder": folder, "kind": resource_kind(content_type), "content_type": content_type},
            )
        except PyMongoError as e:
            raise PersistenceError(f"Upload failed: {e}") from e
        external_id = str(file_id)
        return StoredObject(url=f"{FILE_URL_PREFIX}{external_id}", external_id=external_id)

    def open(self, external_id: str) -> Tuple[bytes, str]:
        try:
            grid_out = self.fs.get(ObjectId(external_id))
        except (InvalidId, NoFile) as e:
            raise NotFound("File not found") from e
        meta = grid_out.metadata or {}
        return grid_out.read(), meta.get("content_type") or "application/octet-stream"

    def delete(self, external_id: str, kind: str) -> None:
        try:
            self.fs.delete(ObjectId(external_id))
        except InvalidId as e:
            raise NotFound("File not found") from e
        logger.info("Deleted %s file %s from GridFS", kind, external_id)
