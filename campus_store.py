"""Aggregate store gateway.

The whole application state is one document. Stores only know how to read and
write that document; ``AggregateGateway`` turns it into an ``Aggregate`` and
wraps every operation in a load-mutate-save cycle under a lock.
"""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional, Protocol, runtime_checkable

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from campus_errors import DomainError, PersistenceError, StaleAggregateError
from campus_models import Aggregate

logger = logging.getLogger(__name__)

ARRAY_FIELDS = ("users", "events", "media", "messages", "feedbacks")
OBJECT_FIELDS = ("notifications", "admin")


def normalize_document(doc: object) -> dict:
    """Coerce a document into the aggregate shape.

    Array fields that are not lists and object fields that are not dicts are
    replaced with empty defaults. Anything that is not a mapping at all is
    rejected.
    """
    if not isinstance(doc, dict):
        raise PersistenceError("Invalid data structure")
    out = dict(doc)
    for name in ARRAY_FIELDS:
        if not isinstance(out.get(name), list):
            out[name] = []
    for name in OBJECT_FIELDS:
        if not isinstance(out.get(name), dict):
            out[name] = {}
    try:
        out["version"] = int(out.get("version") or 0)
    except (TypeError, ValueError):
        out["version"] = 0
    return out


# -----------------------------
# Storage backends
# -----------------------------


@runtime_checkable
class BaseStore(Protocol):
    def read_document(self) -> Optional[dict]: ...
    def write_document(self, doc: dict, expected_version: int) -> None: ...


class InMemoryStore:
    """Default in-memory store, used for development and tests."""

    def __init__(self, doc: Optional[dict] = None) -> None:
        self._doc: Optional[dict] = copy.deepcopy(doc) if doc is not None else None

    def read_document(self) -> Optional[dict]:
        return copy.deepcopy(self._doc) if self._doc is not None else None

    def write_document(self, doc: dict, expected_version: int) -> None:
        current = self._doc.get("version", 0) if self._doc is not None else 0
        if current != expected_version:
            raise StaleAggregateError(expected_version)
        self._doc = copy.deepcopy(doc)


class MongoStore:
    """MongoDB-backed store using PyMongo.

    The aggregate is kept as a single ``{"type": "app_data"}`` document and
    written with an upsert. The write filter includes the version that was
    loaded, so a save racing another process is detected instead of silently
    overwriting it.
    """

    DOC_TYPE = "app_data"

    def __init__(
        self,
        uri: str,
        db_name: str = "campus_events",
        collection_prefix: str = "",
        timeout_ms: int = 5000,
        client: Optional[MongoClient] = None,
    ) -> None:
        self.client = client or MongoClient(
            uri,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms,
        )
        self.db = self.client[db_name]
        self.c_state: Collection = self.db[f"{collection_prefix}app_state"]
        self.c_state.create_index("type", unique=True)

    def read_document(self) -> Optional[dict]:
        found = self.c_state.find_one({"type": self.DOC_TYPE})
        if not found or "data" not in found:
            return None
        data = dict(found["data"])
        data["version"] = int(found.get("version", 0))
        return data

    def write_document(self, doc: dict, expected_version: int) -> None:
        data = {k: v for k, v in doc.items() if k != "version"}
        query = {"type": self.DOC_TYPE}
        if expected_version:
            query["version"] = expected_version
        update = {
            "$set": {
                "data": data,
                "version": doc["version"],
                "last_updated": datetime.now(timezone.utc),
            }
        }
        # Upsert only applies to the very first save; later saves must match.
        result = self.c_state.update_one(query, update, upsert=not expected_version)
        if expected_version and result.matched_count == 0:
            raise StaleAggregateError(expected_version)
        logger.debug(
            "MongoDB save: matched=%s modified=%s upserted=%s",
            result.matched_count,
            result.modified_count,
            result.upserted_id,
        )


# -----------------------------
# Gateway
# -----------------------------


class AggregateGateway:
    """Loads and saves the whole aggregate; no partial updates."""

    def __init__(self, store: Optional[BaseStore] = None) -> None:
        self.store: BaseStore = store or InMemoryStore()
        self.lock = threading.RLock()

    def load(self) -> Aggregate:
        try:
            doc = self.store.read_document()
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load data: {e}") from e
        if doc is None:
            return Aggregate()
        agg = Aggregate.from_doc(normalize_document(doc))
        logger.debug("Loaded aggregate v%s: %d users, %d events", agg.version, len(agg.users), len(agg.events))
        return agg

    def save(self, agg: Aggregate) -> None:
        doc = normalize_document(agg.to_doc())
        expected = doc["version"]
        doc["version"] = expected + 1
        try:
            self.store.write_document(doc, expected)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to save data: {e}") from e
        agg.version = doc["version"]
        logger.info(
            "Saved aggregate v%s: %d users, %d events, %d media",
            agg.version,
            len(agg.users),
            len(agg.events),
            len(agg.media),
        )

    @contextmanager
    def transaction(self) -> Iterator[Aggregate]:
        """Serialize a load-mutate-save cycle.

        Mutations are discarded when the block raises, except for domain errors
        flagged with ``commit`` whose side effects are saved before re-raising.
        """
        with self.lock:
            agg = self.load()
            try:
                yield agg
            except DomainError as e:
                if e.commit:
                    self.save(agg)
                raise
            self.save(agg)
