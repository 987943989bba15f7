"""Runtime configuration read from the environment.

Environment:
  DB_BACKEND=memory|mongodb
  MONGODB_URI=... (when DB_BACKEND=mongodb)
  DB_NAME=campus_events
  COLLECTION_PREFIX=dev_
  STORE_TIMEOUT_MS=5000
  SCHEDULER_ENABLED=true
  SCHEDULER_INTERVAL=60
  ADMIN_USERNAME / ADMIN_PASSWORD
  LOG_LEVEL=INFO

A ``.env`` file in the working directory is loaded first.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from campus_media import GridFSObjectStorage, InMemoryObjectStorage
from campus_notify import Announcer
from campus_store import AggregateGateway, InMemoryStore, MongoStore
from campus_system import CampusSystem


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "t", "yes", "on")


@dataclass
class Settings:
    db_backend: str = "memory"
    mongodb_uri: str = ""
    db_name: str = "campus_events"
    collection_prefix: str = ""
    store_timeout_ms: int = 5000
    scheduler_enabled: bool = True
    scheduler_interval: float = 60.0
    admin_username: str = "admin"
    admin_password: str = "admin123"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            db_backend=os.getenv("DB_BACKEND", "memory").lower(),
            mongodb_uri=os.getenv("MONGODB_URI", ""),
            db_name=os.getenv("DB_NAME", "campus_events"),
            collection_prefix=os.getenv("COLLECTION_PREFIX", ""),
            store_timeout_ms=int(os.getenv("STORE_TIMEOUT_MS", "5000")),
            scheduler_enabled=_flag(os.getenv("SCHEDULER_ENABLED", "true")),
            scheduler_interval=float(os.getenv("SCHEDULER_INTERVAL", "60")),
            admin_username=os.getenv("ADMIN_USERNAME", "admin"),
            admin_password=os.getenv("ADMIN_PASSWORD", "admin123"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def default_admin(self) -> dict:
        return {"username": self.admin_username, "password": self.admin_password}


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_system(settings: Settings) -> CampusSystem:
    """Assemble store, object storage and push announcer for the chosen backend."""
    if settings.db_backend == "mongodb":
        if not settings.mongodb_uri:
            raise RuntimeError("DB_BACKEND=mongodb requires MONGODB_URI")
        store = MongoStore(
            uri=settings.mongodb_uri,
            db_name=settings.db_name,
            collection_prefix=settings.collection_prefix,
            timeout_ms=settings.store_timeout_ms,
        )
        storage = GridFSObjectStorage(
            uri=settings.mongodb_uri,
            db_name=settings.db_name,
            bucket=f"{settings.collection_prefix}media",
            client=store.client,
        )
        return CampusSystem(
            gateway=AggregateGateway(store),
            storage=storage,
            announcer=Announcer(),
            default_admin=settings.default_admin,
        )
    return CampusSystem(
        gateway=AggregateGateway(InMemoryStore()),
        storage=InMemoryObjectStorage(),
        announcer=Announcer(),
        default_admin=settings.default_admin,
    )
