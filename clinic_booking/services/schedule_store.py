from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from clinic_booking.core.config import Settings
from clinic_booking.core.errors import NotFoundError, PersistenceError
from clinic_booking.services.booking_models import ScheduleConfig

logger = logging.getLogger(__name__)


class ScheduleStore(ABC):
    @abstractmethod
    def get_schedule(self, provider_id: str) -> ScheduleConfig:
        raise NotImplementedError

    @abstractmethod
    def save_schedule(self, schedule: ScheduleConfig) -> ScheduleConfig:
        raise NotImplementedError


class InMemoryScheduleStore(ScheduleStore):
    def __init__(self, *, timeout_seconds: float = 5.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._lock = threading.Lock()
        self._schedules_by_provider: dict[str, ScheduleConfig] = {}

    def get_schedule(self, provider_id: str) -> ScheduleConfig:
        with self._locked():
            schedule = self._schedules_by_provider.get(provider_id)
        if schedule is None:
            raise NotFoundError(
                "Provider has not configured a schedule.",
                details={"provider_id": provider_id},
            )
        return schedule

    def save_schedule(self, schedule: ScheduleConfig) -> ScheduleConfig:
        with self._locked():
            self._schedules_by_provider[schedule.provider_id] = schedule
        return schedule

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.timeout_seconds):
            raise PersistenceError(
                "Timed out waiting for the schedules store.",
                details={"timeout_seconds": self.timeout_seconds},
            )
        try:
            yield
        finally:
            self._lock.release()


class MongoScheduleStore(ScheduleStore):
    def __init__(
        self,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
        timeout_seconds: float = 5.0,
    ) -> None:
        from pymongo import MongoClient

        timeout_ms = int(timeout_seconds * 1000)
        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            socketTimeoutMS=timeout_ms,
            timeoutMS=timeout_ms,
        )
        self._collection = self._client[db_name][collection_name]

    def get_schedule(self, provider_id: str) -> ScheduleConfig:
        from pymongo.errors import PyMongoError

        try:
            document = self._collection.find_one({"_id": provider_id})
        except PyMongoError as exc:
            logger.warning("Schedule store failure provider_id=%s (%s)", provider_id, exc)
            raise PersistenceError(f"Schedule store failure: {exc}") from exc
        if not document:
            raise NotFoundError(
                "Provider has not configured a schedule.",
                details={"provider_id": provider_id},
            )
        return ScheduleConfig.from_payload(document)

    def save_schedule(self, schedule: ScheduleConfig) -> ScheduleConfig:
        from pymongo.errors import PyMongoError

        document = schedule.to_dict()
        document["updated_at"] = datetime.now(UTC)
        try:
            self._collection.replace_one({"_id": schedule.provider_id}, document, upsert=True)
        except PyMongoError as exc:
            logger.warning("Schedule store failure provider_id=%s (%s)", schedule.provider_id, exc)
            raise PersistenceError(f"Schedule store failure: {exc}") from exc
        return schedule


def create_schedule_store(settings: Settings) -> ScheduleStore:
    store_name = settings.schedules_store
    if store_name == "memory":
        return InMemoryScheduleStore(timeout_seconds=settings.persistence_timeout_seconds)

    if store_name == "mongodb":
        return MongoScheduleStore(
            uri=settings.mongodb_uri,
            db_name=settings.mongodb_db_name,
            collection_name=settings.mongodb_schedules_collection,
            connect_timeout_ms=settings.mongodb_connect_timeout_ms,
            timeout_seconds=settings.persistence_timeout_seconds,
        )

    raise ValueError(f"Unsupported schedules store: {store_name!r}")
