"""Storage backends for events and detection results."""

from __future__ import annotations

import dataclasses
import threading
import time
from typing import Any, Mapping

from .models import DetectionResult, Event, Storage

_EVENT_FILTER_KEYS = ("source", "type", "domain")
_DETECTION_FILTER_KEYS = ("domain", "brand", "rule", "is_threat")


class StorageError(Exception):
    """Raised when a storage backend cannot be created or used."""


def _matches(item: Any, filters: Mapping[str, Any], keys: tuple[str, ...]) -> bool:
    return all(
        getattr(item, key) == value for key, value in filters.items() if key in keys
    )


class MemoryStorage(Storage):
    """Thread-safe in-memory storage."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._events: list[Event] = []
        self._detections: list[DetectionResult] = []
        self._event_index: dict[str, int] = {}
        self._detection_index: dict[str, int] = {}
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise StorageError("storage is closed")

    def save_event(self, event: Event) -> None:
        with self._lock:
            self._check_open()
            if not event.id:
                event = dataclasses.replace(
                    event, id=f"event_{len(self._events)}_{time.time_ns()}"
                )
            self._event_index[event.id] = len(self._events)
            self._events.append(event)

    def save_detection(self, result: DetectionResult) -> None:
        with self._lock:
            self._check_open()
            if not result.id:
                result = dataclasses.replace(
                    result, id=f"detection_{len(self._detections)}_{time.time_ns()}"
                )
            self._detection_index[result.id] = len(self._detections)
            self._detections.append(result)

    def get_events(self, filters: Mapping[str, Any] | None = None) -> list[Event]:
        with self._lock:
            if not filters:
                return list(self._events)
            return [e for e in self._events if _matches(e, filters, _EVENT_FILTER_KEYS)]

    def get_detections(
        self, filters: Mapping[str, Any] | None = None
    ) -> list[DetectionResult]:
        with self._lock:
            if not filters:
                return list(self._detections)
            return [
                d
                for d in self._detections
                if _matches(d, filters, _DETECTION_FILTER_KEYS)
            ]

    def close(self) -> None:
        with self._lock:
            self._events = []
            self._detections = []
            self._event_index = {}
            self._detection_index = {}
            self._closed = True


def new_storage(storage_type: str) -> Storage:
    """Create the storage backend with the given name."""
    if storage_type == "memory":
        return MemoryStorage()
    if storage_type == "sqlite":
        raise StorageError("SQLite storage not implemented yet")
    if storage_type == "postgres":
        raise StorageError("PostgreSQL storage not implemented yet")
    raise StorageError(f"unknown storage type: {storage_type}")