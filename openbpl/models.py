"""Core data types and pipeline component interfaces."""

from __future__ import annotations

import asyncio
import difflib
import hashlib
import logging
import re
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping

from .config import SMTPConfig

log = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "OpenBPL/1.0"
_HTML_LIMIT = 1 << 20
_FAVICON_LIMIT = 256 << 10

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_FULL = re.compile(r"(?:\d+(?:\.\d+)?(?:ns|us|µs|ms|s|m|h))+")

Fetcher = Callable[[str, float, str, int], "tuple[bytes, str | None]"]


def _parse_timeout(text: str, default: float) -> float:
    """Turn a duration such as "10s" or "1m30s" into seconds."""
    text = text.strip()
    if not text:
        return default
    if text == "0":
        return 0.0
    if not _DURATION_FULL.fullmatch(text):
        raise ValueError(f"invalid duration: {text!r}")
    return sum(
        float(number) * _DURATION_UNITS[unit]
        for number, unit in _DURATION_PART.findall(text)
    )


def _http_get(
    url: str, timeout: float, user_agent: str, limit: int
) -> tuple[bytes, str | None]:
    """Fetch up to ``limit`` bytes of a URL and its declared charset."""
    request = urllib.request.Request(url, headers={"User-Agent": user_agent})
    with urllib.request.urlopen(request, timeout=timeout or None) as response:
        return response.read(limit), response.headers.get_content_charset()


def _similarity(first: bytes, second: bytes) -> float:
    """Score how alike two byte strings are, from 0.0 to 1.0."""
    if first == second:
        return 1.0
    if not first or not second:
        return 0.0
    return difflib.SequenceMatcher(None, first, second).ratio()


@dataclass
class Event:
    """A monitoring event such as a newly issued certificate."""

    id: str = ""
    source: str = ""
    type: str = ""
    domain: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class DetectionResult:
    """The outcome of running a detector over an event."""

    id: str = ""
    event_id: str = ""
    domain: str = ""
    is_threat: bool = False
    confidence: float = 0.0
    brand: str = ""
    rule: str = ""
    detected_at: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)


class Source(ABC):
    """Produces events into a queue."""

    name: str = ""

    @abstractmethod
    async def start(self, events: asyncio.Queue) -> None:
        """Run until cancelled, putting events on the queue."""

    @abstractmethod
    def stop(self) -> None:
        """Stop the source."""


class Enricher(ABC):
    """Adds data to events."""

    name: str = ""

    @abstractmethod
    async def enrich(self, event: Event) -> None:
        """Add data to the event in place."""


class Detector(ABC):
    """Analyses events for threats."""

    name: str = ""

    @abstractmethod
    async def detect(self, event: Event) -> list[DetectionResult]:
        """Return detection results for the event."""


class Enforcer(ABC):
    """Acts on detected threats."""

    name: str = ""

    @abstractmethod
    async def enforce(self, result: DetectionResult, dry_run: bool) -> None:
        """Take action on a detection result."""


class Storage(ABC):
    """Persists events and detection results."""

    @abstractmethod
    def save_event(self, event: Event) -> None: ...

    @abstractmethod
    def save_detection(self, result: DetectionResult) -> None: ...

    @abstractmethod
    def get_events(self, filters: Mapping[str, Any] | None = None) -> list[Event]: ...

    @abstractmethod
    def get_detections(
        self, filters: Mapping[str, Any] | None = None
    ) -> list[DetectionResult]: ...

    @abstractmethod
    def close(self) -> None: ...


@dataclass
class HTMLEnricher(Enricher):
    """Fetches the front page of the event's domain into ``event.data``."""

    timeout: str = ""
    user_agent: str = ""
    fetch: Fetcher = field(default=_http_get, repr=False, compare=False)
    name: str = field(default="html_content", init=False)

    async def enrich(self, event: Event) -> None:
        if not event.domain:
            return
        timeout = _parse_timeout(self.timeout, 10.0)
        body, charset = await asyncio.to_thread(
            self.fetch,
            f"https://{event.domain}/",
            timeout,
            self.user_agent or DEFAULT_USER_AGENT,
            _HTML_LIMIT,
        )
        try:
            text = body.decode(charset or "utf-8", errors="replace")
        except LookupError:
            text = body.decode("utf-8", errors="replace")
        event.data["html_content"] = text


@dataclass
class FaviconEnricher(Enricher):
    """Fetches the favicon of the event's domain into ``event.data``."""

    timeout: str = ""
    fetch: Fetcher = field(default=_http_get, repr=False, compare=False)
    name: str = field(default="favicon", init=False)

    async def enrich(self, event: Event) -> None:
        if not event.domain:
            return
        timeout = _parse_timeout(self.timeout, 5.0)
        body, _ = await asyncio.to_thread(
            self.fetch,
            f"https://{event.domain}/favicon.ico",
            timeout,
            DEFAULT_USER_AGENT,
            _FAVICON_LIMIT,
        )
        event.data["favicon"] = body
        event.data["favicon_sha256"] = hashlib.sha256(body).hexdigest()


@dataclass
class FaviconSimilarityDetector(Detector):
    """Compares an event's favicon with each brand's reference favicon."""

    threshold: float = 0.0
    reference_favicons: dict[str, str] = field(default_factory=dict)
    timeout: float = 5.0
    fetch: Fetcher = field(default=_http_get, repr=False, compare=False)
    name: str = field(default="favicon_similarity", init=False)
    _references: dict[str, bytes] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    async def _reference(self, url: str) -> bytes:
        cached = self._references.get(url)
        if cached is None:
            cached, _ = await asyncio.to_thread(
                self.fetch, url, self.timeout, DEFAULT_USER_AGENT, _FAVICON_LIMIT
            )
            self._references[url] = cached
        return cached

    async def detect(self, event: Event) -> list[DetectionResult]:
        favicon = event.data.get("favicon")
        if not favicon:
            return []
        results = []
        for brand, url in self.reference_favicons.items():
            try:
                reference = await self._reference(url)
            except (OSError, ValueError) as exc:
                log.warning("reference favicon for %s unavailable: %s", brand, exc)
                continue
            score = _similarity(favicon, reference)
            results.append(
                DetectionResult(
                    event_id=event.id,
                    domain=event.domain,
                    is_threat=score >= self.threshold,
                    confidence=score,
                    brand=brand,
                    rule=self.name,
                    metadata={"similarity": score, "reference": url},
                )
            )
        return results


@dataclass
class LoggerEnforcer(Enforcer):
    """Writes detection results to the log."""

    name: str = field(default="logger", init=False)

    async def enforce(self, result: DetectionResult, dry_run: bool) -> None:
        log.info(
            "%sthreat on %s (brand: %s, rule: %s, confidence: %.2f)",
            "[dry-run] " if dry_run else "",
            result.domain,
            result.brand,
            result.rule,
            result.confidence,
        )


@dataclass
class EmailEnforcer(Enforcer):
    """Abuse e-mail action; currently sends nothing."""

    smtp: SMTPConfig = field(default_factory=SMTPConfig)
    from_: str = ""
    name: str = field(default="email_abuse", init=False)

    async def enforce(self, result: DetectionResult, dry_run: bool) -> None:
        return None