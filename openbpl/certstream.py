"""Certificate Transparency monitoring through a certstream feed."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

import websockets
from websockets.exceptions import WebSocketException

from .models import Event, Source

log = logging.getLogger(__name__)

READ_TIMEOUT = 60.0

_CONNECTION_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


def _section(value: Any, key: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"expected an object for {key!r}")
    return value


def _text(mapping: Mapping[str, Any], key: str) -> str:
    value = mapping.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"expected a string for {key!r}")
    return value


def _leaf_cert(entry: Mapping[str, Any]) -> Mapping[str, Any]:
    data = _section(entry.get("data"), "data")
    return _section(data.get("leaf_cert"), "leaf_cert")


def extract_domains(entry: Mapping[str, Any]) -> list[str]:
    """Return the lower-cased CN and DNS subject alternative names of a certstream entry."""
    leaf = _leaf_cert(_section(entry, "entry"))
    domains = []
    cn = _text(_section(leaf.get("subject"), "subject"), "CN")
    if cn:
        domains.append(cn.lower())
    sans = _text(_section(leaf.get("extensions"), "extensions"), "subjectAltName")
    if sans:
        for part in sans.split(","):
            part = part.strip()
            if part.startswith("DNS:"):
                domains.append(part[len("DNS:"):].lower())
    return domains


@dataclass
class CertstreamSource(Source):
    """Watches a certstream WebSocket feed for domains matching keywords."""

    url: str = ""
    keywords: list[str] = field(default_factory=list)
    reconnect_delay: float = 5.0
    put_timeout: float = 1.0
    name: str = field(default="certstream", init=False)
    _stopped: bool = field(default=False, init=False, repr=False, compare=False)
    _task: asyncio.Task | None = field(default=None, init=False, repr=False, compare=False)

    async def start(self, events: asyncio.Queue) -> None:
        """Read the feed until stopped, reconnecting after failures."""
        self._stopped = False
        self._task = asyncio.current_task()
        log.info("connecting to certstream: %s", self.url)
        try:
            while not self._stopped:
                try:
                    await self._connect(events)
                except _CONNECTION_ERRORS as exc:
                    log.error("certstream connection failed: %s", exc)
                    log.info("reconnecting in %s seconds", self.reconnect_delay)
                    await asyncio.sleep(self.reconnect_delay)
        except asyncio.CancelledError:
            if not self._stopped:
                raise
        finally:
            self._task = None
        log.info("certstream source stopped")

    def stop(self) -> None:
        """Ask a running start() to finish."""
        self._stopped = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()

    async def _connect(self, events: asyncio.Queue) -> None:
        async with websockets.connect(self.url) as connection:
            log.info("connected to certstream")
            log.info("monitoring keywords: %s", self.keywords)
            while not self._stopped:
                message = await asyncio.wait_for(connection.recv(), READ_TIMEOUT)
                try:
                    await self.process_message(message, events)
                except ValueError as exc:
                    log.warning("failed to process cert entry: %s", exc)

    async def process_message(self, message: str | bytes, events: asyncio.Queue) -> None:
        """Turn one certstream message into events for matching domains.

        Raises ValueError if the message is not a valid certstream entry.
        """
        entry = json.loads(message)
        if not isinstance(entry, Mapping):
            raise ValueError("certstream message is not an object")
        if _text(entry, "message_type") != "certificate_update":
            return
        domains = extract_domains(entry)
        data = _section(entry.get("data"), "data")
        leaf = _leaf_cert(entry)
        cn = _text(_section(leaf.get("subject"), "subject"), "CN")
        sans = _text(_section(leaf.get("extensions"), "extensions"), "subjectAltName")
        update_type = _text(data, "update_type")

        for domain in domains:
            if not self.should_process(domain):
                continue
            matched = self.matched_keywords(domain)
            event = Event(
                id=f"cert_{time.time_ns()}",
                source=self.name,
                type="certificate_update",
                domain=domain,
                timestamp=datetime.now(),
                data={"cn": cn, "sans": sans, "update_type": update_type},
                metadata={"matched_keywords": matched},
            )
            try:
                await asyncio.wait_for(events.put(event), self.put_timeout)
            except asyncio.TimeoutError:
                log.warning("event queue full, dropping certificate: %s", domain)
            else:
                log.info("new certificate: %s (matched: %s)", domain, matched)

    def should_process(self, domain: str) -> bool:
        """Whether a domain is worth an event: not a wildcard, not tiny, and matching a keyword."""
        if domain.startswith("*."):
            return False
        if len(domain.encode("utf-8")) < 4:
            return False
        return any(keyword.lower() in domain for keyword in self.keywords)

    def matched_keywords(self, domain: str) -> list[str]:
        """The configured keywords that occur in the domain, in configured order."""
        domain = domain.lower()
        return [keyword for keyword in self.keywords if keyword.lower() in domain]