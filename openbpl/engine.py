"""The monitoring engine that drives events through the pipeline."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .certstream import CertstreamSource
from .config import Config
from .models import (
    DetectionResult,
    Detector,
    EmailEnforcer,
    Enforcer,
    Enricher,
    Event,
    FaviconEnricher,
    FaviconSimilarityDetector,
    HTMLEnricher,
    LoggerEnforcer,
    Source,
)
from .storage import StorageError, new_storage

log = logging.getLogger(__name__)

EVENT_QUEUE_SIZE = 100


@dataclass
class Statistics:
    """Counters describing what the engine has done."""

    certs_processed: int = 0
    threats_found: int = 0
    actions_live: int = 0
    actions_dry_run: int = 0
    start_time: datetime = field(default_factory=datetime.now)


def build_sources(cfg: Config) -> list[Source]:
    """Create the enabled event sources."""
    sources: list[Source] = []
    certstream = cfg.monitoring.sources.certstream
    if certstream.enabled:
        sources.append(
            CertstreamSource(url=certstream.url, keywords=list(certstream.keywords))
        )
    return sources


def build_enrichers(cfg: Config) -> list[Enricher]:
    """Create the enabled enrichers."""
    enrichers: list[Enricher] = []
    html = cfg.enrichment.html_content
    if html.enabled:
        enrichers.append(HTMLEnricher(timeout=html.timeout, user_agent=html.user_agent))
    if cfg.enrichment.favicon.enabled:
        enrichers.append(FaviconEnricher(timeout=cfg.enrichment.favicon.timeout))
    return enrichers


def build_detectors(cfg: Config) -> list[Detector]:
    """Create the enabled detectors."""
    detectors: list[Detector] = []
    similarity = cfg.rules.favicon_similarity
    if similarity.enabled:
        detectors.append(
            FaviconSimilarityDetector(
                threshold=similarity.threshold,
                reference_favicons=dict(similarity.reference_favicons),
            )
        )
    return detectors


def build_enforcers(cfg: Config) -> list[Enforcer]:
    """Create the enabled enforcers, the logger first."""
    enforcers: list[Enforcer] = []
    if cfg.enforcement.logger.enabled:
        enforcers.append(LoggerEnforcer())
    email = cfg.enforcement.email_abuse
    if email.enabled:
        enforcers.append(EmailEnforcer(smtp=email.smtp, from_=email.from_))
    return enforcers


class Engine:
    """Runs sources and passes their events through enrichment, detection and enforcement."""

    def __init__(self, cfg: Config, stats_interval: float = 30.0) -> None:
        log.info("initializing engine")
        try:
            self.storage = new_storage(cfg.storage.type)
        except StorageError as exc:
            raise StorageError(f"failed to initialize storage: {exc}") from exc
        log.info("storage initialized: %s", cfg.storage.type)
        self.cfg = cfg
        self.sources = build_sources(cfg)
        log.info("sources initialized: %d", len(self.sources))
        self.enrichers = build_enrichers(cfg)
        log.info("enrichers initialized: %d", len(self.enrichers))
        self.detectors = build_detectors(cfg)
        log.info("detectors initialized: %d", len(self.detectors))
        self.enforcers = build_enforcers(cfg)
        log.info("enforcers initialized: %d", len(self.enforcers))
        self.stats = Statistics()
        self.stats_interval = stats_interval

    async def run(self, duration: float | None = None) -> None:
        """Run until cancelled, or for `duration` seconds when it is positive."""
        log.info("starting monitoring engine")
        log.info("mode: %s", "DRY-RUN" if self.cfg.dry_run else "LIVE")
        events: asyncio.Queue = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)
        tasks = [asyncio.create_task(self._report_stats())]
        tasks.extend(
            asyncio.create_task(self._run_source(source, events)) for source in self.sources
        )
        tasks.append(asyncio.create_task(self._process_events(events)))
        try:
            if duration is not None and duration > 0:
                await asyncio.sleep(duration)
            else:
                await asyncio.Event().wait()
        finally:
            log.info("monitoring engine stopping")
            for source in self.sources:
                source.stop()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            log.info("monitoring engine stopped")

    async def _run_source(self, source: Source, events: asyncio.Queue) -> None:
        log.info("starting source: %s", source.name)
        try:
            await source.start(events)
        except Exception as exc:
            log.error("source %s failed: %s", source.name, exc)

    async def _process_events(self, events: asyncio.Queue) -> None:
        while True:
            event = await events.get()
            try:
                await self.process_event(event)
            except Exception as exc:
                log.error("failed to process event %s: %s", event.id, exc)

    async def process_event(self, event: Event) -> list[DetectionResult]:
        """Store, enrich and inspect one event; return the detection results."""
        self.stats.certs_processed += 1
        try:
            self.storage.save_event(dataclasses.replace(event))
        except Exception as exc:
            log.warning("failed to save event: %s", exc)

        for enricher in self.enrichers:
            try:
                await enricher.enrich(event)
            except Exception as exc:
                log.warning("enricher %s failed for %s: %s", enricher.name, event.domain, exc)

        results: list[DetectionResult] = []
        for detector in self.detectors:
            try:
                results.extend(await detector.detect(event))
            except Exception as exc:
                log.warning("detector %s failed for %s: %s", detector.name, event.domain, exc)

        for result in results:
            try:
                await self.process_detection_result(result)
            except Exception as exc:
                log.error("failed to process detection result: %s", exc)
        return results

    async def process_detection_result(self, result: DetectionResult) -> None:
        """Store a detection result and, for a threat, run the enforcers."""
        try:
            self.storage.save_detection(result)
        except Exception as exc:
            log.warning("failed to save detection result: %s", exc)

        if not result.is_threat:
            return
        self.stats.threats_found += 1
        log.warning(
            "THREAT DETECTED: %s (confidence: %.2f, rule: %s)",
            result.domain,
            result.confidence,
            result.rule,
        )

        for enforcer in self.enforcers:
            try:
                await enforcer.enforce(result, self.cfg.dry_run)
            except Exception as exc:
                log.warning("enforcer %s failed for %s: %s", enforcer.name, result.domain, exc)
                continue
            if self.cfg.dry_run:
                self.stats.actions_dry_run += 1
            else:
                self.stats.actions_live += 1

    def format_stats(self) -> str:
        """A one-line summary of the statistics."""
        stats = self.stats
        uptime = timedelta(
            seconds=round((datetime.now() - stats.start_time).total_seconds())
        )
        return (
            f"Stats - Uptime: {uptime}, Certs: {stats.certs_processed}, "
            f"Threats: {stats.threats_found}, Actions: {stats.actions_live} (live) "
            f"+ {stats.actions_dry_run} (dry-run)"
        )

    async def _report_stats(self) -> None:
        while True:
            await asyncio.sleep(self.stats_interval)
            log.info("%s", self.format_stats())