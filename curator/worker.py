from __future__ import annotations

import asyncio
import logging
import random
import time

from opentelemetry import trace

from curator.core.config import get_settings
from curator.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from curator.services.providers import get_content_processor, get_scan_orchestrator
from curator.services.repository import get_repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_worker() -> None:
    settings = get_settings()
    configure_logging(settings)
    telemetry_runtime = setup_telemetry(settings, "worker")
    orchestrator = get_scan_orchestrator()
    processor = get_content_processor()

    backoff = settings.poll_interval_seconds
    last_scan_at: float | None = None
    last_retry_at = 0.0

    try:
        while True:
            try:
                with tracer.start_as_current_span("worker.cycle"):
                    now = time.monotonic()
                    if last_scan_at is None or now - last_scan_at >= settings.scan_interval_seconds:
                        summary = await orchestrator.run_daily_scan()
                        logger.info(
                            "daily scan complete: scans=%s approved=%s skipped=%s",
                            summary.total_scans,
                            summary.total_items_approved,
                            summary.skipped_scans,
                        )
                        last_scan_at = now

                    if now - last_retry_at >= settings.retry_interval_seconds:
                        retried = await processor.process_queue(max_items=settings.retry_batch_size)
                        if retried:
                            logger.info("retried queued items: %s", len(retried))
                        last_retry_at = now

                    backoff = settings.poll_interval_seconds
                await asyncio.sleep(settings.poll_interval_seconds)
            except Exception as exc:  # pragma: no cover - long-running loop robustness
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        await get_repository().close()
        shutdown_telemetry(telemetry_runtime)


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
