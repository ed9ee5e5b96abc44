from __future__ import annotations

import logging
import signal
import threading

from . import config
from .control import ControlSurface
from .gate import NotificationGate
from .notifier import AvailabilityNotifier, TwilioSender
from .scheduler import Scheduler
from .scraper import build_default_source, load_variants
from .server import ControlServer
from .tracker import AvailabilityTracker


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_services() -> tuple[AvailabilityTracker, Scheduler, AvailabilityNotifier]:
    """Construct the one instance of each service for this process."""
    gate = NotificationGate(
        cooldown_minutes=config.COOLDOWN_MINUTES,
        max_per_day=config.MAX_NOTIFICATIONS_PER_DAY,
    )
    notifier = AvailabilityNotifier(TwilioSender(), gate)
    tracker = AvailabilityTracker(
        build_default_source(),
        notifier,
        load_variants(),
        config.STORE_IDS,
        preferred_sku=config.PRODUCT_SKU,
    )
    scheduler = Scheduler(
        tracker,
        interval_minutes=config.CHECK_INTERVAL_MINUTES,
        enabled=config.CHECK_ENABLED,
    )
    return tracker, scheduler, notifier


def main() -> None:
    """Initialise services, start the control server and (optionally) the scheduler."""
    config.validate()
    setup_logging()
    logger = logging.getLogger(__name__)

    tracker, scheduler, notifier = build_services()
    server = ControlServer(ControlSurface(tracker, scheduler, notifier), config.HOST, config.PORT)
    if not server.start():
        logger.warning("Control server failed to start - running without the control API")

    logger.info(
        "Watching %s (%s) across %d variants at stores %s",
        config.PRODUCT_SKU, config.PRODUCT_NAME, len(tracker.variants), ", ".join(config.STORE_IDS),
    )
    if config.CHECK_ENABLED:
        logger.info("Auto-checking is enabled, starting scheduler...")
        scheduler.start()
    else:
        logger.warning("Auto-checking is disabled. Use the control API to run manual checks.")

    shutdown = threading.Event()

    def _on_signal(signum, frame):
        logger.info("Shutting down gracefully...")
        shutdown.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    shutdown.wait()
    scheduler.stop(timeout=30)
    server.stop()


if __name__ == "__main__":
    main()
