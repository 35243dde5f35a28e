from __future__ import annotations

import datetime as _dt
import logging
import signal
import threading

from . import config, db
from .connection import ConnectionManager, build_feed_url
from .differ import SnapshotDiffer
from .dispatcher import Dispatcher
from .evaluator import AlertEvaluator
from .feed import FeedPoller
from .monitor import StockMonitor
from .notifier import MessengerChannel
from .ratelimit import Cooldown, RateLimiter, SentMessageLog
from .scheduler import FallbackPoller

def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

def build_service(directory: db.SubscriberDirectory) -> tuple[StockMonitor, ConnectionManager, FallbackPoller]:
    """Wire the engine from configuration."""
    logger = logging.getLogger(__name__)

    channel = MessengerChannel(
        config.PAGE_ACCESS_TOKEN,
        config.GRAPH_API_URL,
        sent_log=SentMessageLog(_dt.timedelta(seconds=config.SENT_MESSAGE_TTL_SECONDS)),
    )
    feed = FeedPoller(config.FEED_API_BASE_URL, timeout=config.FEED_TIMEOUT_SECONDS)
    monitor = StockMonitor(
        differ=SnapshotDiffer(
            quiescence_window=_dt.timedelta(minutes=config.QUIESCENCE_WINDOW_MINUTES),
            bundle_slow_restock=config.BUNDLE_SLOW_RESTOCK,
        ),
        evaluator=AlertEvaluator(),
        dispatcher=Dispatcher(channel.send),
        directory=directory,
        fetch=feed.fetch_snapshot,
        rate_limiter=RateLimiter(
            command_cooldown=_dt.timedelta(seconds=config.COMMAND_COOLDOWN_SECONDS),
            daily_limit=config.DAILY_COMMAND_LIMIT,
            message_limit=config.MESSAGE_RATE_LIMIT,
            message_window=_dt.timedelta(seconds=config.MESSAGE_RATE_WINDOW_SECONDS),
            utc_offset=_dt.timedelta(hours=config.SCHEDULE_UTC_OFFSET_HOURS),
        ),
        cooldown=Cooldown(_dt.timedelta(minutes=config.MANUAL_CHECK_COOLDOWN_MINUTES)),
    )

    connection = ConnectionManager(
        build_feed_url(config.FEED_WS_URL, config.FEED_USER_ID),
        monitor.handle_realtime,
        on_connect=lambda: logger.info("WebSocket connected - real-time stock monitoring active"),
        on_disconnect=lambda: logger.warning("WebSocket disconnected - falling back to API polling"),
        base_delay=config.RECONNECT_BASE_DELAY_SECONDS,
        max_attempts=config.MAX_RECONNECT_ATTEMPTS,
    )

    poller = FallbackPoller(
        feed.fetch_snapshot,
        monitor.handle_scheduled,
        stream_active=connection.is_active,
        subscriber_count=monitor.subscriber_count,
        interval=_dt.timedelta(minutes=config.POLL_INTERVAL_MINUTES),
        utc_offset=_dt.timedelta(hours=config.SCHEDULE_UTC_OFFSET_HOURS),
    )
    return monitor, connection, poller

def main() -> None:
    """Initialise and run the stream and the fallback poller until signalled."""
    config.validate()
    setup_logging()
    logger = logging.getLogger(__name__)

    logger.info("Initializing database…")
    db.init_db()
    directory = db.SubscriberDirectory()
    directory.load()

    monitor, connection, poller = build_service(directory)

    stop = threading.Event()

    def _on_signal(signum, _frame) -> None:
        logger.info("Received signal %s, shutting down…", signum)
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    # First check right away rather than waiting for the next grid slot.
    try:
        poller.run_once()
    except Exception:
        logger.exception("Initial stock check failed")

    connection.connect()
    poller.start()
    logger.info(
        "Stock notifier running: %d subscribers, polling every %d minutes as fallback.",
        len(directory), config.POLL_INTERVAL_MINUTES,
    )

    stop.wait()
    poller.stop(timeout=5)
    connection.disconnect()
    logger.info("Stopped.")

if __name__ == "__main__":
    main()
