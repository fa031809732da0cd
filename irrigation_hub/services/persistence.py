"""Background persistence flusher."""
import logging
import threading
import time
from typing import Optional

from irrigation_hub.config.config import FLUSH_INTERVAL_SEC, PRUNE_INTERVAL_SEC, READING_RETENTION_DAYS
from irrigation_hub.safety.ledger import SafetyLedger
from irrigation_hub.services.history_store import HistoryStore

logger = logging.getLogger(__name__)


class PersistenceFlusher:
    """Periodically syncs the ledger and buffered history, and prunes old readings."""

    def __init__(self, ledger: SafetyLedger, history: HistoryStore,
                 flush_interval: float = FLUSH_INTERVAL_SEC,
                 prune_interval: float = PRUNE_INTERVAL_SEC,
                 retention_days: int = READING_RETENTION_DAYS):
        self.ledger = ledger
        self.history = history
        self.flush_interval = flush_interval
        self.prune_interval = prune_interval
        self.retention_days = retention_days
        self.is_running = False
        self.flusher_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._last_prune: Optional[float] = None

    def start(self):
        """Start the flusher."""
        if self.is_running:
            return
        self.is_running = True
        self._stop_event.clear()
        self.flusher_thread = threading.Thread(target=self._flush_loop, name='persistence', daemon=True)
        self.flusher_thread.start()

    def stop(self):
        """Stop the flusher and write whatever is still buffered."""
        self.is_running = False
        self._stop_event.set()
        if self.flusher_thread:
            self.flusher_thread.join(timeout=5)
        self.run_once(prune=False)

    def _flush_loop(self):
        """Main flush loop."""
        while self.is_running:
            if self._stop_event.wait(self.flush_interval):
                break
            self.run_once()

    def run_once(self, prune: bool = True):
        """One flush pass; errors are logged and retried next pass."""
        try:
            rows = self.ledger.flush()
            if rows:
                logger.debug("Flushed %d ledger row(s)", rows)
        except Exception as e:
            logger.error("Ledger flush failed: %s", e)

        try:
            rows = self.history.flush()
            if rows:
                logger.debug("Flushed %d history row(s)", rows)
        except Exception as e:
            logger.error("History flush failed: %s", e)

        now = time.monotonic()
        if prune and (self._last_prune is None or now - self._last_prune >= self.prune_interval):
            self._last_prune = now
            try:
                self.history.prune(self.retention_days)
            except Exception as e:
                logger.error("Reading prune failed: %s", e)
