# honeywatch/monitor.py
import logging
import threading
from typing import List, Optional

from .analyzer import EventAnalyzer
from .blocker import BlockExecutor, NullBlocker, dispatch_block
from .bus import EventBus
from .log_ingestor import LogTailer
from .models import MonitorConfig
from .parsers import LineDecoder
from .scoring import ThreatScoreStore

logger = logging.getLogger(__name__)


class MonitorInstance:
    """
    Watches one honeypot log. Growth is picked up by polling on a
    background thread; handle_growth() can also be called directly.
    Processing for one file is serialized: a batch is read, decoded,
    analyzed and committed before the next one starts.
    """

    def __init__(
        self,
        config: MonitorConfig,
        store: ThreatScoreStore,
        bus: EventBus,
        blocker: Optional[BlockExecutor] = None,
        tailer: Optional[LogTailer] = None,
        decoder: Optional[LineDecoder] = None,
        poll_interval: float = 1.0,
        from_start: bool = False,
    ):
        self.config = config
        self.bus = bus
        self.blocker = blocker or NullBlocker()
        self.tailer = tailer or LogTailer(config.log_path, from_start=from_start)
        self.decoder = decoder or LineDecoder()
        self.analyzer = EventAnalyzer(config, store)
        self.poll_interval = poll_interval

        self.events_processed = 0
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def honeypot_id(self) -> str:
        return self.config.honeypot_id

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start watching. Raises TailerStartError for an unusable path."""
        if self.running:
            return
        self.tailer.start()
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name=f"monitor-{self.honeypot_id}",
            daemon=True,
        )
        self._thread.start()
        logger.info("Monitoring honeypot logs at: %s [%s]",
                    self.config.log_path, self.honeypot_id)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.handle_growth()
            except Exception:
                # one bad poll must not end monitoring of the file
                logger.exception("[HP:%s] error while processing log growth",
                                 self.honeypot_id)
            self._stop.wait(self.poll_interval)

    def handle_growth(self) -> int:
        """Process whatever was appended since last time. Returns event count."""
        with self._lock:
            chunk = self.tailer.read_new()
            if chunk is None:
                return 0

            if chunk.rotated:
                self.decoder.reset()

            # the decoder has consumed the bytes, so the range is done now
            events = self.decoder.feed(chunk.data)
            self.tailer.commit(chunk)

            count = 0
            for event in events:
                try:
                    result = self.analyzer.analyze(event)
                except Exception:
                    logger.exception("[HP:%s] failed to analyze %s event",
                                     self.honeypot_id, event.kind.value)
                    continue
                self.bus.publish_all(result.notifications)
                if result.decision is not None:
                    dispatch_block(self.blocker, result.decision)
                count += 1

            self.events_processed += count
            return count


def start_monitors(
    configs: List[MonitorConfig],
    store: ThreatScoreStore,
    bus: EventBus,
    blocker: Optional[BlockExecutor] = None,
    poll_interval: float = 1.0,
    from_start: bool = False,
) -> List[MonitorInstance]:
    """Start one monitor per config. A monitor that fails is skipped."""
    started: List[MonitorInstance] = []
    for config in configs:
        monitor = MonitorInstance(
            config,
            store,
            bus,
            blocker=blocker,
            poll_interval=poll_interval,
            from_start=from_start,
        )
        try:
            monitor.start()
        except Exception as e:
            logger.warning("Honeypot monitor failed to start [%s]: %s",
                           config.honeypot_id, e)
            continue
        started.append(monitor)

    if not started:
        logger.warning("No honeypot monitors running")
    return started
