# tests/test_monitor.py
import json
import threading
import time

from honeywatch.bus import EventBus
from honeywatch.log_ingestor import Chunk
from honeywatch.models import ALERT, THREAT_INTEL_UPDATE, MonitorConfig
from honeywatch.monitor import MonitorInstance, start_monitors
from honeywatch.scoring import ThreatScoreStore


def line(**record) -> bytes:
    return (json.dumps(record) + "\n").encode("utf-8")


class RecordingBlocker:
    def __init__(self):
        self.calls = []
        self.called = threading.Event()

    def block(self, ip):
        self.calls.append(ip)
        self.called.set()


class FakeTailer:
    """Hands out queued chunks, keeps the offset the way LogTailer does."""

    def __init__(self):
        self.offset = 0
        self.queue = []
        self.commits = 0

    def start(self):
        pass

    def push(self, data, rotated=False):
        start = 0 if rotated else self.offset + sum(len(c.data) for c in self.queue)
        self.queue.append(Chunk(start=start, end=start + len(data), data=data, rotated=rotated))

    def read_new(self):
        if not self.queue:
            return Chunk(start=self.offset, end=self.offset, data=b"")
        return self.queue.pop(0)

    def commit(self, chunk):
        self.commits += 1
        self.offset = chunk.end
        return True


def collect(bus):
    seen = []
    bus.subscribe(seen.append)
    return seen


def make_monitor(tmp_path, blocker=None, **flags):
    log = tmp_path / "cowrie.json"
    log.write_bytes(b"")
    config = MonitorConfig(log_path=str(log), honeypot_id="honeypot-1", **flags)
    bus = EventBus()
    monitor = MonitorInstance(config, ThreatScoreStore(), bus, blocker=blocker)
    monitor.tailer.start()
    return monitor, log, collect(bus)


def test_growth_is_processed_once(tmp_path):
    monitor, log, seen = make_monitor(tmp_path, heuristics_enabled=True)

    with log.open("ab") as f:
        f.write(line(eventid="cowrie.session.connect", src_ip="1.2.3.4"))
        f.write(b"not json\n")
        f.write(line(eventid="cowrie.command.input", src_ip="1.2.3.4", input="id"))

    assert monitor.handle_growth() == 2
    first = len(seen)
    assert first > 0

    # a second notification for the same growth finds nothing new
    assert monitor.handle_growth() == 0
    assert len(seen) == first
    assert monitor.events_processed == 2
    assert monitor.tailer.offset == log.stat().st_size


def test_partial_write_is_finished_on_next_poll(tmp_path):
    monitor, log, seen = make_monitor(tmp_path)
    data = line(eventid="cowrie.session.connect", src_ip="5.6.7.8")

    with log.open("ab") as f:
        f.write(data[:20])
    assert monitor.handle_growth() == 0

    with log.open("ab") as f:
        f.write(data[20:])
    assert monitor.handle_growth() == 1
    assert any(n.payload.get("value") == "5.6.7.8" for n in seen)


def test_rotation_drops_held_fragment(tmp_path):
    monitor, log, _ = make_monitor(tmp_path)
    log.write_bytes(b'x' * 50 + b'\n{"eventid": "cowrie.sess')
    monitor.handle_growth()
    assert monitor.decoder.pending

    log.write_bytes(line(eventid="cowrie.session.connect", src_ip="9.9.9.9"))
    assert monitor.handle_growth() == 1
    assert monitor.decoder.pending == b""


def test_login_success_blocks_once(tmp_path):
    blocker = RecordingBlocker()
    monitor, log, seen = make_monitor(
        tmp_path, blocker=blocker, heuristics_enabled=True, active_block_enabled=True)

    with log.open("ab") as f:
        f.write(line(eventid="cowrie.login.success", src_ip="1.2.3.4", username="root"))
    monitor.handle_growth()
    monitor.handle_growth()

    assert blocker.called.wait(2.0)
    time.sleep(0.1)
    assert blocker.calls == ["1.2.3.4"]

    intel = [n.payload for n in seen if n.kind == THREAT_INTEL_UPDATE]
    assert {"property": "confidence", "value": 95} in intel


def test_failing_blocker_does_not_stop_processing(tmp_path):
    class Broken:
        def block(self, ip):
            raise RuntimeError("netsh exploded")

    monitor, log, seen = make_monitor(
        tmp_path, blocker=Broken(), active_block_enabled=True)
    with log.open("ab") as f:
        f.write(line(eventid="cowrie.login.success", src_ip="1.2.3.4"))
        f.write(line(eventid="cowrie.session.connect", src_ip="4.3.2.1"))

    assert monitor.handle_growth() == 2
    assert any(n.kind == ALERT and n.payload["level"] == "success" for n in seen)


def test_fake_tailer_without_filesystem():
    tailer = FakeTailer()
    bus = EventBus()
    seen = collect(bus)
    monitor = MonitorInstance(
        MonitorConfig(log_path="unused", honeypot_id="hp-x"),
        ThreatScoreStore(),
        bus,
        tailer=tailer,
    )
    tailer.push(line(eventid="cowrie.session.connect", src_ip="7.7.7.7"))
    tailer.push(line(eventid="cowrie.session.connect", src_ip="8.8.8.8"))

    assert monitor.handle_growth() == 1
    assert monitor.handle_growth() == 1
    assert tailer.commits == 2
    assert {n.honeypot_id for n in seen} == {"hp-x"}


def test_concurrent_growth_calls_are_serialized(tmp_path):
    monitor, log, _ = make_monitor(tmp_path)
    with log.open("ab") as f:
        for i in range(50):
            f.write(line(eventid="cowrie.session.connect", src_ip=f"10.0.0.{i}"))

    counts = []
    threads = [threading.Thread(target=lambda: counts.append(monitor.handle_growth()))
               for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(counts) == 50
    assert monitor.events_processed == 50


def test_start_and_stop_polling(tmp_path):
    log = tmp_path / "cowrie.json"
    log.write_bytes(b"")
    bus = EventBus()
    seen = collect(bus)
    monitor = MonitorInstance(
        MonitorConfig(log_path=str(log), honeypot_id="honeypot-1"),
        ThreatScoreStore(),
        bus,
        poll_interval=0.05,
    )
    monitor.start()
    try:
        assert monitor.running
        with log.open("ab") as f:
            f.write(line(eventid="cowrie.session.connect", src_ip="2.2.2.2"))

        deadline = time.time() + 3
        while monitor.events_processed == 0 and time.time() < deadline:
            time.sleep(0.05)
        assert monitor.events_processed == 1
        assert seen
    finally:
        monitor.stop()
    assert not monitor.running


def test_one_bad_path_does_not_stop_others(tmp_path):
    good = tmp_path / "good.json"
    good.write_bytes(b"")
    configs = [
        MonitorConfig(log_path=str(tmp_path / "missing" / "cowrie.json"), honeypot_id="honeypot-1"),
        MonitorConfig(log_path=str(good), honeypot_id="honeypot-2"),
    ]
    monitors = start_monitors(configs, ThreatScoreStore(), EventBus(), poll_interval=0.05)
    try:
        assert [m.honeypot_id for m in monitors] == ["honeypot-2"]
    finally:
        for m in monitors:
            m.stop()


def test_monitors_share_one_store(tmp_path):
    store = ThreatScoreStore()
    bus = EventBus()
    logs = []
    monitors = []
    for i in range(2):
        log = tmp_path / f"hp{i}.json"
        log.write_bytes(b"")
        logs.append(log)
        m = MonitorInstance(
            MonitorConfig(log_path=str(log), honeypot_id=f"honeypot-{i + 1}", heuristics_enabled=True),
            store,
            bus,
        )
        m.tailer.start()
        monitors.append(m)

    for log in logs:
        with log.open("ab") as f:
            f.write(line(eventid="cowrie.session.connect", src_ip="1.2.3.4"))
    for m in monitors:
        m.handle_growth()

    assert store.get("1.2.3.4").confidence == 40


def test_replaying_a_brute_force_log_keeps_thread_count_low(tmp_path):
    log = tmp_path / "cowrie.json"
    with log.open("wb") as f:
        for _ in range(3000):
            f.write(line(eventid="cowrie.login.failed", src_ip="6.6.6.6", username="root"))

    bus = EventBus()
    monitor = MonitorInstance(
        MonitorConfig(log_path=str(log), honeypot_id="honeypot-1"),
        ThreatScoreStore(),
        bus,
        from_start=True,
    )
    monitor.tailer.start()

    before = threading.active_count()
    try:
        assert monitor.handle_growth() == 3000
        assert threading.active_count() - before < 10
        assert bus.pending == 3000
    finally:
        bus.close()


def test_polling_survives_an_error(tmp_path):
    class FlakyTailer(FakeTailer):
        def __init__(self):
            super().__init__()
            self.calls = 0

        def read_new(self):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("can't start new thread")
            return super().read_new()

    tailer = FlakyTailer()
    tailer.push(line(eventid="cowrie.session.connect", src_ip="3.3.3.3"))
    monitor = MonitorInstance(
        MonitorConfig(log_path="unused", honeypot_id="honeypot-1"),
        ThreatScoreStore(),
        EventBus(),
        tailer=tailer,
        poll_interval=0.02,
    )
    monitor.start()
    try:
        deadline = time.time() + 3
        while monitor.events_processed == 0 and time.time() < deadline:
            time.sleep(0.02)
        assert monitor.events_processed == 1
        assert monitor.running
    finally:
        monitor.stop()
