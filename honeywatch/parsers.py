# honeywatch/parsers.py
import json
import logging
from typing import Any, Dict, List, Optional

from .models import EVENT_IDS, EventKind, HoneypotEvent

logger = logging.getLogger(__name__)

# longest unterminated fragment held between reads
MAX_PENDING_BYTES = 1024 * 1024


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def parse_record(record: Dict[str, Any]) -> HoneypotEvent:
    """
    Build a HoneypotEvent from one decoded cowrie JSON object.
    Unknown eventid values map to EventKind.UNKNOWN.
    """
    eventid = record.get("eventid")
    kind = EventKind.UNKNOWN
    if isinstance(eventid, str):
        kind = EVENT_IDS.get(eventid, EventKind.UNKNOWN)

    # empty src_ip is treated the same as a missing one
    src_ip = _opt_str(record.get("src_ip")) or None

    return HoneypotEvent(
        kind=kind,
        source_ip=src_ip,
        username=_opt_str(record.get("username")),
        password=_opt_str(record.get("password")),
        command_text=_opt_str(record.get("input")),
        occurred_at=_opt_str(record.get("timestamp")) or "",
        raw=record,
    )


def parse_line(line: str) -> Optional[HoneypotEvent]:
    """Parse one log line, None for blank or malformed lines."""
    line = line.strip()
    if not line:
        return None

    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed log line: %.80s", line)
        return None

    if not isinstance(record, dict):
        logger.debug("Skipping non object log line: %.80s", line)
        return None

    return parse_record(record)


class LineDecoder:
    """
    Turns raw chunks read from the log into events.

    A trailing fragment without a newline is held back and glued onto the
    next chunk, so a record written across two reads is parsed once, whole.
    """

    def __init__(self, max_pending: int = MAX_PENDING_BYTES) -> None:
        self.max_pending = max_pending
        self._pending = b""

    @property
    def pending(self) -> bytes:
        return self._pending

    def feed(self, data: bytes) -> List[HoneypotEvent]:
        buf = self._pending + data
        lines = buf.split(b"\n")
        # last element is "" when buf ends with a newline
        self._pending = lines.pop()
        if len(self._pending) > self.max_pending:
            logger.debug("Dropping %d byte fragment with no newline",
                         len(self._pending))
            self._pending = b""
        return self._decode(lines)

    def flush(self) -> List[HoneypotEvent]:
        """Parse whatever is held back, for when the writer is known to be done."""
        rest, self._pending = self._pending, b""
        return self._decode([rest])

    def reset(self) -> None:
        # after a rotation the held fragment belongs to a file that is gone
        self._pending = b""

    def _decode(self, lines: List[bytes]) -> List[HoneypotEvent]:
        events: List[HoneypotEvent] = []
        for raw in lines:
            ev = parse_line(raw.decode("utf-8", errors="replace"))
            if ev is not None:
                events.append(ev)
        return events


if __name__ == "__main__":
    # manual test: decode a small sample with one broken line
    sample = (
        b'{"eventid": "cowrie.session.connect", "src_ip": "1.2.3.4"}\n'
        b'{"eventid": "cowrie.login.failed", "src_ip": \n'
        b"\n"
        b'{"eventid": "cowrie.command.input", "src_ip": "1.2.3.4", "input": "uname -a"}\n'
    )
    for ev in LineDecoder().feed(sample):
        print(f"{ev.kind.value} src_ip={ev.source_ip} input={ev.command_text}")
