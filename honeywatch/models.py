# models
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class EventKind(str, Enum):
    SESSION_CONNECT = "session_connect"
    LOGIN_FAILED = "login_failed"
    LOGIN_SUCCESS = "login_success"
    COMMAND_INPUT = "command_input"
    UNKNOWN = "unknown"


# cowrie eventid -> kind, anything else is UNKNOWN
EVENT_IDS: Dict[str, EventKind] = {
    "cowrie.session.connect": EventKind.SESSION_CONNECT,
    "cowrie.login.failed": EventKind.LOGIN_FAILED,
    "cowrie.login.success": EventKind.LOGIN_SUCCESS,
    "cowrie.command.input": EventKind.COMMAND_INPUT,
}


@dataclass(frozen=True)
class HoneypotEvent:
    kind: EventKind = EventKind.UNKNOWN
    source_ip: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    command_text: Optional[str] = None
    occurred_at: str = ""    # sensor timestamp, display only
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass
class ThreatState:
    confidence: int = 0
    last_observed_at: float = 0.0
    last_failed_login_at: float = 0.0


@dataclass(frozen=True)
class MonitorConfig:
    log_path: str
    honeypot_id: str = "honeypot-1"
    containment_enabled: bool = False
    heuristics_enabled: bool = False
    active_block_enabled: bool = False


# notification kinds understood by the presentation layer
ALERT = "alert"
GRAPH_COMMAND = "graph-command"
TERMINAL_LINE = "terminal-line"
THREAT_INTEL_UPDATE = "threat-intel-update"
ATTACK = "attack"


@dataclass(frozen=True)
class Notification:
    kind: str
    payload: Dict[str, Any]
    honeypot_id: str = ""
    delay: float = 0.0       # seconds before delivery, 0 means now


@dataclass(frozen=True)
class ContainmentDecision:
    target: str
    action: str = "block"


@dataclass
class AnalysisResult:
    notifications: List[Notification] = field(default_factory=list)
    decision: Optional[ContainmentDecision] = None

    def of_kind(self, kind: str) -> List[Dict[str, Any]]:
        """Payloads of every notification with the given kind, in order."""
        return [n.payload for n in self.notifications if n.kind == kind]
