# honeywatch/analyzer.py
import logging
from typing import Any, Dict, List, Optional

from .models import (
    ALERT,
    ATTACK,
    GRAPH_COMMAND,
    TERMINAL_LINE,
    THREAT_INTEL_UPDATE,
    AnalysisResult,
    EventKind,
    HoneypotEvent,
    MonitorConfig,
    Notification,
)
from .rule_engine import (
    BRUTE_FORCE_TACTIC,
    ContainmentGate,
    classify_technique,
    is_recon_command,
)
from .scoring import COMMAND_RULE, CONNECT_RULE, LOGIN_SUCCESS_RULE, ThreatScoreStore

logger = logging.getLogger(__name__)

ATTACKER_NODE = "attacker"
CONNECT_LINE_COLOR = "hsl(var(--cyber-danger))"
FAILED_LINE_COLOR = "#ff3e3e"
SEVER_AFTER_FAILED_LOGIN = 2.0


def _drop_none(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in fields.items() if v is not None}


class _Batch:
    """Collects notifications for one event, tagged with the honeypot id."""

    def __init__(self, honeypot_id: str):
        self.honeypot_id = honeypot_id
        self.items: List[Notification] = []

    def _add(self, kind: str, payload: Dict[str, Any], delay: float = 0.0):
        self.items.append(Notification(
            kind=kind,
            payload=payload,
            honeypot_id=self.honeypot_id,
            delay=delay,
        ))

    def alert(self, text: str, level: str):
        self._add(ALERT, {"text": text, "level": level})

    def graph(self, action: str, delay: float = 0.0, **fields):
        # "from" is a keyword, callers pass from_
        if "from_" in fields:
            fields["from"] = fields.pop("from_")
        self._add(GRAPH_COMMAND, _drop_none({"action": action, **fields}), delay)

    def terminal(self, input=None, output=None, error=None):
        self._add(TERMINAL_LINE, _drop_none(
            {"input": input, "output": output, "error": error}))

    def intel(self, property=None, value=None, status=None, source_ip=None):
        self._add(THREAT_INTEL_UPDATE, _drop_none({
            "property": property,
            "value": value,
            "status": status,
            "sourceIp": source_ip,
        }))

    def attack(self, type: str, event: HoneypotEvent, **extra):
        self._add(ATTACK, _drop_none({
            "type": type,
            "src_ip": event.source_ip,
            "timestamp": event.occurred_at,
            "honeypotId": self.honeypot_id,
            **extra,
        }))


class EventAnalyzer:
    """
    Turns one honeypot event into the notifications the dashboard expects,
    updating the shared score store along the way.
    """

    def __init__(self, config: MonitorConfig, store: ThreatScoreStore,
                 gate: Optional[ContainmentGate] = None):
        self.config = config
        self.store = store
        self.gate = gate or ContainmentGate(config)

    @property
    def honeypot_id(self) -> str:
        return self.config.honeypot_id

    def analyze(self, event: HoneypotEvent) -> AnalysisResult:
        out = _Batch(self.honeypot_id)
        result = AnalysisResult(notifications=out.items)

        if event.kind == EventKind.SESSION_CONNECT:
            self._on_connect(event, out)
        elif event.kind == EventKind.LOGIN_FAILED:
            self._on_login_failed(event, out)
        elif event.kind == EventKind.LOGIN_SUCCESS:
            result.decision = self._on_login_success(event, out)
        elif event.kind == EventKind.COMMAND_INPUT:
            result.decision = self._on_command(event, out)

        return result

    # -------------- scoring --------------

    def _scoring(self, event: HoneypotEvent) -> bool:
        return self.config.heuristics_enabled and bool(event.source_ip)

    def _confidence(self, out: _Batch, value: int):
        out.intel(property="confidence", value=value)

    # -------------- per kind --------------

    def _on_connect(self, event: HoneypotEvent, out: _Batch):
        ip = event.source_ip
        logger.info("[HP:%s] connect from %s", self.honeypot_id, ip)

        out.attack("start", event)
        out.alert(f"Connection from {ip} → {self.honeypot_id}", "info")
        out.graph("draw-line", from_=ATTACKER_NODE, to=self.honeypot_id,
                  color=CONNECT_LINE_COLOR)
        out.terminal(output=f"ssh connection from {ip} → {self.honeypot_id}")
        out.intel(property="sourceIp", value=ip)

        if self._scoring(event):
            self._confidence(out, self.store.apply(ip, CONNECT_RULE))

    def _on_login_failed(self, event: HoneypotEvent, out: _Batch):
        ip = event.source_ip
        user = event.username or "unknown"
        logger.info("[HP:%s] login failed %s %s", self.honeypot_id, ip, user)

        out.alert(f"Failed SSH login from {ip} as {user}", "warning")
        out.graph("pulse-node", id=self.honeypot_id)
        # one shared attacker node, renamed to the latest source
        out.graph("add-node", id=ATTACKER_NODE, name=ip, type="attacker")
        out.graph("draw-line", from_=ATTACKER_NODE, to=self.honeypot_id,
                  color=FAILED_LINE_COLOR)
        out.graph("connection-severed", delay=SEVER_AFTER_FAILED_LOGIN,
                  from_=ATTACKER_NODE, to=self.honeypot_id)
        out.terminal(output=f"Permission denied for {user} from {ip}")
        if event.password:
            out.terminal(
                output=f"Attempted credential → {user} / '{event.password}'")
        out.intel(property="tactic", value=BRUTE_FORCE_TACTIC)

        if not ip:
            return
        if self.config.heuristics_enabled:
            self._confidence(out, self.store.bump_failed_login(ip))
        else:
            # the retry clock keeps running even while scoring is off
            self.store.record_failed_login(ip)

    def _on_login_success(self, event: HoneypotEvent, out: _Batch):
        ip = event.source_ip
        logger.info("[HP:%s] login success %s %s",
                    self.honeypot_id, ip, event.username)

        out.attack("login", event, username=event.username)
        out.alert(
            f"CRITICAL: Attacker {ip} contained upon login to {self.honeypot_id}",
            "critical",
        )
        out.intel(status="Contained", source_ip=ip)

        if self._scoring(event):
            self._confidence(out, self.store.apply(ip, LOGIN_SUCCESS_RULE))

        out.graph("contain-attacker", nodeId=ATTACKER_NODE)
        out.graph("connection-severed", from_=ATTACKER_NODE, to=self.honeypot_id)
        out.terminal(error="Session terminated by defense. Access contained.")

        verdict = self.gate.evaluate(event)
        if verdict.decision is not None:
            out.alert(f"Active block applied to {ip}", "success")
        return verdict.decision

    def _on_command(self, event: HoneypotEvent, out: _Batch):
        ip = event.source_ip
        cmd = event.command_text

        out.attack("command", event, command=cmd)
        out.terminal(input=cmd)
        out.alert(f"Blocked command from {ip}: {cmd}", "warning")

        if cmd is None:
            return None

        technique = classify_technique(cmd)
        if technique:
            out.intel(property="technique", value=technique)

        if self._scoring(event) and is_recon_command(cmd):
            self._confidence(out, self.store.apply(ip, COMMAND_RULE))

        verdict = self.gate.evaluate(event)
        if not verdict.contain:
            return None

        logger.warning("[HP:%s] sensitive file access by %s: %s",
                       self.honeypot_id, ip, cmd)
        out.alert(
            f"CRITICAL: Sensitive file access attempt by {ip}. Containing attacker.",
            "critical",
        )
        out.graph("contain-attacker", nodeId=ATTACKER_NODE)
        out.graph("connection-severed", from_=ATTACKER_NODE, to=self.honeypot_id)
        out.terminal(
            output="Session terminated by defense due to sensitive file access.")
        if verdict.decision is not None:
            out.alert(f"Active block applied to {ip}", "success")
        return verdict.decision
