# honeywatch/rule_engine.py

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .models import ContainmentDecision, EventKind, HoneypotEvent, MonitorConfig

# Plain substring checks on the lower-cased command, not a shell parser.
SCANNING_RE = re.compile(r"(nmap|masscan)")
TRANSFER_RE = re.compile(r"(wget|curl|ftp|http)")
RECON_C2_RE = re.compile(r"(nmap|masscan|wget|curl|ftp|http)")
SENSITIVE_FILE_RE = re.compile(r"(cat\s+.*/etc/passwd|cat\s+.*passwords?\.txt)")

# first match wins
TECHNIQUES: List[Tuple[re.Pattern, str]] = [
    (SCANNING_RE, "Discovery/Network Scanning"),
    (TRANSFER_RE, "Command and Control"),
]

BRUTE_FORCE_TACTIC = "T1110 - SSH Brute Force"


def classify_technique(command: str) -> Optional[str]:
    cmd = command.lower()
    for pattern, label in TECHNIQUES:
        if pattern.search(cmd):
            return label
    return None


def is_recon_command(command: str) -> bool:
    return bool(RECON_C2_RE.search(command.lower()))


def is_sensitive_file_access(command: str) -> bool:
    return bool(SENSITIVE_FILE_RE.search(command.lower()))


@dataclass(frozen=True)
class GateVerdict:
    contain: bool = False      # terminate the session
    decision: Optional[ContainmentDecision] = None


class ContainmentGate:
    """Decides when a session must be cut and whether to block the source."""

    def __init__(self, config: MonitorConfig):
        self.config = config

    def evaluate(self, event: HoneypotEvent) -> GateVerdict:
        if event.kind == EventKind.LOGIN_SUCCESS:
            # a successful login on a honeypot is always contained
            return GateVerdict(contain=True, decision=self._block(event))

        if event.kind == EventKind.COMMAND_INPUT:
            if not self.config.containment_enabled:
                return GateVerdict()
            if event.command_text is None:
                return GateVerdict()
            if is_sensitive_file_access(event.command_text):
                return GateVerdict(contain=True, decision=self._block(event))

        return GateVerdict()

    def _block(self, event: HoneypotEvent) -> Optional[ContainmentDecision]:
        if not self.config.active_block_enabled:
            return None
        if not event.source_ip:
            # nothing to aim a firewall rule at
            return None
        return ContainmentDecision(target=event.source_ip)
