# honeywatch/blocker.py
import logging
import subprocess
import sys
import threading
from typing import List, Optional, Protocol, Set

from .models import ContainmentDecision

logger = logging.getLogger(__name__)


class BlockExecutor(Protocol):
    def block(self, ip: str) -> None:
        ...


class NullBlocker:
    """Accepts block requests and does nothing."""

    def block(self, ip: str) -> None:
        logger.debug("Block requested for %s, no executor configured", ip)


class FirewallBlocker:
    """
    Adds inbound and outbound Windows firewall rules for an IP.
    On any other platform it quietly does nothing.
    """

    RULE_PREFIX = "Honeywatch-Block"

    def __init__(self, platform: Optional[str] = None, timeout: float = 15.0):
        self.platform = platform or sys.platform
        self.timeout = timeout
        self._blocked: Set[str] = set()
        self._lock = threading.Lock()

    def commands_for(self, ip: str) -> List[List[str]]:
        base = ["netsh", "advfirewall", "firewall", "add", "rule"]
        return [
            base + [f"name={self.RULE_PREFIX}-{ip}-in", "dir=in",
                    "action=block", f"remoteip={ip}"],
            base + [f"name={self.RULE_PREFIX}-{ip}-out", "dir=out",
                    "action=block", f"remoteip={ip}"],
        ]

    def block(self, ip: str) -> None:
        if not self.platform.startswith("win"):
            return

        with self._lock:
            if ip in self._blocked:
                return
            self._blocked.add(ip)

        added = 0
        for cmd in self.commands_for(ip):
            # netsh exits non zero when a rule already exists, that is fine
            try:
                subprocess.run(cmd, capture_output=True, timeout=self.timeout,
                               check=False)
            except (OSError, subprocess.SubprocessError) as e:
                logger.warning("netsh failed for %s: %s", ip, e)
                continue
            added += 1

        if added == 0:
            # nothing went through, let a later decision try again
            with self._lock:
                self._blocked.discard(ip)
            return
        logger.info("Firewall block rules added for %s", ip)


def _run_block(executor: BlockExecutor, decision: ContainmentDecision) -> None:
    try:
        executor.block(decision.target)
    except Exception as e:
        logger.warning("Block of %s failed: %s", decision.target, e)


def dispatch_block(executor: BlockExecutor,
                   decision: ContainmentDecision) -> threading.Thread:
    """Run the block in the background and return at once."""
    t = threading.Thread(
        target=_run_block,
        args=(executor, decision),
        name=f"block-{decision.target}",
        daemon=True,
    )
    t.start()
    return t
