"""
Per source IP threat confidence.

Confidence lives in [0, 100]. Every bump first applies decay: 10 points
for each full 10 minutes since the IP was last bumped, never below 0.
Then the rule's delta is added and the result capped at the rule's cap.
Caps belong to rules, not to the IP, so a later rule with a higher cap
can lift a score past an earlier ceiling.

Rules
-----
  connect         +20   cap 95
  login failed    +10   cap 70   (+15 more if <= 5s after the previous failure)
  login success   +95   cap 95   (always lands on 95)
  recon command   +10   cap 90
"""
import logging
import threading
import time
from dataclasses import replace
from typing import Callable, Dict, NamedTuple, Optional

from .models import ThreatState

logger = logging.getLogger(__name__)

DECAY_INTERVAL = 10 * 60.0
DECAY_STEP = 10
MAX_CONFIDENCE = 100
RAPID_RETRY_WINDOW = 5.0
RAPID_RETRY_BONUS = 15


class BumpRule(NamedTuple):
    delta: int
    cap: int


CONNECT_RULE = BumpRule(delta=20, cap=95)
FAILED_LOGIN_RULE = BumpRule(delta=10, cap=70)
LOGIN_SUCCESS_RULE = BumpRule(delta=95, cap=95)
COMMAND_RULE = BumpRule(delta=10, cap=90)


def decay(confidence: int, elapsed: float) -> int:
    steps = int(max(0.0, elapsed) // DECAY_INTERVAL)
    if steps <= 0:
        return confidence
    return max(0, confidence - steps * DECAY_STEP)


class ThreatScoreStore:
    """
    Shared by every monitor in the process. One lock covers the whole
    read-decay-bump-write sequence so two honeypots reporting the same IP
    cannot lose an update.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self._lock = threading.Lock()
        self._states: Dict[str, ThreatState] = {}
        # kept apart from _states so recording a failure never creates state
        self._failed_logins: Dict[str, float] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, ip: str) -> bool:
        with self._lock:
            return ip in self._states

    def get(self, ip: str) -> Optional[ThreatState]:
        """Snapshot of the stored state, without decay applied."""
        with self._lock:
            st = self._states.get(ip)
            return replace(st) if st else None

    def current_confidence(self, ip: str) -> int:
        """Confidence as it would look after decay right now, read only."""
        with self._lock:
            st = self._states.get(ip)
            if st is None:
                return 0
            return decay(st.confidence, self.clock() - st.last_observed_at)

    def bump(self, ip: str, delta: int, cap: int) -> int:
        with self._lock:
            return self._bump(ip, delta, cap, self.clock())

    def apply(self, ip: str, rule: BumpRule) -> int:
        return self.bump(ip, rule.delta, rule.cap)

    def record_failed_login(self, ip: str) -> bool:
        """
        Remember the time of this failed login.
        Returns True when the previous failure was at most 5s ago.
        """
        with self._lock:
            return self._record_failure(ip, self.clock())

    def bump_failed_login(self, ip: str) -> int:
        """Record a failed login and apply the failed login rule in one step."""
        with self._lock:
            now = self.clock()
            rapid = self._record_failure(ip, now)
            delta = FAILED_LOGIN_RULE.delta
            if rapid:
                delta += RAPID_RETRY_BONUS
            return self._bump(ip, delta, FAILED_LOGIN_RULE.cap, now)

    def _record_failure(self, ip: str, now: float) -> bool:
        last = self._failed_logins.get(ip)
        self._failed_logins[ip] = now
        st = self._states.get(ip)
        if st is not None:
            st.last_failed_login_at = now
        return last is not None and now - last <= RAPID_RETRY_WINDOW

    def _bump(self, ip: str, delta: int, cap: int, now: float) -> int:
        st = self._states.get(ip)
        if st is None:
            st = ThreatState(
                confidence=0,
                last_observed_at=now,
                last_failed_login_at=self._failed_logins.get(ip, 0.0),
            )
            self._states[ip] = st

        confidence = decay(st.confidence, now - st.last_observed_at)
        confidence = min(cap, confidence + delta)
        st.confidence = max(0, min(MAX_CONFIDENCE, confidence))
        st.last_observed_at = now

        logger.debug("confidence %s -> %d (delta %d, cap %d)",
                     ip, st.confidence, delta, cap)
        return st.confidence
