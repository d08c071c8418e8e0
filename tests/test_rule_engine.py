# tests/test_rule_engine.py
import pytest

from honeywatch.models import EventKind, HoneypotEvent, MonitorConfig
from honeywatch.rule_engine import (
    ContainmentGate,
    classify_technique,
    is_recon_command,
    is_sensitive_file_access,
)


@pytest.mark.parametrize("cmd, label", [
    ("nmap -p22 10.0.0.1", "Discovery/Network Scanning"),
    ("masscan 0.0.0.0/0 -p80", "Discovery/Network Scanning"),
    ("curl -O http://x/y", "Command and Control"),
    ("ftp 10.0.0.5", "Command and Control"),
    ("WGET x", "Command and Control"),
    # scanning wins over transfer
    ("nmap --script http-title host", "Discovery/Network Scanning"),
    ("uname -a", None),
])
def test_classify_technique(cmd, label):
    assert classify_technique(cmd) == label


def test_recon_indicators():
    assert is_recon_command("cd /tmp; wget x")
    assert is_recon_command("echo https://example.org")
    assert not is_recon_command("cat /proc/cpuinfo")


def test_sensitive_file_access():
    assert is_sensitive_file_access("cat /etc/passwd")
    assert is_sensitive_file_access("CAT   -n /etc/passwd")
    assert is_sensitive_file_access("cat /home/bob/password.txt")
    assert is_sensitive_file_access("cat passwords.txt")
    assert not is_sensitive_file_access("less /etc/passwd")
    assert not is_sensitive_file_access("cat /etc/hosts")


def test_gate_needs_flags():
    event = HoneypotEvent(kind=EventKind.COMMAND_INPUT, source_ip="4.4.4.4",
                          command_text="cat /etc/passwd")

    verdict = ContainmentGate(MonitorConfig(log_path="x")).evaluate(event)
    assert not verdict.contain

    verdict = ContainmentGate(MonitorConfig(log_path="x", containment_enabled=True)).evaluate(event)
    assert verdict.contain
    assert verdict.decision is None

    verdict = ContainmentGate(MonitorConfig(
        log_path="x", containment_enabled=True, active_block_enabled=True,
    )).evaluate(event)
    assert verdict.decision.target == "4.4.4.4"
    assert verdict.decision.action == "block"


def test_gate_login_success_always_contains():
    event = HoneypotEvent(kind=EventKind.LOGIN_SUCCESS, source_ip="4.4.4.4")
    verdict = ContainmentGate(MonitorConfig(log_path="x")).evaluate(event)
    assert verdict.contain
    assert verdict.decision is None


def test_gate_ignores_other_kinds():
    cfg = MonitorConfig(log_path="x", containment_enabled=True, active_block_enabled=True)
    event = HoneypotEvent(kind=EventKind.LOGIN_FAILED, source_ip="4.4.4.4")
    assert ContainmentGate(cfg).evaluate(event).decision is None
