# pyright: reportMissingImports=false

from __future__ import annotations

import json
import logging

import pytest
from _pytest.logging import LogCaptureFixture
from _pytest.monkeypatch import MonkeyPatch
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from accessguard.core.errors import Denylisted, Locked
from accessguard.db.models import Lockout, SecurityEvent
from accessguard.services.access_lists import AccessListResolver, ListScope, ListType
from accessguard.services.attempt_ledger import AttemptLedger
from accessguard.services.lockout import (
    DENYLIST_WAIT_HINT_SECONDS,
    IP_DENIED_MESSAGE,
    USERNAME_DENIED_MESSAGE,
    LockoutManager,
)
from accessguard.services.protection_settings import ProtectionConfig
from conftest import FakeClock


IP = "203.0.113.7"


def _setup(
    db: Session, clock: FakeClock, **overrides: object
) -> tuple[LockoutManager, AttemptLedger, AccessListResolver]:
    config = ProtectionConfig(**overrides)  # type: ignore[arg-type]
    ledger = AttemptLedger(db, config=config, now=clock)
    lists = AccessListResolver(db, config=config, now=clock)
    manager = LockoutManager(db, config=config, ledger=ledger, lists=lists, now=clock)
    return manager, ledger, lists


def _fail(ledger: AttemptLedger, ip: str, username: str | None, times: int) -> None:
    for _ in range(times):
        ledger.record_attempt(ip, username, False)


def _event_types(db: Session) -> list[str]:
    return [e.event_type for e in db.execute(select(SecurityEvent)).scalars().all()]


def test_below_threshold_reports_remaining_attempts(db: Session, clock: FakeClock) -> None:
    manager, ledger, _lists = _setup(db, clock)

    first = manager.check_brute_force(IP, "alice")
    assert first.blocked is False
    assert first.remaining_attempts == 5

    _fail(ledger, IP, "alice", 4)
    decision = manager.check_brute_force(IP, "alice")
    assert decision.blocked is False
    assert decision.remaining_attempts == 1
    assert db.execute(select(Lockout)).scalars().first() is None


def test_threshold_creates_lockout_and_blocks(db: Session, clock: FakeClock) -> None:
    manager, ledger, _lists = _setup(db, clock)
    _fail(ledger, IP, "alice", 5)

    decision = manager.check_brute_force(IP, "alice")
    assert decision.blocked is True
    assert decision.reason == "locked"
    assert decision.wait_time_seconds == 900
    assert decision.message == "Too many failed login attempts. Please try again in 15 minutes."

    lockouts = list(db.execute(select(Lockout)).scalars().all())
    assert len(lockouts) == 1
    assert lockouts[0].subject_ip == IP
    assert lockouts[0].subject_username == "alice"
    assert (lockouts[0].unlock_at - clock.now).total_seconds() == 900
    assert "lockout.created" in _event_types(db)

    clock.advance(300)
    again = manager.check_brute_force(IP, "alice")
    assert again.blocked is True
    assert again.wait_time_seconds == 600
    assert len(list(db.execute(select(Lockout)).scalars().all())) == 1


def test_lockout_expires_lazily_with_the_window(db: Session, clock: FakeClock) -> None:
    manager, ledger, _lists = _setup(db, clock)
    _fail(ledger, IP, "alice", 5)
    assert manager.check_brute_force(IP, "alice").blocked is True

    clock.advance(901)
    decision = manager.check_brute_force(IP, "alice")
    assert decision.blocked is False
    assert decision.remaining_attempts == 5
    assert manager.get_active_lockouts() == []


def test_old_failures_do_not_count(db: Session, clock: FakeClock) -> None:
    manager, ledger, _lists = _setup(db, clock)
    _fail(ledger, IP, "alice", 4)
    clock.advance(901)
    _fail(ledger, IP, "alice", 1)

    decision = manager.check_brute_force(IP, "alice")
    assert decision.blocked is False
    assert decision.remaining_attempts == 4


def test_counting_takes_max_not_sum(db: Session, clock: FakeClock) -> None:
    manager, ledger, _lists = _setup(db, clock)
    _fail(ledger, IP, "alice", 3)
    _fail(ledger, IP, "bob", 3)

    decision = manager.check_brute_force(IP, "alice")
    assert decision.blocked is False
    assert decision.remaining_attempts == 2


def test_username_lockout_follows_user_across_addresses(db: Session, clock: FakeClock) -> None:
    manager, ledger, _lists = _setup(db, clock)
    for i in range(5):
        ledger.record_attempt(f"198.51.100.{i}", "alice", False)

    assert manager.check_brute_force("192.0.2.1", "alice").blocked is True
    assert manager.check_brute_force("192.0.2.2", "alice").blocked is True
    assert manager.check_brute_force("192.0.2.2", "bob").blocked is False


def test_ip_only_lockout_blocks_every_username(db: Session, clock: FakeClock) -> None:
    manager, ledger, _lists = _setup(db, clock)
    _fail(ledger, IP, None, 5)

    assert manager.check_brute_force(IP).blocked is True
    assert manager.check_brute_force(IP, "carol").blocked is True
    assert manager.check_brute_force("192.0.2.1", "carol").blocked is False


def test_hidden_remaining_attempts(db: Session, clock: FakeClock) -> None:
    manager, ledger, _lists = _setup(db, clock, show_remaining_attempts=False)
    _fail(ledger, IP, "alice", 2)

    decision = manager.check_brute_force(IP, "alice")
    assert decision.blocked is False
    assert decision.remaining_attempts is None
    assert manager.remaining_attempts(IP, "alice") is None


def test_custom_lockout_message_template(db: Session, clock: FakeClock) -> None:
    manager, ledger, _lists = _setup(
        db, clock, max_login_attempts=2, lockout_message="Locked for {seconds}s"
    )
    _fail(ledger, IP, "alice", 2)
    assert manager.check_brute_force(IP, "alice").message == "Locked for 900s"


def test_broken_lockout_message_template_falls_back(db: Session, clock: FakeClock) -> None:
    manager, ledger, _lists = _setup(db, clock, max_login_attempts=1, lockout_message="{nope}")
    _fail(ledger, IP, "alice", 1)
    message = manager.check_brute_force(IP, "alice").message
    assert message == "Too many failed login attempts. Please try again in 15 minutes."


@pytest.mark.parametrize("deny_first", [True, False])
def test_denylist_beats_safelist(db: Session, clock: FakeClock, deny_first: bool) -> None:
    manager, _ledger, lists = _setup(db, clock, enable_ip_safelist=True)
    order = [ListType.DENY, ListType.ALLOW] if deny_first else [ListType.ALLOW, ListType.DENY]
    for list_type in order:
        _ = lists.add_to_list(ListScope.IP, IP, list_type, reason="test")

    decision = manager.check_brute_force(IP, "alice")
    assert decision.blocked is True
    assert decision.reason == "denied"
    assert decision.wait_time_seconds == DENYLIST_WAIT_HINT_SECONDS
    assert decision.message == IP_DENIED_MESSAGE


def test_lockout_beats_safelist(db: Session, clock: FakeClock) -> None:
    manager, ledger, lists = _setup(db, clock, enable_ip_safelist=True)
    _fail(ledger, IP, "alice", 5)
    assert manager.check_brute_force(IP, "alice").blocked is True

    _ = lists.add_to_list(ListScope.IP, IP, ListType.ALLOW)
    decision = manager.check_brute_force(IP, "alice")
    assert decision.blocked is True
    assert decision.reason == "locked"


def test_safelisted_ip_skips_counting(db: Session, clock: FakeClock) -> None:
    manager, ledger, lists = _setup(db, clock, enable_ip_safelist=True)
    _ = lists.add_to_list(ListScope.IP, IP, ListType.ALLOW)
    _fail(ledger, IP, "alice", 10)

    decision = manager.check_brute_force(IP, "alice")
    assert decision.blocked is False
    assert decision.reason == "safe"
    assert db.execute(select(Lockout)).scalars().first() is None


def test_disabled_safelist_is_ignored(db: Session, clock: FakeClock) -> None:
    manager, ledger, lists = _setup(db, clock)
    _ = lists.add_to_list(ListScope.IP, IP, ListType.ALLOW)
    _fail(ledger, IP, "alice", 5)
    assert manager.check_brute_force(IP, "alice").blocked is True


def test_denylisted_username(db: Session, clock: FakeClock) -> None:
    manager, _ledger, lists = _setup(db, clock)
    _ = lists.add_to_list(ListScope.USERNAME, "root", ListType.DENY)

    decision = manager.check_brute_force(IP, "root")
    assert decision.blocked is True
    assert decision.message == USERNAME_DENIED_MESSAGE
    assert manager.check_brute_force(IP, "alice").blocked is False


def test_clear_lockout_keeps_history(db: Session, clock: FakeClock) -> None:
    manager, ledger, _lists = _setup(db, clock)
    _fail(ledger, IP, "alice", 5)
    assert manager.check_brute_force(IP, "alice").blocked is True

    assert manager.clear_lockout(ip=IP) == 1
    assert manager.get_active_lockouts() == []
    assert "lockout.cleared" in _event_types(db)

    # The failures are still inside the window, so the next check locks again.
    assert manager.check_brute_force(IP, "alice").blocked is True


def test_clear_lockout_by_id_and_username(db: Session, clock: FakeClock) -> None:
    manager, _ledger, _lists = _setup(db, clock)
    first = manager.create_lockout(IP, None, duration_seconds=60)
    second = manager.create_lockout(None, "alice", duration_seconds=60)
    assert first is not None and second is not None

    assert manager.clear_lockout(lockout_id=first.id) == 1
    assert manager.clear_lockout(username="alice") == 1
    assert manager.clear_lockout() == 0
    assert manager.get_active_lockouts() == []


def test_create_lockout_reuses_governing_row(db: Session, clock: FakeClock) -> None:
    manager, _ledger, _lists = _setup(db, clock)
    first = manager.create_lockout(IP, "alice")
    second = manager.create_lockout(IP, "alice")
    assert first is not None and second is not None
    assert first.id == second.id

    with pytest.raises(ValueError):
        _ = manager.create_lockout(None, "  ")


def test_can_attempt_login_and_ensure(db: Session, clock: FakeClock) -> None:
    manager, ledger, lists = _setup(db, clock)
    assert manager.can_attempt_login(IP) is True
    assert manager.ensure_can_attempt(IP, "alice").blocked is False

    _fail(ledger, IP, None, 5)
    assert manager.can_attempt_login(IP) is False
    with pytest.raises(Locked) as locked:
        _ = manager.ensure_can_attempt(IP, "alice")
    assert locked.value.wait_time_seconds > 0

    _ = lists.add_to_list(ListScope.IP, "192.0.2.99", ListType.DENY)
    with pytest.raises(Denylisted) as denied:
        _ = manager.ensure_can_attempt("192.0.2.99")
    assert denied.value.wait_time_seconds == DENYLIST_WAIT_HINT_SECONDS


def test_admin_notification_on_lockout(
    db: Session, clock: FakeClock, caplog: LogCaptureFixture
) -> None:
    manager, ledger, _lists = _setup(
        db, clock, notify_admin_lockout=True, admin_email="security@example.com"
    )
    _fail(ledger, IP, "alice", 5)

    with caplog.at_level(logging.WARNING, logger="accessguard.services.lockout"):
        assert manager.check_brute_force(IP, "alice").blocked is True

    assert any("security@example.com" in r.getMessage() for r in caplog.records)
    events = list(
        db.execute(
            select(SecurityEvent).where(SecurityEvent.event_type == "lockout.notify_admin")
        )
        .scalars()
        .all()
    )
    assert len(events) == 1
    data = json.loads(events[0].event_data)
    assert data["admin_email"] == "security@example.com"
    assert data["username"] == "alice"


def test_store_failure_fails_open(
    db: Session, clock: FakeClock, monkeypatch: MonkeyPatch
) -> None:
    manager, ledger, _lists = _setup(db, clock)
    _fail(ledger, IP, "alice", 5)

    def _boom(*_args: object, **_kwargs: object) -> object:
        raise OperationalError("SELECT", {}, Exception("store down"))

    monkeypatch.setattr(db, "execute", _boom)
    decision = manager.check_brute_force(IP, "alice")
    assert decision.blocked is False
    assert decision.remaining_attempts is None
