from email.utils import formatdate

import pytest

from at_proxy.gate import RateLimitGate, parse_retry_after

NOW = 1_700_000_000.0


def test_numeric_retry_after():
    gate = RateLimitGate()
    assert gate.trip("15", NOW) is True
    assert gate.blocked_until == NOW + 15
    assert gate.check(NOW) == 15


def test_decimal_retry_after_rounds_up():
    gate = RateLimitGate()
    gate.trip("2.5", NOW)
    assert gate.check(NOW) == 3
    assert gate.check(NOW + 2.4) == 1
    assert gate.check(NOW + 2.5) is None


def test_http_date_retry_after():
    gate = RateLimitGate()
    assert gate.trip(formatdate(NOW + 10, usegmt=True), NOW) is True
    assert gate.check(NOW) == pytest.approx(10, abs=1)


def test_malformed_retry_after_leaves_state_alone():
    gate = RateLimitGate()
    gate.trip("30", NOW)
    before = gate.blocked_until
    assert gate.trip("not-a-date", NOW) is False
    assert gate.blocked_until == before


@pytest.mark.parametrize("value", [None, "", "   ", "0", "-5", "nan", "inf"])
def test_no_cooldown_for_empty_or_non_positive(value):
    gate = RateLimitGate()
    assert gate.trip(value, NOW) is False
    assert gate.check(NOW) is None


def test_past_http_date_is_ignored():
    gate = RateLimitGate()
    assert gate.trip(formatdate(NOW - 60, usegmt=True), NOW) is False
    assert gate.check(NOW) is None


def test_smaller_signal_never_shrinks_cooldown():
    gate = RateLimitGate()
    gate.trip("30", NOW)
    assert gate.trip("5", NOW + 1) is False
    assert gate.blocked_until == NOW + 30
    assert gate.trip("60", NOW + 1) is True
    assert gate.blocked_until == NOW + 61


def test_cooldown_counts_down_and_expires():
    gate = RateLimitGate()
    gate.trip("30", NOW)
    assert gate.check(NOW + 1) == 29
    assert gate.check(NOW + 29.2) == 1
    assert gate.check(NOW + 30) is None


def test_max_cooldown_clamps_delay():
    gate = RateLimitGate(max_cooldown=60)
    gate.trip("3600", NOW)
    assert gate.blocked_until == NOW + 60


def test_parse_retry_after_prefers_number():
    assert parse_retry_after(" 15 ", NOW) == 15
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", NOW) < 0
    assert parse_retry_after("soon", NOW) is None
