from datetime import date, datetime

import pytest

from pagination import Page
from periods import is_current_month, month_period
from response_cache import (
    GROUPED_CURRENT_MONTH_TTL_SECS,
    GROUPED_PAST_MONTH_TTL_SECS,
    ResponseCache,
    grouped_ttl,
)
from security import generate_access_token, validate_access_token


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


def test_month_period_is_half_open() -> None:
    period = month_period(2024, 2)

    assert period.start == datetime(2024, 2, 1)
    assert period.end == datetime(2024, 3, 1)


def test_month_period_december_and_bounds() -> None:
    assert month_period(2023, 12).end == datetime(2024, 1, 1)
    assert month_period(9999, 12).end == datetime.max
    with pytest.raises(ValueError):
        month_period(2024, 13)
    with pytest.raises(ValueError):
        month_period(2024, 0)


def test_is_current_month() -> None:
    period = month_period(2024, 5)
    assert is_current_month(period, today=date(2024, 5, 31))
    assert not is_current_month(period, today=date(2024, 6, 1))


def test_page_metadata() -> None:
    page = Page[int](data=[], page_number=1, page_size=10, total_records=0)
    assert page.total_pages == 0
    assert not page.has_next
    assert not page.has_previous

    page = Page[int](data=[1, 2], page_number=3, page_size=4, total_records=10)
    assert page.total_pages == 3
    assert page.has_previous
    assert not page.has_next


def test_cache_entries_expire() -> None:
    clock = FakeClock()
    cache = ResponseCache(clock=clock)
    key = ("summary", 1, 2024, 3)

    cache.set(key, {"income": 1}, ttl_secs=60)
    assert cache.get(key) == {"income": 1}

    clock.now += 60
    assert cache.get(key) is None


def test_cache_reclaims_expired_entries_that_are_never_read() -> None:
    clock = FakeClock()
    cache = ResponseCache(clock=clock)
    for month in range(1, 13):
        cache.set(("summary", 1, 2023, month), month, ttl_secs=60)
    assert len(cache) == 12

    clock.now += 61
    cache.set(("summary", 1, 2024, 1), "fresh", ttl_secs=60)

    assert len(cache) == 1
    assert cache.get(("summary", 1, 2024, 1)) == "fresh"


def test_cache_evicts_oldest_entries_past_capacity() -> None:
    cache = ResponseCache(clock=FakeClock(), max_entries=3)
    for year in range(2001, 2006):
        cache.set(("summary", 1, year, 1), year, ttl_secs=600)

    assert len(cache) == 3
    assert cache.get(("summary", 1, 2001, 1)) is None
    assert cache.get(("summary", 1, 2002, 1)) is None
    assert cache.get(("summary", 1, 2005, 1)) == 2005


def test_cache_invalidation_is_scoped() -> None:
    cache = ResponseCache(clock=FakeClock())
    cache.set(("grouped", 1, 2024, 3), "g1", 60)
    cache.set(("summary", 1, 2024, 3), "s1", 60)
    cache.set(("summary", 2, 2024, 3), "s2", 60)
    cache.set(("top_expenses", 1, 2024, 3), "t1", 60)

    assert cache.invalidate_wallet(1) == 2
    assert cache.get(("summary", 2, 2024, 3)) == "s2"
    # user 1's top expenses survive a wallet-scoped drop for wallet 1
    assert cache.get(("top_expenses", 1, 2024, 3)) == "t1"

    assert cache.invalidate_user(1) == 1
    assert cache.get(("top_expenses", 1, 2024, 3)) is None


def test_grouped_ttl_depends_on_month() -> None:
    today = date.today()
    assert grouped_ttl(month_period(today.year, today.month)) == (
        GROUPED_CURRENT_MONTH_TTL_SECS
    )
    assert grouped_ttl(month_period(2001, 1)) == GROUPED_PAST_MONTH_TTL_SECS


def test_access_token_round_trip_and_tamper() -> None:
    token = generate_access_token(42, "Admin")

    assert validate_access_token(token) == (42, "Admin")
    assert validate_access_token(token + "x") is None
    assert validate_access_token("garbage") is None
