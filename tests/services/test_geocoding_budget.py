from concurrent.futures import ThreadPoolExecutor
from datetime import date

from src.services.geocoding_budget import BudgetTracker


class FakeClock:
    def __init__(self, today: date) -> None:
        self.today = today

    def __call__(self) -> date:
        return self.today


def test_usage_reports_limit_and_remaining() -> None:
    tracker = BudgetTracker(limit_per_day=10, today=FakeClock(date(2025, 3, 1)))
    tracker.increment()

    usage = tracker.usage()

    assert usage.used == 2
    assert usage.limit == 10
    assert usage.remaining == 8
    assert usage.date == "2025-03-01"


def test_premium_only_for_complex_locations() -> None:
    tracker = BudgetTracker(limit_per_day=10)

    assert tracker.should_use_premium("Al-Midan neighborhood", "Damascus", "en")
    assert not tracker.should_use_premium("Damascus", "", "en")


def test_exhausted_budget_disables_premium_regardless_of_complexity() -> None:
    tracker = BudgetTracker(limit_per_day=4)
    for _ in range(2):
        assert tracker.try_reserve()

    assert tracker.calls_used_today == 4
    assert tracker.is_exhausted()
    assert not tracker.should_use_premium("Al-Midan neighborhood", "Damascus", "en")
    assert not tracker.try_reserve()
    assert tracker.calls_used_today == 4


def test_counter_resets_on_new_day() -> None:
    clock = FakeClock(date(2025, 3, 1))
    tracker = BudgetTracker(limit_per_day=2, today=clock)
    tracker.increment()
    assert tracker.is_exhausted()

    clock.today = date(2025, 3, 2)

    assert not tracker.is_exhausted()
    assert tracker.usage().used == 0
    assert tracker.usage().date == "2025-03-02"


def test_concurrent_reservations_never_exceed_limit() -> None:
    tracker = BudgetTracker(limit_per_day=100)

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(lambda _: tracker.try_reserve(), range(200)))

    assert results.count(True) == 50
    assert tracker.calls_used_today == 100


def test_reservation_never_passes_the_limit() -> None:
    tracker = BudgetTracker(limit_per_day=1000)
    tracker.increment(999)

    assert not tracker.try_reserve(2)
    assert tracker.calls_used_today == 999
    assert tracker.try_reserve(1)
    assert tracker.calls_used_today == 1000
