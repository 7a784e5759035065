import random
from datetime import date, timedelta

import pytest

from district_analytics.analytics.computer import (
    AnalyticsComputer,
    achieved_level,
    compare,
    distinguished_share_targets,
    find_snapshot_for_date,
    growth_targets,
)
from district_analytics.analytics.rankings import RankingCalculator
from district_analytics.schemas.analytics import DistinguishedLevel
from tests.factories import fixed_clock, make_club, make_ranking_input, make_unit


def _dates(snapshots):
    return [s.snapshot_date for s in snapshots]


def test_growth_targets_at_base_100():
    targets = growth_targets(100)
    assert (targets.distinguished, targets.select, targets.presidents, targets.smedley) == (
        101,
        103,
        105,
        108,
    )


def test_distinguished_share_targets_at_base_100():
    targets = distinguished_share_targets(100)
    assert (targets.distinguished, targets.select, targets.presidents, targets.smedley) == (
        45,
        50,
        55,
        60,
    )


def test_targets_round_up():
    targets = growth_targets(37)
    assert (targets.distinguished, targets.select, targets.presidents, targets.smedley) == (
        38,
        39,
        39,
        40,
    )
    assert distinguished_share_targets(33).distinguished == 15


def test_targets_unavailable_without_base():
    assert growth_targets(None) is None
    assert distinguished_share_targets(None) is None
    assert achieved_level(500, None) is None


def test_achieved_level_is_highest_met():
    targets = growth_targets(100)
    assert achieved_level(100, targets) is None
    assert achieved_level(101, targets) == DistinguishedLevel.DISTINGUISHED
    assert achieved_level(104, targets) == DistinguishedLevel.SELECT
    assert achieved_level(200, targets) == DistinguishedLevel.SMEDLEY


def test_compare_without_previous_value():
    result = compare(5, 0)
    assert result.absolute_change == 5
    assert result.percent_change is None
    assert compare(110, 100).percent_change == 10.0


def test_find_snapshot_prefers_exact_match():
    snapshots = [make_unit(d) for d in ("2023-06-30", "2023-12-31", "2024-03-31")]
    assert find_snapshot_for_date(snapshots, "2023-12-31").snapshot_date == "2023-12-31"


def test_find_snapshot_falls_back_to_latest_in_same_year():
    snapshots = [make_unit(d) for d in ("2023-03-31", "2023-06-30", "2024-01-31")]
    assert find_snapshot_for_date(snapshots, "2023-09-15").snapshot_date == "2023-06-30"


def test_find_snapshot_nearest_within_limit():
    snapshots = [make_unit("2023-01-10")]
    assert find_snapshot_for_date(snapshots, "2022-12-20").snapshot_date == "2023-01-10"


def test_find_snapshot_rejects_distant_candidates():
    assert find_snapshot_for_date([make_unit("2023-01-10")], "2024-01-15") is None
    # 181 days away
    assert find_snapshot_for_date([make_unit("2023-06-30")], "2022-12-31") is None
    assert find_snapshot_for_date([], "2024-01-15") is None


def test_find_snapshot_honours_configured_limit():
    snapshots = [make_unit("2023-01-10")]
    assert find_snapshot_for_date(snapshots, "2022-12-20", max_day_difference=10) is None


def test_find_snapshot_never_returns_distant_other_year_match():
    rng = random.Random(180)
    origin = date(2020, 1, 1)
    for _ in range(200):
        days = rng.sample(range(0, 365 * 4), rng.randint(1, 6))
        snapshots = [make_unit((origin + timedelta(days=d)).isoformat()) for d in days]
        target = origin + timedelta(days=rng.randint(0, 365 * 4))
        found = find_snapshot_for_date(snapshots, target.isoformat())
        dates = _dates(snapshots)
        if target.isoformat() in dates:
            assert found.snapshot_date == target.isoformat()
            continue
        same_year = [d for d in dates if d[:4] == str(target.year)]
        if same_year:
            assert found.snapshot_date == max(same_year)
        elif found is not None:
            assert abs((date.fromisoformat(found.snapshot_date) - target).days) <= 180


def test_year_over_year_unavailable_with_single_snapshot():
    computer = AnalyticsComputer(fixed_clock())
    result = computer.compute_year_over_year("42", [make_unit("2024-01-15")], "2024-01-15")
    assert result.data_available is False
    assert result.metrics is None
    assert result.previous_year_date == "2023-01-15"


def test_year_over_year_unavailable_when_previous_is_too_far():
    computer = AnalyticsComputer(fixed_clock())
    snapshots = [make_unit("2022-06-30"), make_unit("2024-01-15")]
    result = computer.compute_year_over_year("42", snapshots, "2024-01-15")
    assert result.data_available is False
    assert result.message


def test_year_over_year_uses_earlier_snapshot_in_previous_calendar_year():
    # Same-calendar-year match wins before the 180-day nearest-match limit.
    computer = AnalyticsComputer(fixed_clock())
    snapshots = [
        make_unit("2023-01-10", [make_club("1", membership=20)]),
        make_unit("2024-01-15", [make_club("1", membership=25)]),
    ]
    result = computer.compute_year_over_year("42", snapshots, "2024-01-15")
    assert result.data_available is True
    assert result.previous_year_date == "2023-01-15"
    assert result.metrics.membership.previous == 20
    assert result.metrics.membership.current == 25


def test_year_over_year_unavailable_without_snapshots():
    result = AnalyticsComputer(fixed_clock()).compute_year_over_year("42", [], "2024-01-15")
    assert result.data_available is False


def test_year_over_year_metrics():
    computer = AnalyticsComputer(fixed_clock())
    snapshots = [
        make_unit("2023-01-31", [make_club("1", membership=20, goals_met=4)]),
        make_unit(
            "2024-01-31",
            [make_club("1", membership=25, goals_met=6), make_club("2", membership=15, goals_met=2)],
        ),
    ]
    result = computer.compute_year_over_year("42", snapshots, "2024-01-31")
    assert result.data_available is True
    metrics = result.metrics
    assert metrics.membership.current == 40
    assert metrics.membership.previous == 20
    assert metrics.membership.absolute_change == 20
    assert metrics.membership.percent_change == 100.0
    assert metrics.club_count.current == 2
    assert metrics.dcp_goals_total.current == 8
    assert metrics.dcp_goals_average.current == 4.0
    assert [p.date for p in result.multi_year_trends] == ["2023-01-31", "2024-01-31"]


def test_multi_year_trends_need_two_years():
    computer = AnalyticsComputer(fixed_clock())
    assert computer.multi_year_trends([make_unit("2024-01-31")], "2024-01-31") is None


def _rankings(**overrides):
    entry = make_ranking_input("42", **overrides)
    return RankingCalculator(fixed_clock()).build_rankings_artifact(
        "2024-01-31", [entry, make_ranking_input("61", region="02")]
    )


def test_performance_targets_from_rankings():
    computer = AnalyticsComputer(fixed_clock())
    rankings = _rankings(paid_clubs=104, total_payments=1085, distinguished=50)
    result = computer.compute_performance_targets("42", make_unit("2024-01-31"), rankings)

    assert result.data_available is True
    assert result.paid_clubs.current == 104
    assert result.paid_clubs.base == 100
    assert result.paid_clubs.targets.smedley == 108
    assert result.paid_clubs.achieved_level == DistinguishedLevel.SELECT
    assert result.membership_payments.targets.distinguished == 1010
    assert result.membership_payments.achieved_level == DistinguishedLevel.SMEDLEY
    assert result.distinguished_clubs.targets.presidents == 55
    assert result.distinguished_clubs.achieved_level == DistinguishedLevel.SELECT
    assert result.paid_clubs.rankings.total_units == 2
    assert result.paid_clubs.rankings.region == "01"


def test_performance_targets_without_base():
    computer = AnalyticsComputer(fixed_clock())
    rankings = _rankings(paid_club_base=None)
    result = computer.compute_performance_targets("42", make_unit("2024-01-31"), rankings)
    assert result.paid_clubs.base is None
    assert result.paid_clubs.targets is None
    assert result.paid_clubs.achieved_level is None
    assert result.distinguished_clubs.targets is None
    assert result.membership_payments.targets is not None


def test_performance_targets_without_ranking_entry():
    computer = AnalyticsComputer(fixed_clock())
    latest = make_unit("2024-01-31", [make_club("1"), make_club("2")])
    result = computer.compute_performance_targets("99", latest, _rankings())
    assert result.data_available is False
    assert result.paid_clubs.current == 2
    assert result.paid_clubs.targets is None
    assert result.paid_clubs.rankings.world_rank is None


def test_compute_uses_current_program_year_for_trends():
    computer = AnalyticsComputer(fixed_clock())
    snapshots = [
        make_unit("2023-05-31", [make_club("1", membership=10)]),
        make_unit("2023-08-31", [make_club("1", membership=20), make_club("2", membership=30)]),
        make_unit("2023-09-30", [make_club("1", membership=22), make_club("2", membership=31)]),
    ]
    result = computer.compute("42", snapshots, _rankings())
    analytics = result.unit_analytics
    assert analytics.start_date == "2023-08-31"
    assert analytics.end_date == "2023-09-30"
    assert analytics.total_membership == 53
    assert analytics.membership_change == 3
    assert analytics.club_count == 2
    assert (
        analytics.thriving_count
        + analytics.stable_count
        + analytics.vulnerable_count
        + analytics.intervention_required_count
        == 2
    )
    assert len(result.club_trends.clubs["1"].membership_trend) == 2
    assert result.performance_targets.data_available is True
    assert result.year_over_year.current_date == "2023-09-30"


def test_compute_requires_snapshots():
    with pytest.raises(ValueError):
        AnalyticsComputer(fixed_clock()).compute("42", [])
