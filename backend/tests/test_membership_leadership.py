import pytest

from district_analytics.analytics.leadership import (
    LeadershipInsightsModule,
    activity_indicator,
    division_growth_score,
)
from district_analytics.analytics.membership import (
    MembershipAnalyticsModule,
    growth_rate,
    retention_rate,
)
from tests.factories import fixed_clock, make_club, make_unit


def test_growth_rate():
    assert growth_rate(100, 110) == 10.0
    assert growth_rate(200, 150) == -25.0
    assert growth_rate(0, 5) == 100.0
    assert growth_rate(0, 0) == 0.0


def test_retention_rate_is_capped_and_guarded():
    assert retention_rate(30, 20) == 75.0
    assert retention_rate(100, 20) == 100.0
    assert retention_rate(5, 0) == 0.0


def test_membership_analytics_over_snapshots():
    snapshots = [
        make_unit("2023-10-31", [make_club("1", membership=20), make_club("2", membership=20)], total_payments=40),
        make_unit("2023-09-30", [make_club("1", membership=18), make_club("2", membership=22)], total_payments=30),
        make_unit("2023-11-30", [make_club("1", membership=24), make_club("2", membership=20)], total_payments=66),
    ]
    result = MembershipAnalyticsModule(fixed_clock()).analyze("42", snapshots)
    assert result.total_membership == 44
    assert result.membership_change == 4
    assert result.growth_rate == 10.0
    assert result.retention_rate == 75.0
    assert [p.date for p in result.membership_trend] == ["2023-09-30", "2023-10-31", "2023-11-30"]
    assert [p.payments for p in result.payments_trend] == [30, 40, 66]


def test_membership_analytics_requires_snapshots():
    with pytest.raises(ValueError):
        MembershipAnalyticsModule(fixed_clock()).analyze("42", [])


def _leadership_unit():
    return make_unit(
        "2024-01-31",
        [
            make_club("1", membership=30, membership_base=30, goals_met=10, division="A", area="A1"),
            make_club("2", membership=30, membership_base=30, goals_met=10, division="A", area="A1"),
            make_club("3", membership=10, membership_base=10, goals_met=0, division="B", area="B1"),
        ],
    )


def test_division_rankings_and_best_practice():
    insights = LeadershipInsightsModule(fixed_clock()).analyze("42", [_leadership_unit()])
    by_division = {d.division: d for d in insights.division_rankings}

    assert by_division["A"].health_score == 100
    assert by_division["A"].growth_score == 50
    assert by_division["A"].dcp_score == 100
    assert by_division["A"].overall_score == 85
    assert by_division["A"].rank == 1
    assert by_division["B"].overall_score == 19
    assert by_division["B"].rank == 2
    assert [d.division for d in insights.best_practice_divisions] == ["A"]

    areas = {a.area: a for a in insights.area_correlations}
    assert areas["A1"].activity_indicator == "high"
    assert areas["A1"].correlation == "positive"
    assert areas["B1"].activity_indicator == "low"
    assert areas["B1"].correlation == "negative"

    assert insights.summary.top_divisions == ["A", "B"]
    assert insights.summary.top_areas == ["A1", "B1"]
    assert insights.summary.average_leadership_score == 52.0
    assert insights.summary.total_best_practice_divisions == 1


def test_inconsistent_division_is_not_best_practice():
    earlier = make_unit(
        "2023-12-31",
        [
            make_club("1", membership=30, membership_base=30, goals_met=10, division="A"),
            make_club("2", membership=30, membership_base=30, goals_met=10, division="A"),
        ],
    )
    later = make_unit(
        "2024-01-31",
        [
            make_club("1", membership=30, membership_base=30, goals_met=10, division="A"),
            make_club("2", membership=30, membership_base=30, goals_met=3, division="A"),
        ],
    )
    assert LeadershipInsightsModule.is_consistent("A", [earlier, later]) is False
    assert LeadershipInsightsModule.is_consistent("A", [earlier, earlier]) is True


def test_unassigned_division_is_grouped():
    unit = make_unit("2024-01-31", [make_club("1", division=None, area=None)])
    insights = LeadershipInsightsModule(fixed_clock()).analyze("42", [unit])
    assert [d.division for d in insights.division_rankings] == ["Unassigned"]
    assert [a.area for a in insights.area_correlations] == ["Unassigned"]


def test_division_growth_score_clamps():
    grew = [[make_club("1", membership=10)], [make_club("1", membership=20)]]
    shrank = [[make_club("1", membership=20)], [make_club("1", membership=10)]]
    assert division_growth_score(grew) == 100.0
    assert division_growth_score(shrank) == 0.0
    assert division_growth_score([]) == 50.0


@pytest.mark.parametrize("score, expected", [(70, "high"), (69.9, "medium"), (40, "medium"), (39, "low")])
def test_activity_indicator(score, expected):
    assert activity_indicator(score) == expected
