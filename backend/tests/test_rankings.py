import random

import pytest

from district_analytics.analytics.rankings import (
    RANKING_VERSION,
    RankingCalculator,
    competition_ranks,
    metric_rankings,
)
from tests.factories import fixed_clock, make_ranking_input


def test_competition_ranks_share_rank_on_ties():
    assert competition_ranks({"a": 10.0, "b": 5.0, "c": 10.0, "d": 1.0}) == {
        "a": 1,
        "c": 1,
        "b": 3,
        "d": 4,
    }


def test_borda_points_and_aggregate():
    calculator = RankingCalculator(fixed_clock())
    rankings = calculator.calculate(
        [
            make_ranking_input("1", club_growth=5.0, payment_growth=1.0, distinguished=10),
            make_ranking_input("2", club_growth=3.0, payment_growth=4.0, distinguished=30),
            make_ranking_input("3", club_growth=1.0, payment_growth=2.0, distinguished=20),
        ]
    )
    by_id = {r.unit_id: r for r in rankings}
    assert by_id["1"].clubs_rank == 1
    assert by_id["2"].payments_rank == 1
    assert by_id["2"].distinguished_rank == 1
    # points per category are N - rank + 1
    assert by_id["1"].aggregate_score == 3 + 1 + 1
    assert by_id["2"].aggregate_score == 2 + 3 + 3
    assert by_id["3"].aggregate_score == 1 + 2 + 2
    assert [r.unit_id for r in rankings] == ["2", "1", "3"]
    assert [r.overall_rank for r in rankings] == [1, 2, 2]


def test_overall_rank_matches_sorted_position_for_random_inputs():
    rng = random.Random(20240131)
    calculator = RankingCalculator(fixed_clock())
    for _ in range(50):
        inputs = [
            make_ranking_input(
                str(index),
                club_growth=float(rng.randint(-5, 5)),
                payment_growth=float(rng.randint(-5, 5)),
                distinguished=rng.randint(0, 4),
                active_clubs=4,
            )
            for index in range(1, rng.randint(2, 12))
        ]
        rankings = calculator.calculate(inputs)
        scores = [r.aggregate_score for r in rankings]
        assert scores == sorted(scores, reverse=True)
        for position, ranking in enumerate(rankings, start=1):
            first_with_score = scores.index(ranking.aggregate_score) + 1
            assert ranking.overall_rank == first_with_score
            assert ranking.overall_rank <= position
        for a in rankings:
            for b in rankings:
                if a.aggregate_score == b.aggregate_score:
                    assert a.overall_rank == b.overall_rank


def test_rankings_are_deterministic_regardless_of_input_order():
    inputs = [
        make_ranking_input("10", club_growth=1.0, payment_growth=1.0),
        make_ranking_input("2", club_growth=1.0, payment_growth=1.0),
        make_ranking_input("F", club_growth=1.0, payment_growth=1.0),
    ]
    calculator = RankingCalculator(fixed_clock())
    first = calculator.calculate(inputs)
    second = calculator.calculate(list(reversed(inputs)))
    assert [r.model_dump() for r in first] == [r.model_dump() for r in second]
    assert [r.unit_id for r in first] == ["10", "2", "F"]
    assert {r.overall_rank for r in first} == {1}


def test_empty_inputs_produce_no_rankings():
    assert RankingCalculator(fixed_clock()).calculate([]) == []


def test_build_rankings_artifact_metadata():
    artifact = RankingCalculator(fixed_clock("2024-01-31T06:00:00")).build_rankings_artifact(
        "2024-01-31", [make_ranking_input("1"), make_ranking_input("2")]
    )
    assert artifact.metadata.snapshot_id == "2024-01-31"
    assert artifact.metadata.calculated_at == "2024-01-31T06:00:00"
    assert artifact.metadata.ranking_version == RANKING_VERSION
    assert artifact.metadata.total_units == 2
    assert artifact.for_unit("2") is not None
    assert artifact.for_unit("99") is None


def test_metric_rankings_world_and_region():
    artifact = RankingCalculator(fixed_clock()).build_rankings_artifact(
        "2024-01-31",
        [
            make_ranking_input("1", club_growth=9.0, region="01"),
            make_ranking_input("2", club_growth=7.0, region="02"),
            make_ranking_input("3", club_growth=5.0, region="01"),
            make_ranking_input("4", club_growth=3.0, region="02"),
        ],
    )
    standing = metric_rankings(artifact, "3", "clubs")
    assert standing.world_rank == 3
    assert standing.total_units == 4
    assert standing.world_percentile == pytest.approx(50.0)
    assert standing.region == "01"
    assert standing.region_rank == 2
    assert standing.total_in_region == 2


def test_metric_rankings_unavailable_without_entry():
    artifact = RankingCalculator(fixed_clock()).build_rankings_artifact(
        "2024-01-31", [make_ranking_input("1")]
    )
    assert metric_rankings(artifact, "99", "clubs").world_rank is None
    assert metric_rankings(None, "1", "clubs").world_rank is None
    assert metric_rankings(artifact, "1", "unknown").total_units is None
