import numpy as np
import pandas as pd
import pytest

from spatialpotential.errors import InvalidParameter
from spatialpotential.models.decay import DecayParams, weight
from spatialpotential.models.potential import WeightCache, compute_potentials, potential_ratio
from spatialpotential.spatial.distance import build_distance_matrix
from spatialpotential.spatial.points import EvaluationTargets, PointTarget, known_points_from_frame


def _two_cities() -> pd.DataFrame:
    return pd.DataFrame(
        [
            {"id": "A", "x": 0.0, "y": 0.0, "pop": 100.0, "gdp": 1000.0},
            {"id": "B", "x": 100_000.0, "y": 0.0, "pop": 50.0, "gdp": 0.0},
        ]
    )


def _targets() -> EvaluationTargets:
    return EvaluationTargets(
        targets=(
            PointTarget(id="A", x=0.0, y=0.0),
            PointTarget(id="B", x=100_000.0, y=0.0),
            PointTarget(id="mid", x=50_000.0, y=0.0),
        )
    )


def test_two_city_scenario() -> None:
    known = known_points_from_frame(_two_cities())
    targets = _targets()
    decay = DecayParams(family="exponential", span=75_000, beta=2)
    dm = build_distance_matrix(known, targets)
    surface = compute_potentials(known, targets, dm, decay, variables=["pop"])

    pop = dict(zip(targets.ids, surface.column("pop")))
    w = weight(100_000, span=75_000, beta=2, family="exponential")
    assert pop["A"] == pytest.approx(100 + 50 * w)
    assert pop["B"] == pytest.approx(50 + 100 * w)
    assert pop["A"] > pop["mid"] > 0


def test_coincident_target_gets_full_stock() -> None:
    known = known_points_from_frame(_two_cities())
    targets = known.as_targets()
    decay = DecayParams(family="pareto", span=1_000, beta=3)
    dm = build_distance_matrix(known, targets)
    values = compute_potentials(known, targets, dm, decay, variables=["pop"]).column("pop")
    # B is far beyond the span, so A keeps almost exactly its own stock.
    assert values[0] >= 100.0
    assert values[0] == pytest.approx(100.0, rel=1e-3)


def test_several_variables_share_one_weight_matrix() -> None:
    known = known_points_from_frame(_two_cities())
    targets = _targets()
    decay = DecayParams(family="exponential", span=75_000, beta=2)
    dm = build_distance_matrix(known, targets)
    cache = WeightCache(dm)

    both = compute_potentials(known, targets, dm, decay, variables=["pop", "gdp"], cache=cache)
    pop_only = compute_potentials(known, targets, dm, decay, variables=["pop"], cache=cache)
    assert len(cache._weights) == 1
    np.testing.assert_allclose(both.column("pop"), pop_only.column("pop"), rtol=1e-12)

    frame = both.to_frame()
    assert list(frame.columns) == ["id", "x", "y", "pop", "gdp"]
    assert not both.values.flags.writeable


def test_zero_stock_everywhere_gives_zero_potential() -> None:
    df = _two_cities().assign(pop=0.0)
    known = known_points_from_frame(df)
    targets = _targets()
    dm = build_distance_matrix(known, targets)
    values = compute_potentials(
        known, targets, dm, DecayParams(family="exponential", span=10.0, beta=1.0), variables=["pop"]
    ).column("pop")
    assert np.all(values == 0.0)
    assert not np.signbit(values).any()


def test_ratio_of_potentials() -> None:
    known = known_points_from_frame(_two_cities())
    targets = _targets()
    dm = build_distance_matrix(known, targets)
    surface = compute_potentials(
        known, targets, dm, DecayParams(family="exponential", span=75_000, beta=2), variables=["gdp", "pop"]
    )
    ratio = potential_ratio(surface.column("gdp"), surface.column("pop"), scale=1_000)
    # Only A produces gdp, so the ratio falls from A towards B.
    assert ratio[0] > ratio[2] > ratio[1] > 0

    out = potential_ratio(np.array([1.0, 2.0]), np.array([0.0, 4.0]))
    assert np.isnan(out[0])
    assert out[1] == 0.5


def test_bad_stocks_and_unknown_variables() -> None:
    targets = _targets()
    decay = DecayParams(family="exponential", span=75_000, beta=2)

    negative = known_points_from_frame(_two_cities().assign(pop=[-1.0, 5.0]))
    dm = build_distance_matrix(negative, targets)
    with pytest.raises(InvalidParameter):
        compute_potentials(negative, targets, dm, decay, variables=["pop"])

    known = known_points_from_frame(_two_cities())
    dm = build_distance_matrix(known, targets)
    with pytest.raises(InvalidParameter):
        compute_potentials(known, targets, dm, decay, variables=["jobs"])
    with pytest.raises(InvalidParameter):
        compute_potentials(known, targets, dm, decay, variables=[])


def test_distance_matrix_must_match_targets() -> None:
    known = known_points_from_frame(_two_cities())
    dm = build_distance_matrix(known, _targets())
    other = known.as_targets()
    with pytest.raises(InvalidParameter):
        compute_potentials(
            known, other, dm, DecayParams(family="exponential", span=1.0, beta=1.0), variables=["pop"]
        )
