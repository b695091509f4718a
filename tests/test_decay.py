import math

import numpy as np
import pytest

from spatialpotential.errors import InvalidDistance, InvalidParameter
from spatialpotential.models.decay import DecayFamily, DecayParams, parse_family, weight


@pytest.mark.parametrize("family", ["exponential", "pareto"])
def test_weight_is_one_at_zero_and_half_at_span(family: str) -> None:
    assert weight(0.0, span=75000, beta=2, family=family) == 1.0
    assert weight(75000.0, span=75000, beta=2, family=family) == pytest.approx(0.5)


@pytest.mark.parametrize("family", ["exponential", "pareto"])
def test_weights_strictly_decrease_and_vanish(family: str) -> None:
    params = DecayParams(family=family, span=1000.0, beta=1.5)
    d = np.linspace(1.0, 20000.0, 200)
    w = params.weights(d)
    assert np.all(np.diff(w) < 0)
    assert np.all((w >= 0) & (w <= 1))
    assert params.weights(np.array([1e12]))[0] == pytest.approx(0.0, abs=1e-9)


def test_exponential_closed_form() -> None:
    params = DecayParams(family=DecayFamily.EXPONENTIAL, span=75000.0, beta=2.0)
    assert params.alpha == pytest.approx(math.log(2) / 75000.0**2)
    expected = math.exp(-math.log(2) * (100000.0 / 75000.0) ** 2)
    assert float(params.weights(np.array([100000.0]))[0]) == pytest.approx(expected)


def test_pareto_closed_form() -> None:
    params = DecayParams(family="pareto", span=10.0, beta=2.0)
    alpha = (2 ** 0.5 - 1) / 10.0
    assert params.alpha == pytest.approx(alpha)
    assert float(params.weights(np.array([30.0]))[0]) == pytest.approx((1 + alpha * 30.0) ** -2)


def test_huge_distances_underflow_to_zero_without_nan() -> None:
    params = DecayParams(family="exponential", span=1.0, beta=3.0)
    w = params.weights(np.array([0.0, 1e6, 1e300]))
    assert not np.isnan(w).any()
    assert w[0] == 1.0
    assert w[-1] == 0.0


def test_parse_family_is_case_insensitive() -> None:
    assert parse_family(" Pareto ") is DecayFamily.PARETO
    with pytest.raises(InvalidParameter):
        parse_family("gaussian")


@pytest.mark.parametrize(
    "span,beta",
    [(0.0, 2.0), (-1.0, 2.0), (100.0, 0.0), (float("nan"), 1.0), (float("inf"), 1.0)],
)
def test_invalid_parameters_are_rejected_at_construction(span: float, beta: float) -> None:
    with pytest.raises(InvalidParameter):
        DecayParams(family="exponential", span=span, beta=beta)


def test_negative_or_nan_distance_is_rejected() -> None:
    params = DecayParams(family="pareto", span=100.0, beta=1.0)
    with pytest.raises(InvalidDistance):
        params.weights(np.array([10.0, -1.0]))
    with pytest.raises(InvalidDistance):
        params.weights(np.array([np.nan]))
    with pytest.raises(InvalidDistance):
        weight(-5.0, span=100.0, beta=1.0, family="pareto")


def test_params_are_hashable_cache_keys() -> None:
    a = DecayParams(family="exponential", span=100.0, beta=2)
    b = DecayParams(family=DecayFamily.EXPONENTIAL, span=100, beta=2.0)
    assert a == b
    assert len({a, b}) == 1
    assert a.describe()["family"] == "exponential"
