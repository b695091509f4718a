import numpy as np
import pytest

from spatialpotential.classify.breaks import (
    classify,
    derive_comparable_breaks,
    equal_breaks,
    quantile_breaks,
    validate_breaks,
)
from spatialpotential.errors import InvalidParameter


@pytest.mark.parametrize("k", [1, 2, 4, 8])
def test_quantile_breaks_shape_and_ends(k: int) -> None:
    rng = np.random.default_rng(42)
    values = rng.lognormal(mean=3.0, sigma=1.0, size=500)
    b = quantile_breaks(values, k)
    assert len(b) == k + 1
    assert all(b1 > b0 for b0, b1 in zip(b, b[1:]))
    assert b[0] == values.min()
    assert b[-1] == values.max()


def test_quantile_breaks_interpolate_between_order_statistics() -> None:
    assert quantile_breaks([1, 2, 3, 4, 5], 4) == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert quantile_breaks([0, 10], 4) == [0.0, 2.5, 5.0, 7.5, 10.0]


def test_tied_values_still_give_strict_breaks() -> None:
    values = [0.0] * 10 + [1.0]
    b = quantile_breaks(values, 4)
    assert len(b) == 5
    assert b[0] == 0.0
    assert b[-1] == 1.0
    assert all(b1 > b0 for b0, b1 in zip(b, b[1:]))


def test_constant_layer_breaks_climb_from_the_value() -> None:
    b = quantile_breaks([5.0, 5.0, 5.0], 3)
    assert len(b) == 4
    assert b[0] == 5.0
    assert all(b1 > b0 for b0, b1 in zip(b, b[1:]))
    assert b[-1] == pytest.approx(5.0)


def test_nan_values_are_ignored_and_empty_input_rejected() -> None:
    assert quantile_breaks([np.nan, 1.0, 3.0], 2) == [1.0, 2.0, 3.0]
    with pytest.raises(InvalidParameter):
        quantile_breaks([np.nan], 2)
    with pytest.raises(InvalidParameter):
        quantile_breaks([1.0, 2.0], 0)


def test_equal_breaks() -> None:
    assert equal_breaks([0.0, 3.0, 10.0], 5) == pytest.approx([0.0, 2.0, 4.0, 6.0, 8.0, 10.0])


def test_comparable_breaks_keep_the_interior() -> None:
    base = [0.0, 10.0, 20.0, 30.0, 40.0]
    ratio_values = np.linspace(5.0, 50.0, 10)
    b = derive_comparable_breaks(base, ratio_values)
    assert b[1:-1] == base[1:-1]
    assert b[0] == 5.0
    assert b[-1] == 50.0


def test_comparable_breaks_stay_strict_when_range_is_narrow() -> None:
    b = derive_comparable_breaks([0.0, 10.0, 20.0, 30.0], [15.0, 25.0])
    assert b[1:3] == [10.0, 20.0]
    assert b[0] < 10.0
    assert b[-1] == 25.0
    assert all(b1 > b0 for b0, b1 in zip(b, b[1:]))


@pytest.mark.parametrize("breaks", [[1.0], [1.0, 1.0], [3.0, 2.0, 4.0], [0.0, np.inf]])
def test_invalid_breaks(breaks: list[float]) -> None:
    with pytest.raises(InvalidParameter):
        validate_breaks(breaks)


def test_values_on_a_break_go_to_the_lower_class() -> None:
    classes = classify([0.0, 5.0, 10.0, 10.5, 20.0, 25.0, np.nan], [0.0, 10.0, 20.0])
    assert classes.tolist() == [0, 0, 0, 1, 1, -1, -1]
