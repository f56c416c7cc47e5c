import math

import pytest

from badge_tracker_server.calculator import (
    PositionCalculator,
    estimate_distance,
    estimate_position,
    trilaterate,
    weighted_centroid,
)
from badge_tracker_server.models import AnchorDistance, EstimateKind

ANCHORS = [(0.0, 0.0), (5.0, 0.0), (2.5, 4.0)]


def _distances_to(point: tuple[float, float], anchors=ANCHORS) -> list[AnchorDistance]:
    px, py = point
    return [AnchorDistance(x=x, y=y, distance=math.hypot(px - x, py - y)) for x, y in anchors]


def test_reference_strength_maps_to_one_meter() -> None:
    assert estimate_distance(-59) == pytest.approx(1.0)
    assert estimate_distance(-79) == pytest.approx(10.0)


def test_zero_strength_returns_sentinel_for_any_parameters() -> None:
    assert estimate_distance(0) == -1.0
    assert estimate_distance(0, reference_strength=-40.0, path_loss_exponent=3.5) == -1.0


@pytest.mark.parametrize("reference, exponent", [(-59.0, 2.0), (-45.0, 3.0), (-70.0, 1.6)])
def test_distance_decreases_as_signal_strengthens(reference: float, exponent: float) -> None:
    strengths = [s for s in range(-100, 5) if s != 0]
    distances = [estimate_distance(s, reference, exponent) for s in strengths]

    assert all(a > b for a, b in zip(distances, distances[1:]))


def test_calculator_uses_configured_path_loss() -> None:
    calc = PositionCalculator.from_config({"tx_power": -40, "path_loss_exponent": 2.0})

    assert calc.rssi_to_distance(-60) == pytest.approx(10.0)
    assert calc.rssi_to_distance(0) == -1.0


@pytest.mark.parametrize("point", [(1.0, 1.0), (2.5, 1.5), (4.2, 3.1), (-1.0, 6.0)])
def test_trilateration_is_exact_for_noiseless_distances(point: tuple[float, float]) -> None:
    estimate = trilaterate(_distances_to(point))

    assert estimate.kind is EstimateKind.EXACT
    assert estimate.position.x == pytest.approx(point[0], abs=1e-6)
    assert estimate.position.y == pytest.approx(point[1], abs=1e-6)


def test_equal_distances_solve_to_circumcenter() -> None:
    estimate = trilaterate([AnchorDistance(x, y, 1.0) for x, y in ANCHORS])

    assert estimate.kind is EstimateKind.EXACT
    assert estimate.position.x == pytest.approx(2.5)
    assert estimate.position.y == pytest.approx(1.21875)


def test_collinear_anchors_fall_back_to_weighted_centroid() -> None:
    anchors = [AnchorDistance(0.0, 0.0, 1.0), AnchorDistance(1.0, 0.0, 2.0), AnchorDistance(2.0, 0.0, 4.0)]

    estimate = trilaterate(anchors)

    assert estimate.kind is EstimateKind.FALLBACK
    assert math.isfinite(estimate.position.x)
    assert math.isfinite(estimate.position.y)
    # 权重 1, 0.5, 0.25
    assert estimate.position.x == pytest.approx((0.0 + 0.5 + 0.5) / 1.75)
    assert estimate.position.y == pytest.approx(0.0)


def test_weighted_centroid_clamps_tiny_distances() -> None:
    position = weighted_centroid([AnchorDistance(0.0, 0.0, 0.0), AnchorDistance(10.0, 0.0, 0.1)])

    assert position.x == pytest.approx(5.0)


def test_trilaterate_requires_exactly_three_anchors() -> None:
    with pytest.raises(ValueError):
        trilaterate(_distances_to((1.0, 1.0))[:2])


def test_estimate_position_degrades_with_fewer_than_three_anchors() -> None:
    distances = [AnchorDistance(0.0, 0.0, 3.0), AnchorDistance(5.0, 0.0, 1.2)]

    estimate = estimate_position(distances)

    assert estimate is not None
    assert estimate.kind is EstimateKind.DEGRADED
    assert (estimate.position.x, estimate.position.y) == (5.0, 0.0)
    assert estimate.anchor_count == 2


def test_estimate_position_uses_three_closest_anchors() -> None:
    distances = _distances_to((1.0, 1.0)) + [AnchorDistance(100.0, 100.0, 500.0)]

    estimate = estimate_position(distances)

    assert estimate is not None
    assert estimate.kind is EstimateKind.EXACT
    assert estimate.anchor_count == 4
    assert estimate.position.x == pytest.approx(1.0, abs=1e-6)
    assert estimate.position.y == pytest.approx(1.0, abs=1e-6)


def test_estimate_position_without_anchors_is_none() -> None:
    assert estimate_position([]) is None
