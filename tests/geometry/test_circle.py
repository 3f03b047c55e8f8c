"""Tests for comp_reduce.geometry.circle (circle model and algebraic fit)."""

from __future__ import annotations

import numpy as np
import pytest

from comp_reduce.errors import InsufficientDataError
from comp_reduce.geometry.circle import (
    Circle,
    circle_residuals,
    fit_circle,
    fit_circle_to_samples,
    residual_rms,
)
from comp_reduce.geometry.edges import EdgeSample, EdgeScan, default_angles


class TestCircle:
    def test_radius_at_centered_circle(self) -> None:
        circle = Circle(0.0, 0.0, 10.0)
        np.testing.assert_allclose(circle.radius_at([0.0, 1.0, 2.0]), 10.0)

    def test_radius_at_offset_circle(self) -> None:
        circle = Circle(3.0, 0.0, 10.0)
        assert circle.radius_at(0.0) == pytest.approx(13.0)
        assert circle.radius_at(np.pi) == pytest.approx(7.0)

    def test_translated(self) -> None:
        assert Circle(1.0, 2.0, 5.0).translated(-1.0, 0.5) == Circle(0.0, 2.5, 5.0)

    def test_to_dict(self) -> None:
        assert Circle(1.0, 2.0, 3.0).to_dict() == {"x": 1.0, "y": 2.0, "r": 3.0}

    @pytest.mark.parametrize("r", [0.0, -1.0, float("nan")])
    def test_invalid_radius_rejected(self, r: float) -> None:
        with pytest.raises(ValueError):
            Circle(0.0, 0.0, r)

    def test_non_finite_center_rejected(self) -> None:
        with pytest.raises(ValueError, match="finite"):
            Circle(float("inf"), 0.0, 1.0)


class TestFitCircle:
    def test_recovers_offset_circle_exactly(self) -> None:
        truth = Circle(2.5, -1.75, 224.6)
        thetas = default_angles(90)
        circle = fit_circle(thetas, truth.radius_at(thetas))
        assert circle.x == pytest.approx(truth.x, abs=1e-8)
        assert circle.y == pytest.approx(truth.y, abs=1e-8)
        assert circle.r == pytest.approx(truth.r, abs=1e-8)

    def test_three_samples_suffice(self) -> None:
        truth = Circle(0.5, 0.5, 5.0)
        thetas = np.array([0.0, 2.0, 4.0])
        circle = fit_circle(thetas, truth.radius_at(thetas))
        assert circle.r == pytest.approx(5.0)

    def test_non_finite_samples_ignored(self) -> None:
        thetas = default_angles(8)
        radii = np.full(8, 10.0)
        radii[3] = np.nan
        assert fit_circle(thetas, radii).r == pytest.approx(10.0)

    def test_noise_averages_out(self) -> None:
        rng = np.random.default_rng(42)
        truth = Circle(-1.0, 3.0, 100.0)
        thetas = default_angles(360)
        radii = truth.radius_at(thetas) + rng.normal(0.0, 0.3, thetas.size)
        circle = fit_circle(thetas, radii)
        assert circle.x == pytest.approx(-1.0, abs=0.1)
        assert circle.y == pytest.approx(3.0, abs=0.1)
        assert circle.r == pytest.approx(100.0, abs=0.1)

    def test_too_few_samples(self) -> None:
        with pytest.raises(InsufficientDataError) as exc_info:
            fit_circle([0.0, 1.0], [5.0, 5.0])
        assert exc_info.value.context["n_samples"] == 2

    def test_collinear_samples(self) -> None:
        with pytest.raises(InsufficientDataError, match="collinear"):
            fit_circle([0.0, 0.0, 0.0, 0.0], [1.0, 2.0, 3.0, 4.0])

    def test_mismatched_lengths(self) -> None:
        with pytest.raises(ValueError):
            fit_circle([0.0, 1.0, 2.0], [1.0, 1.0])


class TestScanHelpers:
    def test_fit_from_samples_and_scan_agree(self) -> None:
        truth = Circle(1.0, 1.0, 20.0)
        thetas = default_angles(36)
        samples = tuple(
            EdgeSample(theta=float(t), radius=float(r))
            for t, r in zip(thetas, truth.radius_at(thetas), strict=True)
        )
        scan = EdgeScan(samples=samples, polarity="positive", center=(0.0, 0.0))
        from_scan = fit_circle_to_samples(scan)
        from_list = fit_circle_to_samples(list(samples))
        assert from_scan.r == pytest.approx(from_list.r)
        assert from_scan.x == pytest.approx(from_list.x)
        assert residual_rms(from_scan, scan) == pytest.approx(0.0, abs=1e-8)

    def test_residuals_sign(self) -> None:
        circle = Circle(0.0, 0.0, 10.0)
        residuals = circle_residuals(circle, [0.0, 1.0], [11.0, 9.0])
        np.testing.assert_allclose(residuals, [1.0, -1.0])
