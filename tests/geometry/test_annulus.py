"""Tests for comp_reduce.geometry.annulus (occulter and field-stop location)."""

from __future__ import annotations

import dataclasses
import logging

import numpy as np
import pytest

from comp_reduce.config import ReductionContext
from comp_reduce.geometry.annulus import AnnulusResult, locate_annulus
from comp_reduce.geometry.circle import Circle
from tests.fixtures.synthetic import make_annulus_image

SHAPE = (200, 200)
OCCULTER = Circle(1.5, -2.0, 50.0)
FIELD = Circle(-1.0, 0.5, 85.0)


@pytest.fixture
def context() -> ReductionContext:
    return dataclasses.replace(
        ReductionContext(), occulter_window=12.0, field_window=10.0, n_edge_angles=180
    )


def _assert_close(found: Circle, truth: Circle, tol: float) -> None:
    assert found.x == pytest.approx(truth.x, abs=tol)
    assert found.y == pytest.approx(truth.y, abs=tol)
    assert found.r == pytest.approx(truth.r, abs=tol)


def test_locates_known_annulus_from_centered_guess(context: ReductionContext) -> None:
    image = make_annulus_image(SHAPE, OCCULTER, FIELD)
    result = locate_annulus(image, Circle(0.0, 0.0, 50.0), Circle(0.0, 0.0, 85.0), context=context)

    assert isinstance(result, AnnulusResult)
    _assert_close(result.occulter, OCCULTER, 0.5)
    _assert_close(result.field, FIELD, 0.5)
    assert result.occulter_scan.polarity == "positive"
    assert result.field_scan.polarity == "negative"


def test_offset_guess_is_folded_back(context: ReductionContext) -> None:
    image = make_annulus_image(SHAPE, OCCULTER, FIELD)
    result = locate_annulus(image, Circle(3.0, -1.0, 48.0), Circle(-2.0, 2.0, 86.0), context=context)
    _assert_close(result.occulter, OCCULTER, 0.5)
    _assert_close(result.field, FIELD, 0.5)


def test_noisy_image_within_half_pixel(context: ReductionContext) -> None:
    image = make_annulus_image(SHAPE, OCCULTER, FIELD, noise=1.0)
    result = locate_annulus(image, Circle(0.0, 0.0, 50.0), Circle(0.0, 0.0, 85.0), context=context)
    _assert_close(result.occulter, OCCULTER, 0.5)
    _assert_close(result.field, FIELD, 0.5)


def test_custom_angles(context: ReductionContext) -> None:
    image = make_annulus_image(SHAPE, OCCULTER, FIELD)
    angles = np.linspace(0.0, 2 * np.pi, 24, endpoint=False)
    result = locate_annulus(
        image, Circle(0.0, 0.0, 50.0), Circle(0.0, 0.0, 85.0), context=context, angles=angles
    )
    assert len(result.occulter_scan) == 24
    _assert_close(result.occulter, OCCULTER, 0.5)


def test_bad_guess_warns_about_window_boundary(
    context: ReductionContext, caplog: pytest.LogCaptureFixture
) -> None:
    image = make_annulus_image(SHAPE, OCCULTER, FIELD)
    with caplog.at_level(logging.WARNING, logger="comp_reduce.geometry.annulus"):
        locate_annulus(image, Circle(0.0, 0.0, 30.0), Circle(0.0, 0.0, 85.0), context=context)
    assert "window boundary" in caplog.text


def test_to_dict_reports_circles(context: ReductionContext) -> None:
    image = make_annulus_image(SHAPE, OCCULTER, FIELD)
    result = locate_annulus(image, Circle(0.0, 0.0, 50.0), Circle(0.0, 0.0, 85.0), context=context)
    payload = result.to_dict()
    assert set(payload) == {"occulter", "field", "occulter_boundary_hits", "field_boundary_hits"}
    assert payload["occulter"]["r"] == pytest.approx(50.0, abs=0.5)
