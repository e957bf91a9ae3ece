"""
Tests for lens distortion models.
"""

import logging

import pytest
import numpy as np
from numpy.testing import assert_allclose

from camera_system.distortion import (
    IntrinsicParam,
    LensDistortionModel,
    NUM_INTRINSIC_PARAMS,
    distort,
    undistort,
)


def make_intrinsics(**values):
    intrinsics = np.zeros(NUM_INTRINSIC_PARAMS)
    for name, value in values.items():
        intrinsics[IntrinsicParam[name]] = value
    return intrinsics


MODEL_COEFFICIENTS = {
    LensDistortionModel.K1R1_K2R2_K3R3: make_intrinsics(K1=-0.02, K2=0.01, K3=-0.005),
    LensDistortionModel.K1R2_K2R4_K3R6: make_intrinsics(K1=-0.2, K2=0.05, K3=-0.01),
    LensDistortionModel.K1R3_K2R5_K3R7: make_intrinsics(K1=-0.1, K2=0.03, K3=0.01),
    LensDistortionModel.OPENCV_DIS: make_intrinsics(
        K1=-0.2, K2=0.05, K3=0.01, K4=0.02, K5=-0.01, K6=0.005,
        P1=0.001, P2=-0.002, S1=0.001, S2=-0.0005, S3=0.0007, S4=0.0002,
    ),
    LensDistortionModel.VIC3D_DIS: make_intrinsics(K1=-0.15, K2=0.04, K3=-0.01, P1=0.002, P2=0.001),
}


@pytest.fixture
def sensor_points():
    rng = np.random.default_rng(3)
    return rng.uniform(-0.3, 0.3, 40), rng.uniform(-0.3, 0.3, 40)


class TestLensDistortionModel:
    """Tests for model name decoding."""

    def test_from_string(self):
        for model in LensDistortionModel:
            assert LensDistortionModel.from_string(model.value) is model

    def test_from_string_strips_whitespace(self):
        assert LensDistortionModel.from_string(" OPENCV_DIS ") is LensDistortionModel.OPENCV_DIS

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="Unrecognized lens distortion model"):
            LensDistortionModel.from_string("FISHEYE")


class TestDistort:
    """Tests for the forward distortion models."""

    def test_none_is_identity(self, sensor_points):
        x, y = sensor_points
        xd, yd, j00, j01, j10, j11 = distort(LensDistortionModel.NONE, np.zeros(NUM_INTRINSIC_PARAMS), x, y)

        assert_allclose(xd, x)
        assert_allclose(yd, y)
        assert_allclose(j00, 1.0)
        assert_allclose(j11, 1.0)
        assert_allclose(j01, 0.0)
        assert_allclose(j10, 0.0)

    @pytest.mark.parametrize("model", list(LensDistortionModel))
    def test_zero_coefficients_identity(self, model, sensor_points):
        x, y = sensor_points
        xd, yd = distort(model, np.zeros(NUM_INTRINSIC_PARAMS), x, y)[:2]

        assert_allclose(xd, x, atol=1e-15)
        assert_allclose(yd, y, atol=1e-15)

    @pytest.mark.parametrize("model, powers", [
        (LensDistortionModel.K1R1_K2R2_K3R3, (1, 2, 3)),
        (LensDistortionModel.K1R2_K2R4_K3R6, (2, 4, 6)),
        (LensDistortionModel.K1R3_K2R5_K3R7, (3, 5, 7)),
    ])
    def test_radial_polynomial(self, model, powers):
        k = MODEL_COEFFICIENTS[model]
        x, y = np.array([0.3]), np.array([-0.4])
        r = 0.5
        factor = 1 + sum(k[p] * r ** n for p, n in zip(
            (IntrinsicParam.K1, IntrinsicParam.K2, IntrinsicParam.K3), powers))

        xd, yd = distort(model, k, x, y)[:2]

        assert_allclose(xd, x * factor)
        assert_allclose(yd, y * factor)

    def test_vic3d_matches_opencv_without_rational_terms(self, sensor_points):
        x, y = sensor_points
        k = MODEL_COEFFICIENTS[LensDistortionModel.VIC3D_DIS]

        vic = distort(LensDistortionModel.VIC3D_DIS, k, x, y)
        opencv = distort(LensDistortionModel.OPENCV_DIS, k, x, y)

        for a, b in zip(vic, opencv):
            assert_allclose(a, b)

    def test_scheimpflug_terms_not_applied(self, sensor_points):
        x, y = sensor_points
        k = MODEL_COEFFICIENTS[LensDistortionModel.OPENCV_DIS].copy()
        base = distort(LensDistortionModel.OPENCV_DIS, k, x, y)
        k[IntrinsicParam.T1] = 0.3
        k[IntrinsicParam.T2] = -0.2
        tilted = distort(LensDistortionModel.OPENCV_DIS, k, x, y)

        assert_allclose(tilted[0], base[0])
        assert_allclose(tilted[1], base[1])

    @pytest.mark.parametrize("model", list(MODEL_COEFFICIENTS))
    def test_jacobian_matches_finite_difference(self, model, sensor_points):
        x, y = sensor_points
        k = MODEL_COEFFICIENTS[model]
        h = 1e-6

        _, _, j00, j01, j10, j11 = distort(model, k, x, y)
        xd_px, yd_px = distort(model, k, x + h, y)[:2]
        xd_mx, yd_mx = distort(model, k, x - h, y)[:2]
        xd_py, yd_py = distort(model, k, x, y + h)[:2]
        xd_my, yd_my = distort(model, k, x, y - h)[:2]

        assert_allclose(j00, (xd_px - xd_mx) / (2 * h), rtol=1e-6, atol=1e-8)
        assert_allclose(j10, (yd_px - yd_mx) / (2 * h), rtol=1e-6, atol=1e-8)
        assert_allclose(j01, (xd_py - xd_my) / (2 * h), rtol=1e-6, atol=1e-8)
        assert_allclose(j11, (yd_py - yd_my) / (2 * h), rtol=1e-6, atol=1e-8)

    def test_radial_jacobian_at_center(self):
        """Jacobian is finite at r = 0 for the odd power families."""
        k = MODEL_COEFFICIENTS[LensDistortionModel.K1R1_K2R2_K3R3]
        _, _, j00, j01, j10, j11 = distort(
            LensDistortionModel.K1R1_K2R2_K3R3, k, np.zeros(1), np.zeros(1)
        )

        assert np.all(np.isfinite([j00, j01, j10, j11]))
        assert_allclose(j00, 1.0)
        assert_allclose(j11, 1.0)


class TestUndistort:
    """Tests for the iterative inverse of the distortion models."""

    @pytest.mark.parametrize("model", list(MODEL_COEFFICIENTS))
    def test_inverts_distort(self, model, sensor_points):
        x, y = sensor_points
        k = MODEL_COEFFICIENTS[model]
        xd, yd = distort(model, k, x, y)[:2]

        xu, yu = undistort(model, k, xd, yd)

        assert_allclose(xu, x, atol=1e-10)
        assert_allclose(yu, y, atol=1e-10)

    def test_none_is_identity(self, sensor_points):
        x, y = sensor_points
        xu, yu = undistort(LensDistortionModel.NONE, np.zeros(NUM_INTRINSIC_PARAMS), x, y)

        assert_allclose(xu, x)
        assert_allclose(yu, y)

    def test_warns_when_not_converged(self, sensor_points, caplog):
        x, y = sensor_points
        model = LensDistortionModel.OPENCV_DIS
        k = MODEL_COEFFICIENTS[model]
        xd, yd = distort(model, k, x, y)[:2]

        with caplog.at_level(logging.WARNING, logger='camera_system.distortion'):
            undistort(model, k, xd, yd, max_iterations=1)

        assert "did not converge" in caplog.text
