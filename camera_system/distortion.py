"""
Lens distortion models.

Each model maps undistorted sensor coordinates (x, y), i.e. the normalized
coordinates X/Z, Y/Z of a point in the camera frame, to distorted
coordinates (xd, yd). The forward map also returns its 2x2 Jacobian so that
partial derivatives can be chained through the sensor -> image step.

Supported models:
    NONE            xd = x, yd = y
    K1R1_K2R2_K3R3  radial factor 1 + K1*r + K2*r^2 + K3*r^3
    K1R2_K2R4_K3R6  radial factor 1 + K1*r^2 + K2*r^4 + K3*r^6
    K1R3_K2R5_K3R7  radial factor 1 + K1*r^3 + K2*r^5 + K3*r^7
    OPENCV_DIS      rational radial (K1..K6), tangential (P1, P2),
                    thin prism (S1..S4)
    VIC3D_DIS       radial K1, K2, K3 on r^2, r^4, r^6 plus tangential P1, P2

The Scheimpflug terms T1 and T2 are carried in the intrinsic array but are
not applied by OPENCV_DIS.
"""

from enum import Enum, IntEnum
from typing import Tuple
import logging

import numpy as np

logger = logging.getLogger(__name__)


class IntrinsicParam(IntEnum):
    """Index of each entry in the fixed-size intrinsic parameter array."""
    CX = 0   # Image center x (pixels)
    CY = 1   # Image center y (pixels)
    FX = 2   # Pinhole distance x (pixels)
    FY = 3   # Pinhole distance y (pixels)
    FS = 4   # Skew
    K1 = 5
    K2 = 6
    K3 = 7
    K4 = 8
    K5 = 9
    K6 = 10
    P1 = 11  # Tangential
    P2 = 12
    S1 = 13  # Thin prism
    S2 = 14
    S3 = 15
    S4 = 16
    T1 = 17  # Scheimpflug
    T2 = 18


NUM_INTRINSIC_PARAMS = len(IntrinsicParam)


class LensDistortionModel(Enum):
    """Closed set of lens distortion models."""
    NONE = "NONE"
    OPENCV_DIS = "OPENCV_DIS"
    VIC3D_DIS = "VIC3D_DIS"
    K1R1_K2R2_K3R3 = "K1R1_K2R2_K3R3"
    K1R2_K2R4_K3R6 = "K1R2_K2R4_K3R6"
    K1R3_K2R5_K3R7 = "K1R3_K2R5_K3R7"

    @classmethod
    def from_string(cls, text: str) -> "LensDistortionModel":
        """Decode a model name, raising ValueError if it is not recognized."""
        try:
            return cls(text.strip())
        except ValueError:
            valid = ', '.join(m.value for m in cls)
            raise ValueError(f"Unrecognized lens distortion model '{text}' (valid: {valid})") from None


# Radial exponents for the polynomial families
_RADIAL_POWERS = {
    LensDistortionModel.K1R1_K2R2_K3R3: (1, 2, 3),
    LensDistortionModel.K1R2_K2R4_K3R6: (2, 4, 6),
    LensDistortionModel.K1R3_K2R5_K3R7: (3, 5, 7),
}

# (xd, yd, dxd/dx, dxd/dy, dyd/dx, dyd/dy)
DistortionResult = Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]


def _safe_ratio(num: np.ndarray, den: np.ndarray) -> np.ndarray:
    """num / den with 0 wherever den is 0."""
    return np.divide(num, den, out=np.zeros_like(num), where=den > 0)


def _radial_polynomial(
    intrinsics: np.ndarray,
    x: np.ndarray,
    y: np.ndarray,
    powers: Tuple[int, int, int],
) -> DistortionResult:
    k = intrinsics[[IntrinsicParam.K1, IntrinsicParam.K2, IntrinsicParam.K3]]
    r = np.sqrt(x * x + y * y)

    factor = np.ones_like(r)
    dfactor_dr = np.zeros_like(r)
    for coeff, power in zip(k, powers):
        factor += coeff * r ** power
        dfactor_dr += coeff * power * r ** (power - 1)

    # d(factor)/dx = dfactor_dr * x / r; the x*x/r style terms vanish at r = 0
    xx_r = _safe_ratio(x * x, r)
    xy_r = _safe_ratio(x * y, r)
    yy_r = _safe_ratio(y * y, r)

    return (
        x * factor,
        y * factor,
        factor + dfactor_dr * xx_r,
        dfactor_dr * xy_r,
        dfactor_dr * xy_r,
        factor + dfactor_dr * yy_r,
    )


def _brown_conrady(
    x: np.ndarray,
    y: np.ndarray,
    k: Tuple[float, ...],
    p: Tuple[float, float],
    s: Tuple[float, float, float, float],
) -> DistortionResult:
    """
    OpenCV style model.

        r2 = x^2 + y^2
        R  = (1 + k1*r2 + k2*r2^2 + k3*r2^3) / (1 + k4*r2 + k5*r2^2 + k6*r2^3)
        xd = x*R + 2*p1*x*y + p2*(r2 + 2*x^2) + s1*r2 + s2*r2^2
        yd = y*R + p1*(r2 + 2*y^2) + 2*p2*x*y + s3*r2 + s4*r2^2
    """
    k1, k2, k3, k4, k5, k6 = k
    p1, p2 = p
    s1, s2, s3, s4 = s

    r2 = x * x + y * y
    r4 = r2 * r2
    r6 = r4 * r2

    num = 1.0 + k1 * r2 + k2 * r4 + k3 * r6
    den = 1.0 + k4 * r2 + k5 * r4 + k6 * r6
    radial = num / den
    dnum = k1 + 2.0 * k2 * r2 + 3.0 * k3 * r4
    dden = k4 + 2.0 * k5 * r2 + 3.0 * k6 * r4
    dradial_dr2 = (dnum * den - num * dden) / (den * den)

    xd = x * radial + 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x * x) + s1 * r2 + s2 * r4
    yd = y * radial + p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * x * y + s3 * r2 + s4 * r4

    # dr2/dx = 2x, dr2/dy = 2y
    dxd_dx = (radial + 2.0 * x * x * dradial_dr2 + 2.0 * p1 * y + 6.0 * p2 * x
              + 2.0 * s1 * x + 4.0 * s2 * r2 * x)
    dxd_dy = (2.0 * x * y * dradial_dr2 + 2.0 * p1 * x + 2.0 * p2 * y
              + 2.0 * s1 * y + 4.0 * s2 * r2 * y)
    dyd_dx = (2.0 * x * y * dradial_dr2 + 2.0 * p1 * x + 2.0 * p2 * y
              + 2.0 * s3 * x + 4.0 * s4 * r2 * x)
    dyd_dy = (radial + 2.0 * y * y * dradial_dr2 + 6.0 * p1 * y + 2.0 * p2 * x
              + 2.0 * s3 * y + 4.0 * s4 * r2 * y)

    return xd, yd, dxd_dx, dxd_dy, dyd_dx, dyd_dy


def distort(
    model: LensDistortionModel,
    intrinsics: np.ndarray,
    x: np.ndarray,
    y: np.ndarray,
) -> DistortionResult:
    """
    Apply a lens distortion model to undistorted sensor coordinates.

    Args:
        model: Distortion model bound to the camera
        intrinsics: Intrinsic parameter array indexed by IntrinsicParam
        x: Undistorted sensor x coordinates, shape (N,)
        y: Undistorted sensor y coordinates, shape (N,)

    Returns:
        Tuple (xd, yd, dxd_dx, dxd_dy, dyd_dx, dyd_dy), each of shape (N,)
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)

    if model is LensDistortionModel.NONE:
        ones = np.ones_like(x)
        zeros = np.zeros_like(x)
        return x.copy(), y.copy(), ones, zeros, zeros.copy(), ones.copy()

    if model in _RADIAL_POWERS:
        return _radial_polynomial(intrinsics, x, y, _RADIAL_POWERS[model])

    ip = IntrinsicParam
    if model is LensDistortionModel.OPENCV_DIS:
        return _brown_conrady(
            x, y,
            k=tuple(intrinsics[[ip.K1, ip.K2, ip.K3, ip.K4, ip.K5, ip.K6]]),
            p=tuple(intrinsics[[ip.P1, ip.P2]]),
            s=tuple(intrinsics[[ip.S1, ip.S2, ip.S3, ip.S4]]),
        )

    if model is LensDistortionModel.VIC3D_DIS:
        return _brown_conrady(
            x, y,
            k=(intrinsics[ip.K1], intrinsics[ip.K2], intrinsics[ip.K3], 0.0, 0.0, 0.0),
            p=tuple(intrinsics[[ip.P1, ip.P2]]),
            s=(0.0, 0.0, 0.0, 0.0),
        )

    raise ValueError(f"Unsupported lens distortion model: {model}")


def undistort(
    model: LensDistortionModel,
    intrinsics: np.ndarray,
    xd: np.ndarray,
    yd: np.ndarray,
    max_iterations: int = 20,
    tolerance: float = 1e-12,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Remove lens distortion (inverse of distort).

    Uses Newton iterations on the forward model, starting from the distorted
    coordinates themselves.

    Args:
        model: Distortion model bound to the camera
        intrinsics: Intrinsic parameter array indexed by IntrinsicParam
        xd: Distorted sensor x coordinates, shape (N,)
        yd: Distorted sensor y coordinates, shape (N,)
        max_iterations: Maximum number of Newton steps
        tolerance: Convergence tolerance on the forward residual

    Returns:
        Undistorted (x, y) sensor coordinates
    """
    xd = np.asarray(xd, dtype=np.float64)
    yd = np.asarray(yd, dtype=np.float64)

    if model is LensDistortionModel.NONE:
        return xd.copy(), yd.copy()

    x = xd.copy()
    y = yd.copy()
    residual = np.inf
    for _ in range(max_iterations):
        fx, fy, j00, j01, j10, j11 = distort(model, intrinsics, x, y)
        ex = fx - xd
        ey = fy - yd
        residual = np.max(np.abs(np.concatenate([ex, ey]))) if x.size else 0.0
        if residual < tolerance:
            break

        det = j00 * j11 - j01 * j10
        x = x - (j11 * ex - j01 * ey) / det
        y = y - (-j10 * ex + j00 * ey) / det
    else:
        logger.warning(
            f"Inverse distortion ({model.value}) did not converge after "
            f"{max_iterations} iterations, max residual {residual:.3e}"
        )

    return x, y
