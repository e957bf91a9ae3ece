"""
Rigid-body and rotation transforms.

Rigid-body motion:
    Six parameters [angle_x, angle_y, angle_z, tx, ty, tz] (radians, world
    units) move world points as

        target = R @ source + t,   R = Rz(angle_z) @ Ry(angle_y) @ Rx(angle_x)

    The rotation coefficients are recomputed from the parameters on every
    call and returned as a value, so concurrent projections never share
    scratch state.

Camera extrinsic rotations:
    Euler angles ALPHA, BETA, GAMMA (degrees, Cardan-Bryant) give the
    world-to-camera matrix used by the calibration file dialects.

Rotation Conventions:
    - All rotations use right-hand rule
    - Angles for the rigid-body transform are in radians
    - Angles in calibration files are in degrees
"""

from enum import IntEnum
from typing import NamedTuple, Optional, Sequence, Tuple
import logging

import numpy as np

logger = logging.getLogger(__name__)


class RigidBodyParam(IntEnum):
    """Index of each rigid-body motion parameter."""
    ANGLE_X = 0
    ANGLE_Y = 1
    ANGLE_Z = 2
    TRANSLATION_X = 3
    TRANSLATION_Y = 4
    TRANSLATION_Z = 5


NUM_RIGID_BODY_PARAMS = len(RigidBodyParam)


class RigidBodyCoefficients(NamedTuple):
    """
    Coefficients of a rigid-body transform.

    Attributes:
        rotation: 3x3 rotation matrix
        translation: Translation vector, shape (3,)
        rotation_partials: Partials of the rotation matrix with respect to
            angle_x, angle_y and angle_z, shape (3, 3, 3), or None
    """
    rotation: np.ndarray
    translation: np.ndarray
    rotation_partials: Optional[np.ndarray] = None


def _check_params(params: Sequence[float]) -> np.ndarray:
    params = np.asarray(params, dtype=np.float64).ravel()
    if params.size != NUM_RIGID_BODY_PARAMS:
        raise ValueError(
            f"Rigid body transform needs {NUM_RIGID_BODY_PARAMS} parameters, got {params.size}"
        )
    return params


def rigid_body_coefficients(
    params: Sequence[float],
    partials: bool = False,
) -> RigidBodyCoefficients:
    """
    Compute the rotation and translation for a set of rigid-body parameters.

    Args:
        params: [angle_x, angle_y, angle_z, tx, ty, tz]
        partials: Also compute the partials of the rotation entries

    Returns:
        RigidBodyCoefficients for these parameters
    """
    params = _check_params(params)
    rb = RigidBodyParam

    cx = np.cos(params[rb.ANGLE_X])
    cy = np.cos(params[rb.ANGLE_Y])
    cz = np.cos(params[rb.ANGLE_Z])
    sx = np.sin(params[rb.ANGLE_X])
    sy = np.sin(params[rb.ANGLE_Y])
    sz = np.sin(params[rb.ANGLE_Z])

    rotation = np.array([
        [cy * cz, sx * sy * cz - cx * sz, cx * sy * cz + sx * sz],
        [cy * sz, sx * sy * sz + cx * cz, cx * sy * sz - sx * cz],
        [-sy, sx * cy, cx * cy],
    ])
    translation = params[[rb.TRANSLATION_X, rb.TRANSLATION_Y, rb.TRANSLATION_Z]].copy()

    if not partials:
        return RigidBodyCoefficients(rotation, translation)

    d_angle_x = np.array([
        [0.0, cx * sy * cz + sx * sz, -sx * sy * cz + cx * sz],
        [0.0, cx * sy * sz - sx * cz, -sx * sy * sz - cx * cz],
        [0.0, cx * cy, -sx * cy],
    ])
    d_angle_y = np.array([
        [-sy * cz, sx * cy * cz, cx * cy * cz],
        [-sy * sz, sx * cy * sz, cx * cy * sz],
        [-cy, -sx * sy, -cx * sy],
    ])
    d_angle_z = np.array([
        [-cy * sz, -sx * sy * sz - cx * cz, -cx * sy * sz + sx * cz],
        [cy * cz, sx * sy * cz - cx * sz, cx * sy * cz + sx * sz],
        [0.0, 0.0, 0.0],
    ])

    return RigidBodyCoefficients(
        rotation, translation, np.stack([d_angle_x, d_angle_y, d_angle_z])
    )


def _check_points(
    source_x: np.ndarray,
    source_y: np.ndarray,
    source_z: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    source_x = np.asarray(source_x, dtype=np.float64)
    source_y = np.asarray(source_y, dtype=np.float64)
    source_z = np.asarray(source_z, dtype=np.float64)
    if source_x.ndim != 1 or source_x.size == 0:
        raise ValueError("Rigid body transform needs a non-empty 1-D point batch")
    if source_y.shape != source_x.shape or source_z.shape != source_x.shape:
        raise ValueError(
            f"Coordinate vectors must have equal length, got "
            f"{source_x.size}, {source_y.size}, {source_z.size}"
        )
    return source_x, source_y, source_z


def rot_trans_3d(
    source_x: np.ndarray,
    source_y: np.ndarray,
    source_z: np.ndarray,
    params: Sequence[float],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Apply a rigid-body transform to a batch of 3D points.

    Args:
        source_x, source_y, source_z: Point coordinates, shape (N,) each
        params: [angle_x, angle_y, angle_z, tx, ty, tz]

    Returns:
        Transformed (x, y, z) coordinates
    """
    source_x, source_y, source_z = _check_points(source_x, source_y, source_z)
    coeffs = rigid_body_coefficients(params)
    R, t = coeffs.rotation, coeffs.translation

    target_x = R[0, 0] * source_x + R[0, 1] * source_y + R[0, 2] * source_z + t[0]
    target_y = R[1, 0] * source_x + R[1, 1] * source_y + R[1, 2] * source_z + t[1]
    target_z = R[2, 0] * source_x + R[2, 1] * source_y + R[2, 2] * source_z + t[2]
    return target_x, target_y, target_z


def rot_trans_3d_with_partials(
    source_x: np.ndarray,
    source_y: np.ndarray,
    source_z: np.ndarray,
    params: Sequence[float],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Apply a rigid-body transform and differentiate it with respect to its
    six parameters.

    Only the rigid-body parameters are differentiated: the source points are
    treated as constants, so any upstream partials of the source points are
    not carried through.

    Args:
        source_x, source_y, source_z: Point coordinates, shape (N,) each
        params: [angle_x, angle_y, angle_z, tx, ty, tz]

    Returns:
        Tuple (x, y, z, dx, dy, dz) where the partial arrays have shape
        (6, N), row i holding the derivative with respect to params[i]
    """
    source_x, source_y, source_z = _check_points(source_x, source_y, source_z)
    coeffs = rigid_body_coefficients(params, partials=True)
    R, t, dR = coeffs.rotation, coeffs.translation, coeffs.rotation_partials

    source = np.stack([source_x, source_y, source_z])  # (3, N)
    target = R @ source + t[:, np.newaxis]

    n_points = source_x.size
    partials = np.zeros((3, NUM_RIGID_BODY_PARAMS, n_points))  # (axis, param, point)
    for j in range(3):
        partials[:, j, :] = dR[j] @ source
    partials[0, RigidBodyParam.TRANSLATION_X, :] = 1.0
    partials[1, RigidBodyParam.TRANSLATION_Y, :] = 1.0
    partials[2, RigidBodyParam.TRANSLATION_Z, :] = 1.0

    return target[0], target[1], target[2], partials[0], partials[1], partials[2]


def euler_to_rotation_matrix(alpha: float, beta: float, gamma: float) -> np.ndarray:
    """
    Compute a camera's world-to-camera rotation matrix from Euler angles.

    Args:
        alpha: Rotation about X in degrees
        beta: Rotation about Y in degrees
        gamma: Rotation about Z in degrees

    Returns:
        3x3 rotation matrix
    """
    a, b, g = np.deg2rad([alpha, beta, gamma])
    ca, sa = np.cos(a), np.sin(a)
    cb, sb = np.cos(b), np.sin(b)
    cg, sg = np.cos(g), np.sin(g)

    return np.array([
        [cb * cg, ca * sg + sa * sb * cg, sa * sg - ca * sb * cg],
        [-cb * sg, ca * cg - sa * sb * sg, sa * cg + ca * sb * sg],
        [sb, -sa * cb, ca * cb],
    ])


def validate_rotation_matrix(R: np.ndarray, tol: float = 1e-6) -> bool:
    """
    Validate that a matrix is a proper rotation matrix.

    A proper rotation matrix must:
        1. Be orthogonal: R @ R.T = I
        2. Have determinant = +1 (not a reflection)

    Args:
        R: 3x3 matrix to validate
        tol: Numerical tolerance

    Returns:
        True if R is a valid rotation matrix
    """
    R = np.asarray(R)
    if R.shape != (3, 3):
        return False

    if not np.allclose(R @ R.T, np.eye(3), atol=tol):
        return False

    return bool(np.isclose(np.linalg.det(R), 1.0, atol=tol))
