"""
Camera model module for chained coordinate transforms.

Implements a pinhole camera with a pluggable lens distortion model and the
six elementary transforms between the image, sensor, camera and world
frames. Every transform has a value-only form and a ``_with_partials`` form
that also propagates derivatives.

Coordinate Frames:
    - Image frame: pixels, (x, y) with origin at the top-left corner
    - Sensor frame: normalized, distortion-free coordinates (X/Z, Y/Z)
    - Camera frame: 3D, camera looking along +Z
    - World frame: 3D, related to the camera frame by the extrinsics

Transform Chain:
    1. image -> sensor: remove intrinsics, invert distortion
    2. sensor -> cam:   intersect the viewing ray with the shape-function plane
    3. cam -> world:    w = R^T (c - t)
    4. world -> cam:    c = R w + t
    5. cam -> sensor:   perspective division
    6. sensor -> image: apply distortion and intrinsics

Partials:
    Derivative arrays have shape (P, N): one row per parameter, one column
    per point. sensor_to_cam_with_partials creates them with P = 3 (the
    shape-function parameters); every later stage carries them through by
    the chain rule.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional, Sequence, Tuple
import logging

import numpy as np

from .config import DistortionSettings
from .distortion import (
    IntrinsicParam,
    LensDistortionModel,
    NUM_INTRINSIC_PARAMS,
    distort,
    undistort,
)
from .transforms import euler_to_rotation_matrix, validate_rotation_matrix

logger = logging.getLogger(__name__)

__all__ = [
    'Camera',
    'CameraInfo',
    'IntrinsicParam',
    'LensDistortionModel',
    'NUM_INTRINSIC_PARAMS',
    'NUM_PROJECTION_PARAMS',
    'ProjectionParam',
]


class ProjectionParam(IntEnum):
    """Index of each shape-function parameter used by sensor_to_cam."""
    ZP = 0     # Depth at which the plane crosses the optical axis
    THETA = 1  # Azimuth of the plane normal (radians)
    PHI = 2    # Inclination of the plane normal from the optical axis (radians)


NUM_PROJECTION_PARAMS = len(ProjectionParam)


def _check_intrinsic_index(param: int) -> IntrinsicParam:
    index = int(param)
    if not 0 <= index < NUM_INTRINSIC_PARAMS:
        raise IndexError(
            f"Intrinsic index {index} out of range [0, {NUM_INTRINSIC_PARAMS})"
        )
    return IntrinsicParam(index)


@dataclass
class CameraInfo:
    """
    Mutable description of a camera, filled in while parsing.

    A Camera is built from a CameraInfo once every field is known. The
    rotation can be given either as Euler angles or as an explicit matrix,
    never both; it is the identity until one of them is set.

    Attributes:
        id: Camera identifier
        image_height: Image height in pixels
        image_width: Image width in pixels
        pixel_depth: Bits per pixel (0 when unknown)
        lens: Free-text lens description
        comments: Free-text comments
        lens_distortion_model: Distortion model bound to the camera
        intrinsics: Intrinsic parameter array indexed by IntrinsicParam
        tx, ty, tz: Extrinsic translation (world -> camera)
        rotation_matrix: Extrinsic 3x3 rotation (world -> camera)
    """
    id: str = ''
    image_height: int = 0
    image_width: int = 0
    pixel_depth: int = 0
    lens: str = ''
    comments: str = ''
    lens_distortion_model: LensDistortionModel = LensDistortionModel.NONE
    intrinsics: np.ndarray = field(default_factory=lambda: np.zeros(NUM_INTRINSIC_PARAMS))
    tx: float = 0.0
    ty: float = 0.0
    tz: float = 0.0
    rotation_matrix: np.ndarray = field(default_factory=lambda: np.eye(3))
    rotation_source: Optional[str] = field(default=None, repr=False)

    def get_intrinsic(self, param: int) -> float:
        return float(self.intrinsics[_check_intrinsic_index(param)])

    def set_intrinsic(self, param: int, value: float) -> None:
        """Set one intrinsic value, raising IndexError for an unknown index."""
        self.intrinsics[_check_intrinsic_index(param)] = float(value)

    def set_rotation_from_eulers(self, alpha: float, beta: float, gamma: float) -> None:
        """
        Derive the rotation matrix from Euler angles in degrees.

        Raises:
            ValueError: If the rotation was already given as a matrix
        """
        if self.rotation_source == 'matrix':
            raise ValueError(
                f"Camera '{self.id}': rotation given both as Euler angles and as a matrix"
            )
        self.rotation_matrix = euler_to_rotation_matrix(alpha, beta, gamma)
        self.rotation_source = 'eulers'

    def set_rotation_matrix(self, matrix: Sequence[Sequence[float]]) -> None:
        """
        Set the rotation matrix explicitly.

        Raises:
            ValueError: If the matrix is not 3x3 or the rotation was already
                given as Euler angles
        """
        if self.rotation_source == 'eulers':
            raise ValueError(
                f"Camera '{self.id}': rotation given both as Euler angles and as a matrix"
            )
        matrix = np.array(matrix, dtype=np.float64)
        if matrix.shape != (3, 3):
            raise ValueError(f"Rotation matrix must be 3x3, got shape {matrix.shape}")
        self.rotation_matrix = matrix
        self.rotation_source = 'matrix'

    def validate(self) -> None:
        """Check that the description can be turned into a Camera."""
        if self.image_height <= 0 or self.image_width <= 0:
            raise ValueError(
                f"Camera '{self.id}': image size must be positive, "
                f"got {self.image_height} x {self.image_width}"
            )
        if self.intrinsics.shape != (NUM_INTRINSIC_PARAMS,):
            raise ValueError(
                f"Camera '{self.id}': expected {NUM_INTRINSIC_PARAMS} intrinsics, "
                f"got shape {self.intrinsics.shape}"
            )
        if self.intrinsics[IntrinsicParam.FX] <= 0 or self.intrinsics[IntrinsicParam.FY] <= 0:
            raise ValueError(
                f"Camera '{self.id}': FX and FY must be positive, got "
                f"{self.intrinsics[IntrinsicParam.FX]}, {self.intrinsics[IntrinsicParam.FY]}"
            )
        if np.shape(self.rotation_matrix) != (3, 3):
            raise ValueError(f"Camera '{self.id}': rotation matrix must be 3x3")
        if self.pixel_depth < 0:
            raise ValueError(f"Camera '{self.id}': pixel depth must not be negative")


def _readonly(array: np.ndarray) -> np.ndarray:
    array = np.array(array, dtype=np.float64)
    array.setflags(write=False)
    return array


def _as_batch(*arrays) -> Tuple[np.ndarray, ...]:
    """Convert coordinate vectors to float arrays, checking equal 1-D length."""
    converted = tuple(np.asarray(a, dtype=np.float64) for a in arrays)
    shape = converted[0].shape
    for a in converted:
        if a.ndim != 1:
            raise ValueError(f"Coordinate vectors must be 1-D, got shape {a.shape}")
        if a.shape != shape:
            raise ValueError(
                f"Coordinate vectors must have equal length, got "
                f"{[len(c) for c in converted]}"
            )
    return converted


def _as_partials(n_points: int, *arrays) -> Tuple[np.ndarray, ...]:
    """Convert partial arrays, checking they share one (P, N) shape."""
    converted = tuple(np.asarray(a, dtype=np.float64) for a in arrays)
    shape = converted[0].shape
    for a in converted:
        if a.ndim != 2 or a.shape[1] != n_points or a.shape != shape:
            raise ValueError(
                f"Partials must all have shape (P, {n_points}), got "
                f"{[c.shape for c in converted]}"
            )
    return converted


class Camera:
    """
    Immutable optical model of one camera.

    Holds intrinsics, lens distortion model and extrinsics, and implements
    the transforms between image, sensor, camera and world coordinates.

    Sensor to image mapping:
        x = FX * xd + FS * yd + CX
        y = FY * yd + CY
    where (xd, yd) are the distorted sensor coordinates.
    """

    def __init__(self, info: CameraInfo, distortion: Optional[DistortionSettings] = None):
        """
        Build a camera from a validated description.

        Args:
            info: Camera description (copied, later edits have no effect)
            distortion: Settings for the inverse distortion solver
        """
        info.validate()
        distortion = distortion or DistortionSettings()

        self._id = info.id
        self._image_height = int(info.image_height)
        self._image_width = int(info.image_width)
        self._pixel_depth = int(info.pixel_depth)
        self._lens = info.lens
        self._comments = info.comments
        self._model = info.lens_distortion_model
        self._intrinsics = _readonly(info.intrinsics)
        self._translation = _readonly([info.tx, info.ty, info.tz])
        self._rotation = _readonly(info.rotation_matrix)
        self._max_iterations = distortion.inverse_max_iterations
        self._tolerance = distortion.inverse_tolerance

        if not validate_rotation_matrix(self._rotation):
            logger.warning(f"Camera '{self._id}': rotation matrix is not a proper rotation")

        logger.debug(
            f"Camera '{self._id}' initialized: {self._image_width}x{self._image_height}, "
            f"model {self._model.value}"
        )
        logger.debug(
            f"Camera '{self._id}' fx={self.intrinsic(IntrinsicParam.FX)}, "
            f"fy={self.intrinsic(IntrinsicParam.FY)}, t={self._translation.tolist()}"
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self._id

    @property
    def image_height(self) -> int:
        return self._image_height

    @property
    def image_width(self) -> int:
        return self._image_width

    @property
    def pixel_depth(self) -> int:
        return self._pixel_depth

    @property
    def lens(self) -> str:
        return self._lens

    @property
    def comments(self) -> str:
        return self._comments

    @property
    def lens_distortion_model(self) -> LensDistortionModel:
        return self._model

    @property
    def intrinsics(self) -> np.ndarray:
        """Read-only intrinsic array indexed by IntrinsicParam."""
        return self._intrinsics

    def intrinsic(self, param: int) -> float:
        return float(self._intrinsics[_check_intrinsic_index(param)])

    @property
    def tx(self) -> float:
        return float(self._translation[0])

    @property
    def ty(self) -> float:
        return float(self._translation[1])

    @property
    def tz(self) -> float:
        return float(self._translation[2])

    @property
    def translation(self) -> np.ndarray:
        return self._translation

    @property
    def rotation_matrix(self) -> np.ndarray:
        """Read-only world -> camera rotation."""
        return self._rotation

    def to_info(self) -> CameraInfo:
        """Return an editable description from which an equal camera can be rebuilt."""
        info = CameraInfo(
            id=self._id,
            image_height=self._image_height,
            image_width=self._image_width,
            pixel_depth=self._pixel_depth,
            lens=self._lens,
            comments=self._comments,
            lens_distortion_model=self._model,
            intrinsics=self._intrinsics.copy(),
            tx=self.tx,
            ty=self.ty,
            tz=self.tz,
        )
        info.set_rotation_matrix(self._rotation)
        return info

    def __repr__(self) -> str:
        return (
            f"Camera(id={self._id!r}, size={self._image_width}x{self._image_height}, "
            f"model={self._model.value})"
        )

    # ------------------------------------------------------------------
    # image <-> sensor
    # ------------------------------------------------------------------

    def _remove_intrinsics(self, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        ip = IntrinsicParam
        k = self._intrinsics
        yd = (y - k[ip.CY]) / k[ip.FY]
        xd = (x - k[ip.CX] - k[ip.FS] * yd) / k[ip.FX]
        return xd, yd

    def image_to_sensor(self, image_x: np.ndarray, image_y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Map image pixels to undistorted sensor coordinates.

        Args:
            image_x: Image x coordinates, shape (N,)
            image_y: Image y coordinates, shape (N,)

        Returns:
            Sensor (x, y) coordinates
        """
        image_x, image_y = _as_batch(image_x, image_y)
        xd, yd = self._remove_intrinsics(image_x, image_y)
        return undistort(self._model, self._intrinsics, xd, yd,
                         self._max_iterations, self._tolerance)

    def image_to_sensor_with_partials(
        self,
        image_x: np.ndarray,
        image_y: np.ndarray,
        image_dx: np.ndarray,
        image_dy: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Map image pixels to sensor coordinates, carrying partials.

        The distortion is inverted through its Jacobian at the solution.

        Returns:
            Tuple (sensor_x, sensor_y, sensor_dx, sensor_dy)
        """
        image_x, image_y = _as_batch(image_x, image_y)
        image_dx, image_dy = _as_partials(image_x.size, image_dx, image_dy)
        ip = IntrinsicParam
        k = self._intrinsics

        sensor_x, sensor_y = self.image_to_sensor(image_x, image_y)

        dyd = image_dy / k[ip.FY]
        dxd = (image_dx - k[ip.FS] * dyd) / k[ip.FX]

        _, _, j00, j01, j10, j11 = distort(self._model, self._intrinsics, sensor_x, sensor_y)
        det = j00 * j11 - j01 * j10
        sensor_dx = (j11 * dxd - j01 * dyd) / det
        sensor_dy = (-j10 * dxd + j00 * dyd) / det
        return sensor_x, sensor_y, sensor_dx, sensor_dy

    def sensor_to_image(self, sensor_x: np.ndarray, sensor_y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Map undistorted sensor coordinates to image pixels.

        Args:
            sensor_x: Sensor x coordinates, shape (N,)
            sensor_y: Sensor y coordinates, shape (N,)

        Returns:
            Image (x, y) coordinates
        """
        sensor_x, sensor_y = _as_batch(sensor_x, sensor_y)
        ip = IntrinsicParam
        k = self._intrinsics
        xd, yd, _, _, _, _ = distort(self._model, k, sensor_x, sensor_y)
        return k[ip.FX] * xd + k[ip.FS] * yd + k[ip.CX], k[ip.FY] * yd + k[ip.CY]

    def sensor_to_image_with_partials(
        self,
        sensor_x: np.ndarray,
        sensor_y: np.ndarray,
        sensor_dx: np.ndarray,
        sensor_dy: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Map sensor coordinates to image pixels, carrying partials.

        Returns:
            Tuple (image_x, image_y, image_dx, image_dy)
        """
        sensor_x, sensor_y = _as_batch(sensor_x, sensor_y)
        sensor_dx, sensor_dy = _as_partials(sensor_x.size, sensor_dx, sensor_dy)
        ip = IntrinsicParam
        k = self._intrinsics

        xd, yd, j00, j01, j10, j11 = distort(self._model, k, sensor_x, sensor_y)
        dxd = j00 * sensor_dx + j01 * sensor_dy
        dyd = j10 * sensor_dx + j11 * sensor_dy

        image_x = k[ip.FX] * xd + k[ip.FS] * yd + k[ip.CX]
        image_y = k[ip.FY] * yd + k[ip.CY]
        image_dx = k[ip.FX] * dxd + k[ip.FS] * dyd
        image_dy = k[ip.FY] * dyd
        return image_x, image_y, image_dx, image_dy

    # ------------------------------------------------------------------
    # sensor <-> cam
    # ------------------------------------------------------------------

    @staticmethod
    def _check_projection_params(params: Sequence[float]) -> np.ndarray:
        params = np.asarray(params, dtype=np.float64).ravel()
        if params.size != NUM_PROJECTION_PARAMS:
            raise ValueError(
                f"Expected {NUM_PROJECTION_PARAMS} shape-function parameters, got {params.size}"
            )
        return params

    def sensor_to_cam(
        self,
        sensor_x: np.ndarray,
        sensor_y: np.ndarray,
        params: Sequence[float],
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Lift sensor coordinates onto the shape-function plane.

        The plane passes through (0, 0, ZP) with normal
        (sin(PHI) cos(THETA), sin(PHI) sin(THETA), cos(PHI)). The viewing ray
        through (sx, sy, 1) meets it at scale
        s = ZP * nz / (nx * sx + ny * sy + nz).

        Args:
            sensor_x: Sensor x coordinates, shape (N,)
            sensor_y: Sensor y coordinates, shape (N,)
            params: [ZP, THETA, PHI]

        Returns:
            Camera frame (x, y, z) coordinates
        """
        cam_x, cam_y, cam_z, _, _, _ = self._sensor_to_cam(sensor_x, sensor_y, params, False)
        return cam_x, cam_y, cam_z

    def sensor_to_cam_with_partials(
        self,
        sensor_x: np.ndarray,
        sensor_y: np.ndarray,
        params: Sequence[float],
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Lift sensor coordinates onto the shape-function plane and
        differentiate with respect to [ZP, THETA, PHI].

        Returns:
            Tuple (cam_x, cam_y, cam_z, cam_dx, cam_dy, cam_dz), partials of
            shape (3, N)
        """
        return self._sensor_to_cam(sensor_x, sensor_y, params, True)

    def _sensor_to_cam(self, sensor_x, sensor_y, params, partials: bool):
        sensor_x, sensor_y = _as_batch(sensor_x, sensor_y)
        params = self._check_projection_params(params)
        zp = params[ProjectionParam.ZP]
        theta = params[ProjectionParam.THETA]
        phi = params[ProjectionParam.PHI]

        nx = np.sin(phi) * np.cos(theta)
        ny = np.sin(phi) * np.sin(theta)
        nz = np.cos(phi)
        denom = nx * sensor_x + ny * sensor_y + nz
        if np.any(denom == 0.0):
            raise ValueError("Viewing ray is parallel to the shape-function plane")

        scale = zp * nz / denom
        cam_x = scale * sensor_x
        cam_y = scale * sensor_y
        cam_z = scale
        if not partials:
            return cam_x, cam_y, cam_z, None, None, None

        d_scale = np.empty((NUM_PROJECTION_PARAMS, sensor_x.size))
        d_scale[ProjectionParam.ZP] = nz / denom

        d_denom_theta = -np.sin(phi) * np.sin(theta) * sensor_x + np.sin(phi) * np.cos(theta) * sensor_y
        d_scale[ProjectionParam.THETA] = -zp * nz * d_denom_theta / (denom * denom)

        d_nz_phi = -np.sin(phi)
        d_denom_phi = (np.cos(phi) * np.cos(theta) * sensor_x
                       + np.cos(phi) * np.sin(theta) * sensor_y + d_nz_phi)
        d_scale[ProjectionParam.PHI] = zp * (d_nz_phi * denom - nz * d_denom_phi) / (denom * denom)

        return cam_x, cam_y, cam_z, d_scale * sensor_x, d_scale * sensor_y, d_scale

    def cam_to_sensor(
        self,
        cam_x: np.ndarray,
        cam_y: np.ndarray,
        cam_z: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Project camera frame points onto the sensor (perspective division)."""
        cam_x, cam_y, cam_z = _as_batch(cam_x, cam_y, cam_z)
        self._log_behind_camera(cam_z)
        return cam_x / cam_z, cam_y / cam_z

    def cam_to_sensor_with_partials(
        self,
        cam_x: np.ndarray,
        cam_y: np.ndarray,
        cam_z: np.ndarray,
        cam_dx: np.ndarray,
        cam_dy: np.ndarray,
        cam_dz: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Perspective division, carrying partials.

        Returns:
            Tuple (sensor_x, sensor_y, sensor_dx, sensor_dy)
        """
        cam_x, cam_y, cam_z = _as_batch(cam_x, cam_y, cam_z)
        cam_dx, cam_dy, cam_dz = _as_partials(cam_x.size, cam_dx, cam_dy, cam_dz)
        self._log_behind_camera(cam_z)

        z2 = cam_z * cam_z
        sensor_dx = (cam_dx * cam_z - cam_x * cam_dz) / z2
        sensor_dy = (cam_dy * cam_z - cam_y * cam_dz) / z2
        return cam_x / cam_z, cam_y / cam_z, sensor_dx, sensor_dy

    def _log_behind_camera(self, cam_z: np.ndarray) -> None:
        behind = int(np.count_nonzero(cam_z <= 0))
        if behind:
            logger.debug(f"Camera '{self._id}': {behind} point(s) at or behind the camera")

    # ------------------------------------------------------------------
    # cam <-> world
    # ------------------------------------------------------------------

    def cam_to_world(
        self,
        cam_x: np.ndarray,
        cam_y: np.ndarray,
        cam_z: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Transform camera frame points to world coordinates: w = R^T (c - t)."""
        cam = np.stack(_as_batch(cam_x, cam_y, cam_z))
        world = self._rotation.T @ (cam - self._translation[:, np.newaxis])
        return world[0], world[1], world[2]

    def cam_to_world_with_partials(
        self,
        cam_x: np.ndarray,
        cam_y: np.ndarray,
        cam_z: np.ndarray,
        cam_dx: np.ndarray,
        cam_dy: np.ndarray,
        cam_dz: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Camera to world transform, carrying partials.

        Returns:
            Tuple (world_x, world_y, world_z, world_dx, world_dy, world_dz)
        """
        world_x, world_y, world_z = self.cam_to_world(cam_x, cam_y, cam_z)
        d_cam = np.stack(_as_partials(world_x.size, cam_dx, cam_dy, cam_dz))  # (3, P, N)
        d_world = np.einsum('ji,jpn->ipn', self._rotation, d_cam)
        return world_x, world_y, world_z, d_world[0], d_world[1], d_world[2]

    def world_to_cam(
        self,
        world_x: np.ndarray,
        world_y: np.ndarray,
        world_z: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Transform world points to the camera frame: c = R w + t."""
        world = np.stack(_as_batch(world_x, world_y, world_z))
        cam = self._rotation @ world + self._translation[:, np.newaxis]
        return cam[0], cam[1], cam[2]

    def world_to_cam_with_partials(
        self,
        world_x: np.ndarray,
        world_y: np.ndarray,
        world_z: np.ndarray,
        world_dx: np.ndarray,
        world_dy: np.ndarray,
        world_dz: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        World to camera transform, carrying partials.

        Returns:
            Tuple (cam_x, cam_y, cam_z, cam_dx, cam_dy, cam_dz)
        """
        cam_x, cam_y, cam_z = self.world_to_cam(world_x, world_y, world_z)
        d_world = np.stack(_as_partials(cam_x.size, world_dx, world_dy, world_dz))
        d_cam = np.einsum('ij,jpn->ipn', self._rotation, d_world)
        return cam_x, cam_y, cam_z, d_cam[0], d_cam[1], d_cam[2]
