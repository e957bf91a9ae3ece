"""
Camera system module.

A CameraSystem owns an ordered set of cameras read from a calibration file,
the system type, and two optional user transforms. Its main operation is
cross-camera projection:

    source image -> source sensor -> source camera -> world
        [-> world' by a rigid-body transform]
        -> target camera -> target sensor -> target image

Partials of the target image coordinates are available with respect to the
three shape-function parameters or, when rigid-body parameters are given,
with respect to the six rigid-body parameters. In the rigid-body case the
shape-function parameters are held fixed and not differentiated.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union
import logging

import numpy as np

from . import calibration_writer
from .calibration_parser import CalibrationData, SystemType, read_calibration_file
from .camera import NUM_PROJECTION_PARAMS, Camera
from .config import SystemConfig
from .distortion import IntrinsicParam
from .transforms import NUM_RIGID_BODY_PARAMS, rot_trans_3d, rot_trans_3d_with_partials

logger = logging.getLogger(__name__)

__all__ = ['CameraSystem', 'ProjectionResult', 'SystemType']


@dataclass
class ProjectionResult:
    """
    Result of a camera to camera projection.

    Attributes:
        x: Target image x coordinates, shape (N,)
        y: Target image y coordinates, shape (N,)
        dx: Partials of x, shape (3, N) or (6, N), None without partials
        dy: Partials of y, same shape as dx
    """
    x: np.ndarray
    y: np.ndarray
    dx: Optional[np.ndarray] = None
    dy: Optional[np.ndarray] = None


def _readonly(array, shape: Tuple[int, ...], name: str) -> np.ndarray:
    array = np.array(array, dtype=np.float64)
    if array.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {array.shape}")
    array.setflags(write=False)
    return array


class CameraSystem:
    """
    Ordered collection of calibrated cameras.

    Example usage:
        system = CameraSystem.from_file("cal.xml")
        result = system.camera_to_camera_projection(
            0, 1, img_x, img_y, params=[zp, theta, phi], with_partials=True
        )
        system.write_calibration_file("cal_out.xml")
    """

    def __init__(
        self,
        cameras: Sequence[Camera] = (),
        system_type: SystemType = SystemType.UNKNOWN_SYSTEM,
        user_6_transform: Optional[Sequence[float]] = None,
        user_4x4_transform: Optional[Sequence[Sequence[float]]] = None,
        config: Optional[SystemConfig] = None,
    ):
        """
        Initialize a camera system.

        Args:
            cameras: Cameras, in id order
            system_type: Provenance of the calibration
            user_6_transform: Optional 6 parameter user transform
            user_4x4_transform: Optional 4x4 user transform
            config: System configuration (defaults used when omitted)
        """
        self._config = config or SystemConfig()
        self._set_state(CalibrationData(
            system_type=system_type,
            cameras=tuple(cameras),
            user_6_transform=user_6_transform,
            user_4x4_transform=user_4x4_transform,
        ))

    @classmethod
    def from_file(cls, path: Union[str, Path], config: Optional[SystemConfig] = None) -> "CameraSystem":
        """Create a camera system from a calibration file in any supported dialect."""
        system = cls(config=config)
        system.read_calibration_file(path)
        return system

    def _set_state(self, data: CalibrationData) -> None:
        cameras = tuple(data.cameras)
        if len(cameras) > self._config.max_num_cameras - 1:
            raise ValueError(
                f"Too many cameras: {len(cameras)}, at most {self._config.max_num_cameras - 1} are supported"
            )
        for camera in cameras:
            if not isinstance(camera, Camera):
                raise TypeError(f"Expected Camera, got {type(camera).__name__}")

        user_6 = None
        if data.user_6_transform is not None:
            user_6 = _readonly(data.user_6_transform, (NUM_RIGID_BODY_PARAMS,), "user_6_transform")
        user_4x4 = None
        if data.user_4x4_transform is not None:
            user_4x4 = _readonly(data.user_4x4_transform, (4, 4), "user_4x4_transform")

        self._cameras = cameras
        self._system_type = SystemType(data.system_type)
        self._user_6_transform = user_6
        self._user_4x4_transform = user_4x4

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def num_cameras(self) -> int:
        return len(self._cameras)

    @property
    def cameras(self) -> Tuple[Camera, ...]:
        return self._cameras

    def camera(self, index: int) -> Camera:
        """Return the camera with the given index, raising IndexError if out of range."""
        if not 0 <= index < len(self._cameras):
            raise IndexError(f"Camera index {index} out of range [0, {len(self._cameras)})")
        return self._cameras[index]

    @property
    def system_type(self) -> SystemType:
        return self._system_type

    @property
    def has_6_transform(self) -> bool:
        return self._user_6_transform is not None

    @property
    def has_4x4_transform(self) -> bool:
        return self._user_4x4_transform is not None

    @property
    def user_6_transform(self) -> Optional[np.ndarray]:
        return self._user_6_transform

    @property
    def user_4x4_transform(self) -> Optional[np.ndarray]:
        return self._user_4x4_transform

    @property
    def max_num_cameras(self) -> int:
        return self._config.max_num_cameras

    @property
    def config(self) -> SystemConfig:
        return self._config

    # ------------------------------------------------------------------
    # File I/O
    # ------------------------------------------------------------------

    def read_calibration_file(self, path: Union[str, Path]) -> None:
        """
        Replace the system state with the contents of a calibration file.

        The current state is kept if the file cannot be read.
        """
        data = read_calibration_file(path, self._config)
        self._set_state(data)
        logger.debug(f"Camera system after reading {path}:\n{self}")

    def write_calibration_file(self, path: Union[str, Path]) -> None:
        """Write the system as a native calibration file."""
        calibration_writer.write_calibration_file(self, path)

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def camera_to_camera_projection(
        self,
        source_id: int,
        target_id: int,
        img_x: np.ndarray,
        img_y: np.ndarray,
        params: Sequence[float],
        rigid_body_params: Optional[Sequence[float]] = None,
        with_partials: bool = False,
    ) -> ProjectionResult:
        """
        Project image points from one camera into another.

        Args:
            source_id: Index of the camera the points are observed in
            target_id: Index of the camera to project into
            img_x: Source image x coordinates, shape (N,)
            img_y: Source image y coordinates, shape (N,)
            params: Shape-function parameters [ZP, THETA, PHI]
            rigid_body_params: Optional [angle_x, angle_y, angle_z, tx, ty, tz]
                motion applied in the world frame
            with_partials: Also compute partials of the target coordinates

        Returns:
            ProjectionResult. With partials, dx and dy have shape (3, N)
            (shape-function parameters) or (6, N) (rigid-body parameters).

        Raises:
            ValueError: On wrong parameter counts or mismatched coordinates
            IndexError: If a camera index is out of range
        """
        params = np.asarray(params, dtype=np.float64).ravel()
        if params.size != NUM_PROJECTION_PARAMS:
            raise ValueError(f"Expected {NUM_PROJECTION_PARAMS} shape-function parameters, got {params.size}")
        source = self.camera(source_id)
        target = self.camera(target_id)

        img_x = np.asarray(img_x, dtype=np.float64)
        img_y = np.asarray(img_y, dtype=np.float64)
        if img_x.ndim != 1 or img_x.size == 0 or img_y.shape != img_x.shape:
            raise ValueError(
                f"Image coordinates must be non-empty 1-D arrays of equal length, "
                f"got shapes {img_x.shape} and {img_y.shape}"
            )

        rigid_body = None
        if rigid_body_params is not None:
            rigid_body = np.asarray(rigid_body_params, dtype=np.float64).ravel()
            if rigid_body.size != NUM_RIGID_BODY_PARAMS:
                raise ValueError(
                    f"Expected {NUM_RIGID_BODY_PARAMS} rigid body parameters, got {rigid_body.size}"
                )

        sensor_x, sensor_y = source.image_to_sensor(img_x, img_y)

        if not with_partials:
            cam = source.sensor_to_cam(sensor_x, sensor_y, params)
            world = source.cam_to_world(*cam)
            if rigid_body is not None:
                world = rot_trans_3d(*world, rigid_body)
            cam = target.world_to_cam(*world)
            sensor = target.cam_to_sensor(*cam)
            x, y = target.sensor_to_image(*sensor)
            return ProjectionResult(x, y)

        if rigid_body is not None:
            cam = source.sensor_to_cam(sensor_x, sensor_y, params)
            world = source.cam_to_world(*cam)
            world = rot_trans_3d_with_partials(*world, rigid_body)
        else:
            cam = source.sensor_to_cam_with_partials(sensor_x, sensor_y, params)
            world = source.cam_to_world_with_partials(*cam)

        cam = target.world_to_cam_with_partials(*world)
        sensor = target.cam_to_sensor_with_partials(*cam)
        x, y, dx, dy = target.sensor_to_image_with_partials(*sensor)
        return ProjectionResult(x, y, dx, dy)

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        lines = [
            f"System type: {self._system_type.value}",
            f"Number of cameras: {self.num_cameras}",
        ]
        for i, camera in enumerate(self._cameras):
            lines.append(f"Camera {i}: {camera.id}")
            lines.append(f"  image size (h x w): {camera.image_height} x {camera.image_width}")
            lines.append(f"  lens distortion model: {camera.lens_distortion_model.value}")
            nonzero = ', '.join(
                f"{p.name}={camera.intrinsic(p):g}" for p in IntrinsicParam if camera.intrinsic(p) != 0
            )
            lines.append(f"  intrinsics: {nonzero}")
            lines.append(f"  translation: {camera.tx:g} {camera.ty:g} {camera.tz:g}")
            for row in camera.rotation_matrix:
                lines.append("  rotation: " + ' '.join(f"{v: .6f}" for v in row))
            if camera.pixel_depth:
                lines.append(f"  pixel depth: {camera.pixel_depth}")
            if camera.lens:
                lines.append(f"  lens: {camera.lens}")
            if camera.comments:
                lines.append(f"  comments: {camera.comments}")
        if self.has_6_transform:
            lines.append("User 6 parameter transform: " + ' '.join(f"{v:g}" for v in self._user_6_transform))
        if self.has_4x4_transform:
            lines.append("User 4x4 transform:")
            for row in self._user_4x4_transform:
                lines.append("  " + ' '.join(f"{v: .6f}" for v in row))
        return '\n'.join(lines)
