"""
Camera System Package

Multi-camera calibration and projective geometry: reads camera
calibrations from several file formats, models each camera's optics, and
projects image points from one camera into another with analytic partial
derivatives.

Coordinate Chain:
    Image (pixels) → Sensor (normalized) → Camera (3D) → World (3D)

Supported Formats:
    - Native ParameterList XML calibration files (read and write)
    - VIC3D .xml calibration exports (read)
    - Legacy one-value-per-line .txt calibrations (read)
"""

from .config import SystemConfig, DistortionSettings
from .distortion import IntrinsicParam, LensDistortionModel, distort, undistort
from .camera import Camera, CameraInfo, ProjectionParam
from .transforms import (
    RigidBodyParam,
    RigidBodyCoefficients,
    rigid_body_coefficients,
    rot_trans_3d,
    rot_trans_3d_with_partials,
    euler_to_rotation_matrix,
    validate_rotation_matrix,
)
from .param_list import ParameterList, ParameterListError, read_parameter_list, write_parameter_list
from .calibration_parser import (
    CalibrationData,
    CalibrationParseError,
    UnsupportedFormatError,
    SystemType,
    read_calibration_file,
)
from .calibration_writer import CalibrationWriteError, write_calibration_file
from .system import CameraSystem, ProjectionResult

__version__ = "1.0.0"
__all__ = [
    "SystemConfig",
    "DistortionSettings",
    "IntrinsicParam",
    "LensDistortionModel",
    "distort",
    "undistort",
    "Camera",
    "CameraInfo",
    "ProjectionParam",
    "RigidBodyParam",
    "RigidBodyCoefficients",
    "rigid_body_coefficients",
    "rot_trans_3d",
    "rot_trans_3d_with_partials",
    "euler_to_rotation_matrix",
    "validate_rotation_matrix",
    "ParameterList",
    "ParameterListError",
    "read_parameter_list",
    "write_parameter_list",
    "CalibrationData",
    "CalibrationParseError",
    "UnsupportedFormatError",
    "SystemType",
    "read_calibration_file",
    "write_calibration_file",
    "CameraSystem",
    "ProjectionResult",
]
