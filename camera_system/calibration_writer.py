"""
Calibration file writer module.

Writes a camera system in the native ParameterList dialect. Parameters
equal to 0 are omitted (the reader restores them as 0) and rotations are
always written as a 3x3 matrix, so Euler angles do not survive a round
trip.
"""

from pathlib import Path
from typing import Union
import logging

from .calibration_parser import (
    CALIBRATION_FILE_MARKER,
    CAMERA_ID,
    COMMENTS,
    IMAGE_HEIGHT_WIDTH,
    LENS,
    LENS_DISTORTION_MODEL,
    PIXEL_DEPTH,
    ROTATION_SUBLIST,
    SYSTEM_TYPE_PARAM,
    TRANSLATION_NAMES,
    USER_4X4_TRANSFORM,
    USER_6_TRANSFORM,
    SystemType,
    camera_sublist_name,
    row_name,
)
from .camera import Camera
from .distortion import IntrinsicParam, LensDistortionModel
from .param_list import ParameterList, format_numeric_list, write_parameter_list

logger = logging.getLogger(__name__)


class CalibrationWriteError(ValueError):
    """Raised when a camera system cannot be written."""


_MODEL_DESCRIPTIONS = {
    LensDistortionModel.NONE: "no distortion model",
    LensDistortionModel.OPENCV_DIS: "uses the model defined in openCV 3.4.1",
    LensDistortionModel.VIC3D_DIS: "uses the model defined for VIC3D",
    LensDistortionModel.K1R1_K2R2_K3R3: "K1*R + K2*R^2 + K3*R^3",
    LensDistortionModel.K1R2_K2R4_K3R6: "K1*R^2 + K2*R^4 + K3*R^6",
    LensDistortionModel.K1R3_K2R5_K3R7: "K1*R^3 + K2*R^5 + K3*R^7",
}


_4X4_ROW_LABELS = ("R11 R12 R13 TX", "R21 R22 R23 TY", "R31 R32 R33 TZ", "0 0 0 1")


def _add_header(plist: ParameterList, system_type: SystemType) -> None:
    plist.add_comment("DICe formatted calibration file")
    plist.add_comment(
        f"{CALIBRATION_FILE_MARKER} parameter with a value of true denotes that this file "
        f"is a DICe XML formatted calibration file"
    )
    plist.set(CALIBRATION_FILE_MARKER, True)

    valid_types = ' '.join(t.value for t in SystemType if t is not SystemType.UNKNOWN_SYSTEM)
    plist.add_comment(f"type of 3D system, valid values are: {valid_types}")
    plist.set(SYSTEM_TYPE_PARAM, system_type.value)

    plist.add_comment("camera intrinsic parameters (zero valued parameters may be omitted)")
    plist.add_comment("each camera is a separate sublist named CAMERA <#>, numbered from 0 without gaps")
    plist.add_comment(
        "valid camera intrinsic parameter names are: " + ' '.join(p.name for p in IntrinsicParam)
    )
    plist.add_comment("CX,CY image center (pix), FX,FY pinhole distances (pix), FS skew")
    plist.add_comment(
        "K1-K6 radial distortion, P1-P2 tangential distortion, S1-S4 thin prism distortion, "
        "T1,T2 Scheimpflug correction"
    )
    plist.add_comment(
        "openCV lists the values in the order (K1,K2,P1,P2[,K3[,K4,K5,K6[,S1,S2,S3,S4[,TX,TY]]]])"
    )
    plist.add_comment(
        "valid values for LENS_DISTORTION_MODEL are: " + ' '.join(m.value for m in LensDistortionModel)
    )
    for model, description in _MODEL_DESCRIPTIONS.items():
        plist.add_comment(f"{model.value}: {description}")

    plist.add_comment("camera extrinsic parameters (zero valued parameters may be omitted)")
    plist.add_comment("extrinsic translations are given by TX, TY and TZ")
    plist.add_comment(
        f"extrinsic rotations are given by the Euler angles ALPHA, BETA, GAMMA (degrees) or by a "
        f"{ROTATION_SUBLIST} sublist with rows ROW 0..2, but not both; the default is the identity"
    )
    plist.add_comment(f"additional camera fields: {CAMERA_ID} (default CAMERA <#>), "
                      f"{IMAGE_HEIGHT_WIDTH} {{ h, w }}, {PIXEL_DEPTH}, {LENS}, {COMMENTS}")


def _add_camera(plist: ParameterList, index: int, camera: Camera) -> None:
    cam_params = plist.add_sublist(camera_sublist_name(index))
    cam_params.set(CAMERA_ID, camera.id)

    for param in IntrinsicParam:
        value = camera.intrinsic(param)
        if value != 0:
            cam_params.set(param.name, value)
    cam_params.set(LENS_DISTORTION_MODEL, camera.lens_distortion_model.value)

    for name, value in zip(TRANSLATION_NAMES, (camera.tx, camera.ty, camera.tz)):
        if value != 0:
            cam_params.set(name, value)

    cam_params.add_comment("3x3 camera rotation matrix (world to camera transformation)")
    rotation = cam_params.add_sublist(ROTATION_SUBLIST)
    for i, row in enumerate(camera.rotation_matrix):
        rotation.set(row_name(i), format_numeric_list(float(v) for v in row))
        rotation.add_comment(f"R{i + 1}1 R{i + 1}2 R{i + 1}3")

    if camera.image_height != 0 and camera.image_width != 0:
        cam_params.set(IMAGE_HEIGHT_WIDTH, format_numeric_list([camera.image_height, camera.image_width]))
    if camera.pixel_depth != 0:
        cam_params.set(PIXEL_DEPTH, camera.pixel_depth)
    if camera.lens:
        cam_params.set(LENS, camera.lens)
    if camera.comments:
        cam_params.set(COMMENTS, camera.comments)


def build_calibration_parameters(system) -> ParameterList:
    """
    Build the native ParameterList for a camera system.

    Args:
        system: CameraSystem to serialize

    Raises:
        CalibrationWriteError: If the system type is unknown
    """
    if system.system_type is SystemType.UNKNOWN_SYSTEM:
        raise CalibrationWriteError("Cannot write a calibration file for an unknown system type")

    plist = ParameterList()
    _add_header(plist, system.system_type)

    for index, camera in enumerate(system.cameras):
        logger.debug(f"Writing camera parameters for {camera_sublist_name(index)}")
        _add_camera(plist, index, camera)

    if system.has_6_transform:
        plist.add_comment("user supplied 6 parameter transform, separate from the camera extrinsics")
        plist.add_comment("ANGLE_X ANGLE_Y ANGLE_Z TX TY TZ, used for non-projection transforms (optional)")
        plist.set(USER_6_TRANSFORM, format_numeric_list(float(v) for v in system.user_6_transform))

    if system.has_4x4_transform:
        plist.add_comment("user supplied 4x4 transform, separate from the camera extrinsics")
        plist.add_comment("typically a combined rotation and translation (optional)")
        rows = plist.add_sublist(USER_4X4_TRANSFORM)
        for i, row in enumerate(system.user_4x4_transform):
            rows.set(row_name(i), format_numeric_list(float(v) for v in row))
            rows.add_comment(_4X4_ROW_LABELS[i])

    return plist


def write_calibration_file(system, path: Union[str, Path]) -> None:
    """
    Write a camera system as a native calibration file.

    Args:
        system: CameraSystem to write
        path: Output file path

    Raises:
        CalibrationWriteError: If the system type is unknown
    """
    logger.debug(f"Writing calibration file {path}")
    plist = build_calibration_parameters(system)
    write_parameter_list(plist, path)
    logger.info(f"Calibration file written to {path} ({len(system.cameras)} camera(s))")
