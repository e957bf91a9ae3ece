"""
Shared fixtures for camera system tests.
"""

import pytest

from camera_system.camera import Camera, CameraInfo, IntrinsicParam, LensDistortionModel


DEFAULT_INTRINSICS = {
    IntrinsicParam.CX: 640.0,
    IntrinsicParam.CY: 512.0,
    IntrinsicParam.FX: 3000.0,
    IntrinsicParam.FY: 3000.0,
}


def build_camera_info(
    camera_id='CAMERA 0',
    model=LensDistortionModel.NONE,
    intrinsics=None,
    eulers=None,
    matrix=None,
    translation=(0.0, 0.0, 0.0),
    image_size=(1024, 1280),
    **fields,
):
    """Create a CameraInfo with sensible defaults."""
    info = CameraInfo(id=camera_id, lens_distortion_model=model, **fields)
    info.image_height, info.image_width = image_size
    values = dict(DEFAULT_INTRINSICS)
    values.update(intrinsics or {})
    for param, value in values.items():
        info.set_intrinsic(param, value)
    info.tx, info.ty, info.tz = translation
    if eulers is not None:
        info.set_rotation_from_eulers(*eulers)
    if matrix is not None:
        info.set_rotation_matrix(matrix)
    return info


@pytest.fixture
def make_camera():
    """Factory fixture building Camera objects from keyword overrides."""
    def _make(**kwargs):
        return Camera(build_camera_info(**kwargs))
    return _make


@pytest.fixture
def make_camera_info():
    """Factory fixture building CameraInfo objects from keyword overrides."""
    return build_camera_info
