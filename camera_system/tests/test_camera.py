"""
Tests for the camera model.

These tests verify:
    - CameraInfo validation and the Euler angle / matrix exclusivity
    - Immutability of Camera
    - Each transform and its inverse
    - Partials of each transform against finite differences
"""

import logging

import pytest
import numpy as np
from numpy.testing import assert_allclose

from camera_system.camera import (
    Camera,
    CameraInfo,
    IntrinsicParam,
    LensDistortionModel,
    NUM_INTRINSIC_PARAMS,
    ProjectionParam,
)
from camera_system.transforms import euler_to_rotation_matrix


OPENCV_COEFFICIENTS = {
    IntrinsicParam.FS: 0.5,
    IntrinsicParam.K1: -0.12,
    IntrinsicParam.K2: 0.03,
    IntrinsicParam.P1: 0.0008,
    IntrinsicParam.P2: -0.0005,
}


@pytest.fixture
def image_points():
    rng = np.random.default_rng(21)
    return rng.uniform(100, 1180, 30), rng.uniform(80, 940, 30)


@pytest.fixture
def sensor_points():
    rng = np.random.default_rng(22)
    return rng.uniform(-0.2, 0.2, 30), rng.uniform(-0.15, 0.15, 30)


class TestCameraInfo:
    """Tests for the mutable camera description."""

    def test_defaults(self):
        info = CameraInfo()

        assert info.intrinsics.shape == (NUM_INTRINSIC_PARAMS,)
        assert np.all(info.intrinsics == 0)
        assert_allclose(info.rotation_matrix, np.eye(3))
        assert info.lens_distortion_model is LensDistortionModel.NONE
        assert info.rotation_source is None

    def test_set_intrinsic(self):
        info = CameraInfo()
        info.set_intrinsic(IntrinsicParam.K2, 0.25)

        assert info.get_intrinsic(IntrinsicParam.K2) == 0.25
        assert info.intrinsics[6] == 0.25

    @pytest.mark.parametrize("index", [-1, NUM_INTRINSIC_PARAMS, 100])
    def test_intrinsic_index_out_of_range(self, index):
        info = CameraInfo()
        with pytest.raises(IndexError):
            info.set_intrinsic(index, 1.0)
        with pytest.raises(IndexError):
            info.get_intrinsic(index)

    def test_eulers_then_matrix_rejected(self):
        info = CameraInfo(id='cam')
        info.set_rotation_from_eulers(1.0, 2.0, 3.0)

        with pytest.raises(ValueError, match="both"):
            info.set_rotation_matrix(np.eye(3))

    def test_matrix_then_eulers_rejected(self):
        info = CameraInfo(id='cam')
        info.set_rotation_matrix(np.eye(3))

        with pytest.raises(ValueError, match="both"):
            info.set_rotation_from_eulers(1.0, 2.0, 3.0)

    def test_eulers_give_rotation(self):
        info = CameraInfo()
        info.set_rotation_from_eulers(10.0, -20.0, 5.0)

        assert_allclose(info.rotation_matrix, euler_to_rotation_matrix(10.0, -20.0, 5.0))
        assert info.rotation_source == 'eulers'

    def test_matrix_must_be_3x3(self):
        with pytest.raises(ValueError, match="3x3"):
            CameraInfo().set_rotation_matrix(np.eye(4))

    @pytest.mark.parametrize("size", [(0, 1280), (1024, 0), (-1, 10)])
    def test_validate_image_size(self, make_camera_info, size):
        info = make_camera_info(image_size=size)
        with pytest.raises(ValueError, match="image size"):
            info.validate()

    @pytest.mark.parametrize("param", [IntrinsicParam.FX, IntrinsicParam.FY])
    def test_validate_focal_lengths(self, make_camera_info, param):
        info = make_camera_info(intrinsics={param: 0.0})
        with pytest.raises(ValueError, match="FX and FY"):
            info.validate()


class TestCameraConstruction:
    """Tests for building immutable cameras."""

    def test_accessors(self, make_camera):
        camera = make_camera(
            camera_id='left',
            model=LensDistortionModel.OPENCV_DIS,
            translation=(1.0, -2.0, 3.0),
            eulers=(5.0, 0.0, 0.0),
            pixel_depth=12,
            lens='35mm',
            comments='bench test',
        )

        assert camera.id == 'left'
        assert camera.image_height == 1024
        assert camera.image_width == 1280
        assert camera.pixel_depth == 12
        assert camera.lens == '35mm'
        assert camera.comments == 'bench test'
        assert camera.lens_distortion_model is LensDistortionModel.OPENCV_DIS
        assert (camera.tx, camera.ty, camera.tz) == (1.0, -2.0, 3.0)
        assert camera.intrinsic(IntrinsicParam.FX) == 3000.0
        assert_allclose(camera.rotation_matrix, euler_to_rotation_matrix(5.0, 0.0, 0.0))

    def test_arrays_read_only(self, make_camera):
        camera = make_camera()

        with pytest.raises(ValueError):
            camera.intrinsics[IntrinsicParam.CX] = 0.0
        with pytest.raises(ValueError):
            camera.rotation_matrix[0, 0] = 2.0
        with pytest.raises(ValueError):
            camera.translation[0] = 2.0

    def test_later_info_edits_ignored(self, make_camera_info):
        info = make_camera_info()
        camera = Camera(info)
        info.set_intrinsic(IntrinsicParam.CX, 1.0)
        info.image_height = 5

        assert camera.intrinsic(IntrinsicParam.CX) == 640.0
        assert camera.image_height == 1024

    def test_invalid_info_rejected(self, make_camera_info):
        with pytest.raises(ValueError):
            Camera(make_camera_info(image_size=(0, 0)))

    def test_to_info_rebuilds_equal_camera(self, make_camera):
        camera = make_camera(model=LensDistortionModel.VIC3D_DIS, eulers=(1.0, 2.0, 3.0),
                             translation=(4.0, 5.0, 6.0), lens='lens')
        rebuilt = Camera(camera.to_info())

        assert rebuilt.id == camera.id
        assert rebuilt.lens == camera.lens
        assert rebuilt.lens_distortion_model is camera.lens_distortion_model
        assert_allclose(rebuilt.intrinsics, camera.intrinsics)
        assert_allclose(rebuilt.rotation_matrix, camera.rotation_matrix)
        assert_allclose(rebuilt.translation, camera.translation)

    def test_improper_rotation_warns(self, make_camera_info, caplog):
        info = make_camera_info(matrix=np.diag([1.0, 1.0, -1.0]))

        with caplog.at_level(logging.WARNING, logger='camera_system.camera'):
            Camera(info)

        assert "not a proper rotation" in caplog.text


class TestImageSensor:
    """Tests for image <-> sensor transforms."""

    def test_pinhole_mapping(self, make_camera):
        camera = make_camera(intrinsics={IntrinsicParam.FS: 2.0})
        x, y = camera.sensor_to_image(np.array([0.1]), np.array([-0.05]))

        assert_allclose(x, 3000.0 * 0.1 + 2.0 * -0.05 + 640.0)
        assert_allclose(y, 3000.0 * -0.05 + 512.0)

    def test_image_center_maps_to_origin(self, make_camera):
        camera = make_camera()
        sx, sy = camera.image_to_sensor([640.0], [512.0])

        assert_allclose([sx[0], sy[0]], [0.0, 0.0], atol=1e-15)

    @pytest.mark.parametrize("model", [
        LensDistortionModel.NONE,
        LensDistortionModel.OPENCV_DIS,
        LensDistortionModel.K1R2_K2R4_K3R6,
    ])
    def test_round_trip(self, make_camera, image_points, model):
        camera = make_camera(model=model, intrinsics=OPENCV_COEFFICIENTS)
        x, y = image_points

        sx, sy = camera.image_to_sensor(x, y)
        x2, y2 = camera.sensor_to_image(sx, sy)

        assert_allclose(x2, x, atol=1e-8)
        assert_allclose(y2, y, atol=1e-8)

    def test_mismatched_lengths(self, make_camera):
        camera = make_camera()
        with pytest.raises(ValueError):
            camera.image_to_sensor([1.0, 2.0], [1.0])
        with pytest.raises(ValueError):
            camera.sensor_to_image([0.1], [0.1, 0.2])

    def test_sensor_to_image_partials(self, make_camera, sensor_points):
        """With identity seed partials the outputs are the sensor->image Jacobian."""
        camera = make_camera(model=LensDistortionModel.OPENCV_DIS, intrinsics=OPENCV_COEFFICIENTS)
        sx, sy = sensor_points
        n = sx.size
        seed_x = np.vstack([np.ones(n), np.zeros(n)])
        seed_y = np.vstack([np.zeros(n), np.ones(n)])
        h = 1e-7

        x, y, dx, dy = camera.sensor_to_image_with_partials(sx, sy, seed_x, seed_y)
        xp, yp = camera.sensor_to_image(sx + h, sy)
        xm, ym = camera.sensor_to_image(sx - h, sy)
        xq, yq = camera.sensor_to_image(sx, sy + h)
        xr, yr = camera.sensor_to_image(sx, sy - h)

        assert dx.shape == (2, n)
        assert_allclose(dx[0], (xp - xm) / (2 * h), rtol=1e-6)
        assert_allclose(dy[0], (yp - ym) / (2 * h), rtol=1e-6, atol=1e-3)
        assert_allclose(dx[1], (xq - xr) / (2 * h), rtol=1e-6, atol=1e-3)
        assert_allclose(dy[1], (yq - yr) / (2 * h), rtol=1e-6)

    def test_image_to_sensor_partials(self, make_camera, image_points):
        camera = make_camera(model=LensDistortionModel.OPENCV_DIS, intrinsics=OPENCV_COEFFICIENTS)
        x, y = image_points
        n = x.size
        seed_x = np.vstack([np.ones(n), np.zeros(n)])
        seed_y = np.vstack([np.zeros(n), np.ones(n)])
        h = 1e-2

        _, _, dsx, dsy = camera.image_to_sensor_with_partials(x, y, seed_x, seed_y)
        sxp, syp = camera.image_to_sensor(x + h, y)
        sxm, sym = camera.image_to_sensor(x - h, y)
        sxq, syq = camera.image_to_sensor(x, y + h)
        sxr, syr = camera.image_to_sensor(x, y - h)

        assert_allclose(dsx[0], (sxp - sxm) / (2 * h), rtol=1e-5, atol=1e-9)
        assert_allclose(dsy[0], (syp - sym) / (2 * h), rtol=1e-5, atol=1e-9)
        assert_allclose(dsx[1], (sxq - sxr) / (2 * h), rtol=1e-5, atol=1e-9)
        assert_allclose(dsy[1], (syq - syr) / (2 * h), rtol=1e-5, atol=1e-9)

    def test_partials_shape_checked(self, make_camera):
        camera = make_camera()
        with pytest.raises(ValueError, match="Partials"):
            camera.sensor_to_image_with_partials([0.1, 0.2], [0.1, 0.2], np.zeros((3, 2)), np.zeros((3, 3)))


class TestSensorCam:
    """Tests for sensor <-> camera transforms."""

    def test_fronto_parallel_plane(self, make_camera, sensor_points):
        camera = make_camera()
        sx, sy = sensor_points

        cx, cy, cz = camera.sensor_to_cam(sx, sy, [250.0, 0.0, 0.0])

        assert_allclose(cz, 250.0)
        assert_allclose(cx, 250.0 * sx)
        assert_allclose(cy, 250.0 * sy)

    def test_points_lie_on_tilted_plane(self, make_camera, sensor_points):
        camera = make_camera()
        sx, sy = sensor_points
        zp, theta, phi = 300.0, 0.4, 0.3

        cx, cy, cz = camera.sensor_to_cam(sx, sy, [zp, theta, phi])
        normal = np.array([np.sin(phi) * np.cos(theta), np.sin(phi) * np.sin(theta), np.cos(phi)])
        offsets = np.stack([cx, cy, cz - zp])

        assert_allclose(normal @ offsets, 0.0, atol=1e-9)

    def test_cam_to_sensor_inverts_sensor_to_cam(self, make_camera, sensor_points):
        camera = make_camera()
        sx, sy = sensor_points

        cam = camera.sensor_to_cam(sx, sy, [300.0, 0.4, 0.3])
        sx2, sy2 = camera.cam_to_sensor(*cam)

        assert_allclose(sx2, sx, atol=1e-14)
        assert_allclose(sy2, sy, atol=1e-14)

    @pytest.mark.parametrize("params", [[1.0, 2.0], [1.0, 2.0, 3.0, 4.0]])
    def test_parameter_count(self, make_camera, params):
        with pytest.raises(ValueError):
            make_camera().sensor_to_cam([0.1], [0.1], params)

    def test_sensor_to_cam_partials(self, make_camera, sensor_points):
        camera = make_camera()
        sx, sy = sensor_points
        params = np.array([300.0, 0.4, 0.3])
        h = 1e-6

        _, _, _, dcx, dcy, dcz = camera.sensor_to_cam_with_partials(sx, sy, params)

        assert dcx.shape == (3, sx.size)
        for p in ProjectionParam:
            step = h * max(1.0, abs(params[p]))
            plus = params.copy()
            minus = params.copy()
            plus[p] += step
            minus[p] -= step
            numeric = (np.stack(camera.sensor_to_cam(sx, sy, plus))
                       - np.stack(camera.sensor_to_cam(sx, sy, minus))) / (2 * step)

            assert_allclose(np.stack([dcx[p], dcy[p], dcz[p]]), numeric, rtol=1e-5, atol=1e-6)

    def test_cam_to_sensor_partials(self, make_camera):
        camera = make_camera()
        rng = np.random.default_rng(8)
        cx, cy, cz = rng.uniform(-50, 50, 10), rng.uniform(-50, 50, 10), rng.uniform(200, 400, 10)
        eye = [np.tile(row[:, np.newaxis], (1, 10)) for row in np.eye(3)]
        h = 1e-5

        _, _, dsx, dsy = camera.cam_to_sensor_with_partials(cx, cy, cz, *eye)
        for axis in range(3):
            plus = [cx.copy(), cy.copy(), cz.copy()]
            minus = [cx.copy(), cy.copy(), cz.copy()]
            plus[axis] += h
            minus[axis] -= h
            numeric = (np.stack(camera.cam_to_sensor(*plus))
                       - np.stack(camera.cam_to_sensor(*minus))) / (2 * h)

            assert_allclose(np.stack([dsx[axis], dsy[axis]]), numeric, rtol=1e-6, atol=1e-12)


class TestCamWorld:
    """Tests for camera <-> world transforms."""

    def test_identity_extrinsics(self, make_camera):
        camera = make_camera()
        wx, wy, wz = camera.cam_to_world([1.0, 2.0], [3.0, 4.0], [5.0, 6.0])

        assert_allclose(np.stack([wx, wy, wz]), [[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])

    def test_camera_center_maps_to_origin(self, make_camera):
        """The world origin sits at camera coordinates t."""
        camera = make_camera(eulers=(10.0, 20.0, 30.0), translation=(5.0, -3.0, 100.0))
        cx, cy, cz = camera.world_to_cam([0.0], [0.0], [0.0])

        assert_allclose([cx[0], cy[0], cz[0]], [5.0, -3.0, 100.0])

    def test_round_trip(self, make_camera):
        camera = make_camera(eulers=(10.0, 20.0, 30.0), translation=(5.0, -3.0, 100.0))
        rng = np.random.default_rng(4)
        world = rng.uniform(-100, 100, (3, 20))

        cam = camera.world_to_cam(*world)
        back = camera.cam_to_world(*cam)

        assert_allclose(np.stack(back), world, atol=1e-10)

    def test_partials_rotate(self, make_camera):
        camera = make_camera(eulers=(10.0, 20.0, 30.0), translation=(5.0, -3.0, 100.0))
        R = camera.rotation_matrix
        rng = np.random.default_rng(6)
        points = rng.uniform(-1, 1, (3, 4))
        partials = rng.uniform(-1, 1, (3, 3, 4))  # (axis, param, point)

        result = camera.world_to_cam_with_partials(*points, *partials)
        assert_allclose(np.stack(result[3:]), np.einsum('ij,jpn->ipn', R, partials))

        result = camera.cam_to_world_with_partials(*points, *partials)
        assert_allclose(np.stack(result[3:]), np.einsum('ji,jpn->ipn', R, partials))

    def test_mismatched_lengths(self, make_camera):
        with pytest.raises(ValueError):
            make_camera().world_to_cam([1.0], [1.0, 2.0], [1.0])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
