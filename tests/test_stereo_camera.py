"""Tests for the rectified stereo camera model."""

import numpy as np
import pytest

from stereo_vio.exceptions import ConfigurationError
from stereo_vio.frontend.stereo_camera import CameraIntrinsics, StereoCamera


class TestStereoCamera:
    """Tests for StereoCamera projection."""

    def test_project_principal_point(self, stereo_camera):
        uv = stereo_camera.project(np.array([[0.0, 0.0, 5.0]]))
        np.testing.assert_allclose(uv, [[376.0, 240.0]])

    def test_project_stereo_disparity(self, stereo_camera):
        obs = stereo_camera.project_stereo(np.array([[0.5, -0.2, 4.0]]))
        disparity = obs[0, 0] - obs[0, 2]
        assert disparity == pytest.approx(415.876509 * 0.2 / 4.0)
        np.testing.assert_allclose(obs[0, :2], stereo_camera.project(np.array([[0.5, -0.2, 4.0]]))[0])

    def test_triangulate_inverts_projection(self, stereo_camera):
        points = np.array([[0.5, -0.2, 4.0], [-1.0, 0.3, 2.5]])
        restored = stereo_camera.triangulate(stereo_camera.project_stereo(points))
        np.testing.assert_allclose(restored, points, atol=1e-9)

    def test_triangulate_non_positive_disparity_is_nan(self, stereo_camera):
        restored = stereo_camera.triangulate(np.array([[300.0, 200.0, 300.0]]))
        assert np.all(np.isnan(restored))

    def test_projection_jacobian_matches_finite_differences(self, stereo_camera):
        point = np.array([0.4, -0.3, 3.0])
        J = stereo_camera.projection_jacobian(point[None], stereo=True)[0]

        eps = 1e-6
        numeric = np.zeros((3, 3))
        for i in range(3):
            step = np.zeros(3)
            step[i] = eps
            plus = stereo_camera.project_stereo((point + step)[None])[0]
            minus = stereo_camera.project_stereo((point - step)[None])[0]
            numeric[:, i] = (plus - minus) / (2 * eps)

        np.testing.assert_allclose(J, numeric, rtol=1e-5, atol=1e-4)

    def test_monocular_jacobian_has_two_rows(self, stereo_camera):
        J = stereo_camera.projection_jacobian(np.array([[0.0, 0.0, 2.0]]))
        assert J.shape == (1, 2, 3)

    def test_rejects_non_positive_baseline(self):
        intrinsics = CameraIntrinsics(fx=400.0, fy=400.0, cx=320.0, cy=240.0)
        with pytest.raises(ConfigurationError, match="Baseline"):
            StereoCamera(intrinsics, baseline=0.0)

    def test_rejects_non_positive_focal_length(self):
        intrinsics = CameraIntrinsics(fx=-1.0, fy=400.0, cx=320.0, cy=240.0)
        with pytest.raises(ConfigurationError, match="Focal"):
            StereoCamera(intrinsics, baseline=0.1)
