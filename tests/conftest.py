import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from pcreg import PointCloud


def make_random_cloud(n=400, seed=0):
    rng = np.random.default_rng(seed)
    # Anisotropic spread to avoid degenerate covariance
    base = rng.normal(size=(n, 3)) * np.array([2.0, 1.0, 0.5])
    return base.astype(np.float32)


def make_surface_cloud(steps=25):
    """Gridded wavy surface with analytic normals."""
    xs, ys = np.meshgrid(np.linspace(-1.0, 1.0, steps), np.linspace(-1.0, 1.0, steps))
    xs, ys = xs.ravel(), ys.ravel()
    zs = 0.3 * np.sin(2 * xs) + 0.3 * np.cos(2 * ys)
    normals = np.stack([-0.6 * np.cos(2 * xs), 0.6 * np.sin(2 * ys), np.ones_like(xs)], axis=1)
    normals /= np.linalg.norm(normals, axis=1, keepdims=True)
    points = np.stack([xs, ys, zs], axis=1)
    return PointCloud(points.astype(np.float32), normals=normals.astype(np.float32))


def rigid_transform(angle_deg, axis, translation):
    axis = np.asarray(axis, dtype=np.float64)
    axis = axis / np.linalg.norm(axis)
    th = np.deg2rad(angle_deg)
    K = np.array([[0.0, -axis[2], axis[1]],
                  [axis[2], 0.0, -axis[0]],
                  [-axis[1], axis[0], 0.0]])
    R = np.eye(3) + np.sin(th) * K + (1.0 - np.cos(th)) * (K @ K)
    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = translation
    return T.astype(np.float32)


@pytest.fixture
def random_cloud():
    return PointCloud(make_random_cloud())


@pytest.fixture
def surface_cloud():
    return make_surface_cloud()


@pytest.fixture
def identity():
    return np.eye(4, dtype=np.float32)
