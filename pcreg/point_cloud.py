"""Point cloud container used by the registration pipeline."""

import numpy as np
import open3d as o3d

from .transforms import compute_normals
from .utils import apply_transformation, rotate_vectors

DEFAULT_DEVICE = "CPU:0"


class PointCloud:
    """
    An (N, 3) point array tagged with the device it lives on.

    Normals and colors are optional and travel with the points. The array
    dtype is kept as given; registration entry points insist on float32.
    """

    def __init__(self, points, normals=None, colors=None, device=DEFAULT_DEVICE):
        """
        Initialize a point cloud.

        Args:
            points: Array-like of shape (N, 3)
            normals: Optional array-like of shape (N, 3)
            colors: Optional array-like of shape (N, 3), values in [0, 1]
            device: Device tag, e.g. "CPU:0" or "CUDA:0"
        """
        self.points = np.asarray(points)
        self.normals = None if normals is None else np.asarray(normals)
        self.colors = None if colors is None else np.asarray(colors)
        self.device = str(device)

    @classmethod
    def from_o3d(cls, o3d_pcd, dtype=np.float32, device=DEFAULT_DEVICE):
        """Build from an Open3D PointCloud (Open3D stores float64)."""
        points = np.asarray(o3d_pcd.points, dtype=dtype)
        normals = np.asarray(o3d_pcd.normals, dtype=dtype) if o3d_pcd.has_normals() else None
        colors = np.asarray(o3d_pcd.colors) if o3d_pcd.has_colors() else None
        return cls(points, normals=normals, colors=colors, device=device)

    @classmethod
    def from_file(cls, filepath, dtype=np.float32, device=DEFAULT_DEVICE):
        """Load point cloud from file."""
        pcd = o3d.io.read_point_cloud(str(filepath))
        if not pcd.has_points():
            raise ValueError(f"Point cloud is empty or unreadable: {filepath}")
        return cls.from_o3d(pcd, dtype=dtype, device=device)

    @property
    def dtype(self):
        return self.points.dtype

    def has_normals(self):
        return self.normals is not None and len(self.normals) == len(self.points)

    def clone(self):
        """Deep copy; transforming the clone leaves this cloud untouched."""
        return PointCloud(
            self.points.copy(),
            normals=None if self.normals is None else self.normals.copy(),
            colors=None if self.colors is None else self.colors.copy(),
            device=self.device,
        )

    def transform(self, transformation):
        """
        Apply a 4x4 transformation in place.

        Normals are rotated; translation does not apply to them.

        Returns:
            self, so calls can be chained
        """
        self.points = apply_transformation(self.points, transformation)
        if self.normals is not None:
            self.normals = rotate_vectors(self.normals, transformation)
        return self

    def estimate_normals(self, k=30):
        """Fill ``normals`` from the k nearest neighbours of every point."""
        self.normals = compute_normals(self.points, k=k).astype(self.points.dtype)
        return self

    def to_o3d(self, points=None, color=None):
        """
        Convert to Open3D PointCloud object.

        Args:
            points: Optional custom points array (default: self.points)
            color: Optional uniform color [r, g, b] or color array

        Returns:
            Open3D PointCloud object
        """
        pcd = o3d.geometry.PointCloud()
        pts = points if points is not None else self.points
        pcd.points = o3d.utility.Vector3dVector(np.asarray(pts, dtype=np.float64))

        if self.normals is not None and points is None:
            pcd.normals = o3d.utility.Vector3dVector(np.asarray(self.normals, dtype=np.float64))

        if color is not None:
            if isinstance(color, (list, tuple)) and len(color) == 3:
                pcd.paint_uniform_color(color)
            else:
                pcd.colors = o3d.utility.Vector3dVector(color)
        elif self.colors is not None:
            pcd.colors = o3d.utility.Vector3dVector(self.colors)

        return pcd

    def __len__(self):
        return len(self.points)

    def __repr__(self):
        return f"PointCloud(n={len(self)}, dtype={self.dtype}, device={self.device})"
