"""Point cloud container with per-point descriptors."""

from collections import OrderedDict

import numpy as np

from .errors import PreconditionError

# Descriptors holding directions: rotated, never translated, by a transform.
DIRECTION_DESCRIPTORS = ("normals", "observationDirections")


class PointCloud:
    """
    Points in homogeneous coordinates plus named descriptors.

    ``features`` is a (D+1, N) array whose last row is one. Every descriptor is
    a (rows, N) array sharing the point order of ``features``.
    """

    def __init__(self, features, descriptors=None):
        features = np.asarray(features, dtype=float)
        if features.ndim != 2 or features.shape[0] not in (3, 4):
            raise ValueError(f"features must be (D+1, N) with D in (2, 3), got {features.shape}")
        self.features = features
        self.descriptors = OrderedDict()
        for name, value in (descriptors or {}).items():
            self.add_descriptor(name, value)

    @classmethod
    def from_points(cls, points, descriptors=None):
        """
        Build a cloud from an (N, D) array of cartesian points.

        Args:
            points: Array of shape (N, 2) or (N, 3)
            descriptors: Optional mapping name -> (rows, N) array
        """
        points = np.asarray(points, dtype=float)
        if points.ndim != 2:
            raise ValueError(f"points must be (N, D), got {points.shape}")
        features = np.vstack([points.T, np.ones((1, points.shape[0]))])
        return cls(features, descriptors)

    @classmethod
    def from_o3d(cls, o3d_pcd):
        """Import points and, when present, normals of an Open3D point cloud."""
        points = np.asarray(o3d_pcd.points)
        cloud = cls.from_points(points)
        if o3d_pcd.has_normals():
            cloud.add_descriptor("normals", np.asarray(o3d_pcd.normals).T)
        return cloud

    @classmethod
    def from_file(cls, filepath):
        """Load point cloud from file."""
        import open3d as o3d

        pcd = o3d.io.read_point_cloud(str(filepath))
        return cls.from_o3d(pcd)

    def to_o3d(self, color=None):
        """
        Convert to Open3D PointCloud object.

        2D clouds are embedded in the z = 0 plane.

        Args:
            color: Optional uniform color [r, g, b]

        Returns:
            Open3D PointCloud object
        """
        import open3d as o3d

        points = self.points
        if self.dimension == 2:
            points = np.hstack([points, np.zeros((len(self), 1))])
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(points)
        if self.dimension == 3 and "normals" in self.descriptors:
            pcd.normals = o3d.utility.Vector3dVector(self.descriptors["normals"].T)
        if color is not None:
            pcd.paint_uniform_color(color)
        return pcd

    @property
    def dimension(self):
        return self.features.shape[0] - 1

    @property
    def points(self):
        """(N, D) view of the cartesian coordinates."""
        return self.features[:-1].T

    def __len__(self):
        return self.features.shape[1]

    def copy(self):
        return PointCloud(self.features.copy(),
                          OrderedDict((k, v.copy()) for k, v in self.descriptors.items()))

    def has_descriptor(self, name):
        return name in self.descriptors

    def get_descriptor(self, name):
        try:
            return self.descriptors[name]
        except KeyError:
            raise PreconditionError(
                f"descriptor '{name}' is required but missing "
                f"(available: {', '.join(self.descriptors) or 'none'})"
            ) from None

    def add_descriptor(self, name, values):
        values = np.asarray(values, dtype=float)
        if values.ndim == 1:
            values = values[np.newaxis, :]
        if values.shape[1] != len(self):
            raise ValueError(
                f"descriptor '{name}' has {values.shape[1]} points, cloud has {len(self)}"
            )
        self.descriptors[name] = values

    def remove_descriptor(self, name):
        self.descriptors.pop(name, None)

    def select(self, selector):
        """
        Return the cloud restricted to ``selector`` (boolean mask or indices).

        Features and descriptors are sliced together so they stay aligned.
        """
        selector = np.asarray(selector)
        return PointCloud(self.features[:, selector],
                          OrderedDict((k, v[:, selector]) for k, v in self.descriptors.items()))

    def transformed(self, transformation):
        """Apply a homogeneous transformation to points and direction descriptors."""
        transformation = np.asarray(transformation, dtype=float)
        dim = self.dimension
        if transformation.shape != (dim + 1, dim + 1):
            raise ValueError(
                f"expected a {dim + 1}x{dim + 1} transformation, got {transformation.shape}"
            )
        features = transformation @ self.features
        features[-1] = 1.0
        linear = transformation[:dim, :dim]
        descriptors = OrderedDict()
        for name, values in self.descriptors.items():
            if name in DIRECTION_DESCRIPTORS and values.shape[0] == dim:
                descriptors[name] = linear @ values
            else:
                descriptors[name] = values.copy()
        return PointCloud(features, descriptors)

    def voxelize(self, voxel_size, use_centroid=True):
        """
        Downsample point cloud using voxel grid.

        Args:
            voxel_size: Size of voxels for downsampling, scalar or one per axis
            use_centroid: Replace each voxel by the mean of its points when True,
                keep the first point of the voxel otherwise

        Returns:
            Downsampled PointCloud, descriptors averaged per voxel
        """
        if len(self) == 0:
            return self.copy()

        points = self.points
        voxel_size = np.broadcast_to(np.asarray(voxel_size, dtype=float), (self.dimension,))
        min_bound = np.min(points, axis=0)
        voxel_indices = np.floor((points - min_bound) / voxel_size).astype(np.int64)
        _, first, inverse, counts = np.unique(voxel_indices, axis=0, return_index=True,
                                              return_inverse=True, return_counts=True)
        inverse = inverse.reshape(-1)

        if not use_centroid:
            return self.select(np.sort(first))

        def average(values):
            sums = np.zeros((values.shape[0], counts.shape[0]))
            np.add.at(sums.T, inverse, values.T)
            return sums / counts

        features = average(self.features)
        features[-1] = 1.0
        return PointCloud(features,
                          OrderedDict((k, average(v)) for k, v in self.descriptors.items()))

    def __repr__(self):
        names = ", ".join(self.descriptors) or "no descriptors"
        return f"PointCloud({len(self)} points, {self.dimension}D, {names})"
