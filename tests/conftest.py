import numpy as np
import pytest

from pointmatch import PointCloud
from pointmatch.transforms import invert

# Reading-to-reference poses of the 2D box scans and the 3D car scans
GROUND_TRUTH_2D = np.array([
    [0.987498, 0.157629, 0.0859918],
    [-0.157629, 0.987498, 0.203247],
    [0.0, 0.0, 1.0],
])
GROUND_TRUTH_3D = np.array([
    [0.982304, 0.166685, -0.0854066, 0.0446816],
    [-0.150189, 0.973488, 0.172524, 0.191998],
    [0.111899, -0.156644, 0.981296, -0.0356313],
    [0.0, 0.0, 0.0, 1.0],
])


def _rigid(matrix):
    """Project the linear block onto the closest rotation."""
    dim = matrix.shape[0] - 1
    U, _, Vt = np.linalg.svd(matrix[:dim, :dim])
    rigid = matrix.copy()
    rigid[:dim, :dim] = U @ Vt
    return rigid


def _segment(a, b, spacing, offset):
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    length = np.linalg.norm(b - a)
    s = np.arange(offset, length, spacing)
    return a + s[:, np.newaxis] / length * (b - a)


def _rectangle(xmin, ymin, xmax, ymax, spacing, offset):
    corners = [(xmin, ymin), (xmax, ymin), (xmax, ymax), (xmin, ymax), (xmin, ymin)]
    return np.vstack([_segment(corners[i], corners[i + 1], spacing, offset) for i in range(4)])


def box_scene_2d(spacing=0.04, offset=0.0):
    """A room with two boxes, sampled along the walls."""
    return np.vstack([
        _rectangle(-2.0, -1.5, 2.0, 1.5, spacing, offset),
        _rectangle(-1.2, -0.9, -0.6, -0.3, spacing, offset),
        _rectangle(0.4, 0.2, 1.3, 0.7, spacing, offset),
    ])


def room_scene_3d(count=1200, seed=0):
    """Floor, two walls, a box and a sphere, sampled uniformly at random."""
    rng = np.random.default_rng(seed)
    n_floor, n_wall, n_sphere = count // 3, count // 5, count // 6
    n_box = count - n_floor - 2 * n_wall - n_sphere

    floor = np.column_stack([rng.uniform(-2, 2, n_floor), rng.uniform(-2, 2, n_floor),
                             np.zeros(n_floor)])
    wall_x = np.column_stack([np.full(n_wall, -2.0), rng.uniform(-2, 2, n_wall),
                              rng.uniform(0, 2, n_wall)])
    wall_y = np.column_stack([rng.uniform(-2, 2, n_wall), np.full(n_wall, -2.0),
                              rng.uniform(0, 2, n_wall)])

    directions = rng.normal(size=(n_sphere, 3))
    directions /= np.linalg.norm(directions, axis=1, keepdims=True)
    sphere = np.array([0.6, 0.4, 0.5]) + 0.5 * directions

    # Top and two sides of a box standing on the floor
    box_top = np.column_stack([rng.uniform(-1.2, -0.4, n_box // 3), rng.uniform(0.5, 1.5, n_box // 3),
                               np.full(n_box // 3, 0.8)])
    box_front = np.column_stack([np.full(n_box // 3, -0.4), rng.uniform(0.5, 1.5, n_box // 3),
                                 rng.uniform(0, 0.8, n_box // 3)])
    rest = n_box - 2 * (n_box // 3)
    box_side = np.column_stack([rng.uniform(-1.2, -0.4, rest), np.full(rest, 0.5),
                                rng.uniform(0, 0.8, rest)])
    return np.vstack([floor, wall_x, wall_y, sphere, box_top, box_front, box_side])


class Scene:
    """A reading, a reference and the pose mapping the first onto the second."""

    def __init__(self, reading, reference, ground_truth):
        self.reading = reading
        self.reference = reference
        self.ground_truth = ground_truth


@pytest.fixture
def ground_truth_2d():
    return _rigid(GROUND_TRUTH_2D)


@pytest.fixture
def ground_truth_3d():
    return _rigid(GROUND_TRUTH_3D)


@pytest.fixture
def scene_2d(ground_truth_2d):
    reference = PointCloud.from_points(box_scene_2d())
    reading = PointCloud.from_points(box_scene_2d(offset=0.02)).transformed(invert(ground_truth_2d))
    return Scene(reading, reference, ground_truth_2d)


@pytest.fixture
def scene_3d(ground_truth_3d):
    points = room_scene_3d()
    rng = np.random.default_rng(1)
    reference = PointCloud.from_points(points)
    noisy = points + rng.normal(scale=0.002, size=points.shape)
    reading = PointCloud.from_points(noisy).transformed(invert(ground_truth_3d))
    return Scene(reading, reference, ground_truth_3d)


@pytest.fixture
def plane_cloud():
    """Random points on the z = 0 plane."""
    rng = np.random.default_rng(3)
    points = np.column_stack([rng.uniform(-1, 1, 200), rng.uniform(-1, 1, 200), np.zeros(200)])
    return PointCloud.from_points(points)


@pytest.fixture
def random_points():
    return np.random.default_rng(7).uniform(-1, 1, size=(400, 3))
