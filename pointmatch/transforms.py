"""Transformation utilities for point cloud registration."""

import numpy as np


def identity(dim):
    """Homogeneous identity for a ``dim``-dimensional space."""
    return np.eye(dim + 1)


def apply_transformation(points, transformation):
    """Transform an (N, D) array of points by a (D+1, D+1) matrix."""
    dim = points.shape[1]
    R = transformation[:dim, :dim]
    t = transformation[:dim, dim]
    return points @ R.T + t


def invert(transformation):
    """Inverse of a rigid or similarity transformation."""
    dim = transformation.shape[0] - 1
    linear = transformation[:dim, :dim]
    inverse = np.eye(dim + 1)
    inverse[:dim, :dim] = np.linalg.inv(linear)
    inverse[:dim, dim] = -inverse[:dim, :dim] @ transformation[:dim, dim]
    return inverse


def translation(transformation):
    dim = transformation.shape[0] - 1
    return transformation[:dim, dim]


def translation_norm(transformation):
    return float(np.linalg.norm(translation(transformation)))


def rotation_to_quaternion(R):
    """Unit quaternion (w, x, y, z) of a 3x3 rotation matrix, with w >= 0."""
    R = np.asarray(R, dtype=float)
    trace = np.trace(R)
    if trace > 0:
        s = 2.0 * np.sqrt(trace + 1.0)
        q = np.array([0.25 * s,
                      (R[2, 1] - R[1, 2]) / s,
                      (R[0, 2] - R[2, 0]) / s,
                      (R[1, 0] - R[0, 1]) / s])
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        q = np.array([(R[2, 1] - R[1, 2]) / s,
                      0.25 * s,
                      (R[0, 1] + R[1, 0]) / s,
                      (R[0, 2] + R[2, 0]) / s])
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        q = np.array([(R[0, 2] - R[2, 0]) / s,
                      (R[0, 1] + R[1, 0]) / s,
                      0.25 * s,
                      (R[1, 2] + R[2, 1]) / s])
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        q = np.array([(R[1, 0] - R[0, 1]) / s,
                      (R[0, 2] + R[2, 0]) / s,
                      (R[1, 2] + R[2, 1]) / s,
                      0.25 * s])
    q /= np.linalg.norm(q)
    return q if q[0] >= 0 else -q


def angular_distance(R1, R2):
    """Angle in radians of the rotation taking ``R1`` onto ``R2``."""
    R1 = np.asarray(R1, dtype=float)
    R2 = np.asarray(R2, dtype=float)
    if R1.shape == (2, 2):
        return abs(_wrap_angle(np.arctan2(R2[1, 0], R2[0, 0]) - np.arctan2(R1[1, 0], R1[0, 0])))
    q1 = rotation_to_quaternion(R1)
    q2 = rotation_to_quaternion(R2)
    dot = min(1.0, abs(float(np.dot(q1, q2))))
    return 2.0 * np.arccos(dot)


def rotation_angle(transformation):
    """Magnitude of the rotation of a homogeneous transformation."""
    dim = transformation.shape[0] - 1
    return angular_distance(np.eye(dim), transformation[:dim, :dim])


def rotation_from_vector(omega):
    """
    Exact rotation matrix from a rotation vector.

    A scalar (or length-1 vector) is a 2D angle; a length-3 vector is an
    axis-angle in 3D, expanded with the Rodrigues formula.
    """
    omega = np.atleast_1d(np.asarray(omega, dtype=float))
    if omega.shape[0] == 1:
        c, s = np.cos(omega[0]), np.sin(omega[0])
        return np.array([[c, -s], [s, c]])

    angle = np.linalg.norm(omega)
    if angle < 1e-12:
        return np.eye(3)
    axis = omega / angle
    K = np.array([
        [0, -axis[2], axis[1]],
        [axis[2], 0, -axis[0]],
        [-axis[1], axis[0], 0]
    ])
    return np.eye(3) + np.sin(angle) * K + (1 - np.cos(angle)) * (K @ K)


def is_rigid(transformation, tolerance=1e-6):
    """Whether the linear block is orthonormal with determinant +1."""
    dim = transformation.shape[0] - 1
    R = transformation[:dim, :dim]
    bottom = np.zeros(dim + 1)
    bottom[-1] = 1.0
    return (np.allclose(R.T @ R, np.eye(dim), atol=tolerance)
            and np.linalg.det(R) > 0
            and np.allclose(transformation[dim], bottom, atol=tolerance))


def _wrap_angle(angle):
    return (angle + np.pi) % (2 * np.pi) - np.pi
