"""Closed-form transformation estimation from weighted correspondences."""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .errors import InsufficientCorrespondences
from .parameters import Parametrizable, ParamSpec, to_bool
from .registry import Kind, registers
from .transforms import rotation_from_vector
from .utils import get_logger

logger = get_logger(__name__)


@dataclass
class ErrorElements:
    """Paired points kept by the outlier filters, with their weights."""
    reading: np.ndarray
    reference: np.ndarray
    weights: np.ndarray
    normals: Optional[np.ndarray] = None

    def __len__(self):
        return self.weights.shape[0]

    @classmethod
    def build(cls, reading, reference, weights, matches, with_normals=False):
        normals_descriptor = reference.get_descriptor("normals") if with_normals else None

        rows, cols = np.nonzero((weights > 0) & matches.matched_mask())
        ids = matches.ids[rows, cols]
        required = reading.dimension + 1
        if rows.shape[0] < required:
            raise InsufficientCorrespondences(rows.shape[0], required)

        normals = None
        if normals_descriptor is not None:
            normals = normals_descriptor[:, ids].T
        return cls(reading=reading.points[cols],
                   reference=reference.points[ids],
                   weights=weights[rows, cols],
                   normals=normals)


class ErrorMinimizer(Parametrizable):
    """
    Base class of error minimizers.

    ``compute`` returns the incremental transformation moving the reading onto
    the reference; it is composed on the left of the current estimate.
    """

    needs_normals = False

    def __init__(self, params=None):
        super().__init__(params)
        self.weighted_point_used_ratio = 0.0
        self.last_residual = None

    def compute(self, reading, reference, weights, matches):
        elements = ErrorElements.build(reading, reference, weights, matches,
                                       with_normals=self.needs_normals)
        self.weighted_point_used_ratio = float(np.sum(elements.weights)) / max(weights.size, 1)
        transformation = self.compute_from_elements(elements, reading.dimension)
        self.last_residual = self.residual_error(elements, transformation)
        return transformation

    def compute_from_elements(self, elements, dim):
        raise NotImplementedError

    def residual_error(self, elements, transformation):
        """Weighted mean squared point-to-point distance after ``transformation``."""
        dim = elements.reading.shape[1]
        moved = elements.reading @ transformation[:dim, :dim].T + transformation[:dim, dim]
        errors = np.sum((moved - elements.reference) ** 2, axis=1)
        return float(np.sum(elements.weights * errors) / np.sum(elements.weights))


@registers(Kind.ERROR_MINIMIZER)
class IdentityErrorMinimizer(ErrorMinimizer):
    """Always returns the identity."""

    def compute(self, reading, reference, weights, matches):
        self.weighted_point_used_ratio = 0.0
        self.last_residual = None
        return np.eye(reading.dimension + 1)


def compute_transformation(source_points, target_points, weights=None, with_scale=False):
    """
    Weighted least-squares rigid (or similarity) transformation source -> target.

    Args:
        source_points: (N, D) points to move
        target_points: (N, D) corresponding points
        weights: Optional (N,) non-negative weights
        with_scale: Also estimate an isotropic scale (Umeyama)

    Returns:
        (D+1, D+1) homogeneous transformation
    """
    dim = source_points.shape[1]
    if weights is None:
        weights = np.ones(source_points.shape[0])

    # Normalize weights
    weights = weights / np.sum(weights)

    # Compute weighted centroids
    source_centroid = np.sum(source_points * weights[:, np.newaxis], axis=0)
    target_centroid = np.sum(target_points * weights[:, np.newaxis], axis=0)

    # Center the points
    source_centered = source_points - source_centroid
    target_centered = target_points - target_centroid

    # Weighted covariance matrix
    H = (source_centered * weights[:, np.newaxis]).T @ target_centered
    U, S, Vt = np.linalg.svd(H)

    # Handle reflection case
    correction = np.ones(dim)
    if np.linalg.det(Vt.T @ U.T) < 0:
        correction[-1] = -1
    R = Vt.T @ np.diag(correction) @ U.T

    scale = 1.0
    if with_scale:
        variance = np.sum(weights * np.sum(source_centered ** 2, axis=1))
        scale = float(np.sum(S * correction) / variance)

    # Compute translation
    t = target_centroid - scale * R @ source_centroid

    # Build homogeneous transformation matrix
    transformation = np.eye(dim + 1)
    transformation[:dim, :dim] = scale * R
    transformation[:dim, dim] = t
    return transformation


@registers(Kind.ERROR_MINIMIZER)
class PointToPointErrorMinimizer(ErrorMinimizer):
    """Minimizes the weighted squared distance between paired points."""

    def compute_from_elements(self, elements, dim):
        return compute_transformation(elements.reading, elements.reference, elements.weights)


@registers(Kind.ERROR_MINIMIZER)
class PointToPointSimilarityErrorMinimizer(ErrorMinimizer):
    """Point-to-point minimizer also estimating an isotropic scale."""

    def compute_from_elements(self, elements, dim):
        return compute_transformation(elements.reading, elements.reference, elements.weights,
                                      with_scale=True)


def compute_transformation_point_to_plane(source_points, target_points, target_normals,
                                          weights=None, force_2d=False):
    """
    Linearized point-to-plane minimization.

    Unknowns are a small rotation (one angle in 2D, a rotation vector in 3D)
    and a translation, found from the normal equations. The rotation is then
    rebuilt exactly from the solved angles so the result stays rigid.
    """
    dim = source_points.shape[1]
    if weights is None:
        weights = np.ones(source_points.shape[0])

    # Normalize weights
    weights = weights / np.sum(weights)

    n = target_normals
    b = np.einsum("ij,ij->i", n, target_points - source_points)
    if dim == 2:
        rot = source_points[:, 0] * n[:, 1] - source_points[:, 1] * n[:, 0]
        A = np.column_stack([rot, n])
    elif force_2d:
        cross = np.cross(source_points, n)
        A = np.column_stack([cross[:, 2], n[:, :2]])
    else:
        A = np.hstack([np.cross(source_points, n), n])

    Aw = A * weights[:, np.newaxis]
    lhs = Aw.T @ A
    rhs = Aw.T @ b
    try:
        params = np.linalg.solve(lhs, rhs)
    except np.linalg.LinAlgError:
        logger.warning("Point-to-plane normal equations are singular, using least squares")
        params = np.linalg.lstsq(lhs, rhs, rcond=None)[0]

    transformation = np.eye(dim + 1)
    if dim == 2:
        transformation[:2, :2] = rotation_from_vector(params[0])
        transformation[:2, 2] = params[1:3]
    elif force_2d:
        transformation[:3, :3] = rotation_from_vector([0.0, 0.0, params[0]])
        transformation[:2, 3] = params[1:3]
    else:
        transformation[:3, :3] = rotation_from_vector(params[:3])
        transformation[:3, 3] = params[3:6]
    return transformation


@registers(Kind.ERROR_MINIMIZER)
class PointToPlaneErrorMinimizer(ErrorMinimizer):
    """
    Minimizes the weighted squared distance from reading points to the
    tangent planes of their reference matches.

    Needs ``normals`` on the reference cloud.
    """

    PARAMS = (
        ParamSpec("force2D", "3D only: estimate x, y and yaw, keep z, roll and pitch", "0", to_bool),
    )
    needs_normals = True

    def compute_from_elements(self, elements, dim):
        return compute_transformation_point_to_plane(
            elements.reading, elements.reference, elements.normals, elements.weights,
            force_2d=self.get("force2D") and dim == 3
        )

    def residual_error(self, elements, transformation):
        dim = elements.reading.shape[1]
        moved = elements.reading @ transformation[:dim, :dim].T + transformation[:dim, dim]
        errors = np.einsum("ij,ij->i", moved - elements.reference, elements.normals) ** 2
        return float(np.sum(elements.weights * errors) / np.sum(elements.weights))
