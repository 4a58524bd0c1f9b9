"""
PointMatch - Modular Iterative Closest Point (ICP) registration

A point cloud registration library featuring:
- 2D and 3D point clouds with named per-point descriptors
- Name-based registry of filters, matchers, outlier filters, error minimizers
  and transformation checkers, configured from string parameter maps
- Custom KD-Tree for nearest neighbor search, with parallel queries
- Point-to-point and point-to-plane minimization
- ICP chains loaded from YAML
"""

from . import (data_filters, error_minimizers, errors, matchers, outlier_filters,
               transformation_checkers)
from .icp import ICP, ICPChainBase, ICPSequence, RegistrationResult
from .kdtree import KDTree
from .parameters import to_param
from .point_cloud import PointCloud
from .registry import Kind, create, register, registry
from .transformation_checkers import TerminationState
from .utils import get_logger, setup_logging

__version__ = "1.0.0"
__all__ = ["ICP", "ICPChainBase", "ICPSequence", "RegistrationResult", "KDTree", "PointCloud",
           "Kind", "create", "register", "registry", "TerminationState", "to_param", "errors",
           "get_logger", "setup_logging", "data_filters", "error_minimizers", "matchers",
           "outlier_filters", "transformation_checkers"]
