"""Unit tests for the component registry."""

import pytest

from pointmatch import Kind, create, registry
from pointmatch.data_filters import IdentityDataPointsFilter
from pointmatch.errors import DuplicateComponent, InvalidParameter, UnknownComponent
from pointmatch.matchers import KDTreeMatcher
from pointmatch.registry import ComponentRegistry

EXPECTED = {
    Kind.DATA_POINTS_FILTER: [
        "BoundingBoxDataPointsFilter", "FixStepSamplingDataPointsFilter",
        "IdentityDataPointsFilter", "MaxDistDataPointsFilter", "MaxPointCountDataPointsFilter",
        "MaxQuantileOnAxisDataPointsFilter", "MinDistDataPointsFilter",
        "ObservationDirectionDataPointsFilter", "OrientNormalsDataPointsFilter",
        "RandomSamplingDataPointsFilter", "RemoveNaNDataPointsFilter",
        "SamplingSurfaceNormalDataPointsFilter", "SurfaceNormalDataPointsFilter",
        "VoxelGridDataPointsFilter",
    ],
    Kind.MATCHER: ["KDTreeMatcher", "NullMatcher"],
    Kind.OUTLIER_FILTER: [
        "MaxDistOutlierFilter", "MedianDistOutlierFilter", "MinDistOutlierFilter",
        "NullOutlierFilter", "RobustOutlierFilter", "SurfaceNormalOutlierFilter",
        "TrimmedDistOutlierFilter", "VarTrimmedDistOutlierFilter",
    ],
    Kind.ERROR_MINIMIZER: [
        "IdentityErrorMinimizer", "PointToPlaneErrorMinimizer", "PointToPointErrorMinimizer",
        "PointToPointSimilarityErrorMinimizer",
    ],
    Kind.TRANSFORMATION_CHECKER: [
        "BoundTransformationChecker", "CounterTransformationChecker",
        "DifferentialTransformationChecker", "TimeBoundTransformationChecker",
    ],
}


@pytest.mark.parametrize("kind", Kind.ALL)
def test_builtin_components_are_registered(kind):
    assert registry.names(kind) == EXPECTED[kind]


def test_create_returns_configured_instance():
    matcher = create(Kind.MATCHER, "KDTreeMatcher", {"knn": "3"})
    assert isinstance(matcher, KDTreeMatcher)
    assert matcher.knn == 3


def test_create_propagates_parameter_errors():
    with pytest.raises(InvalidParameter):
        create(Kind.MATCHER, "KDTreeMatcher", {"knn": "0"})


def test_unknown_name_lists_available_components():
    with pytest.raises(UnknownComponent) as exc_info:
        create(Kind.MATCHER, "OctreeMatcher")
    assert exc_info.value.kind == Kind.MATCHER
    assert "KDTreeMatcher" in exc_info.value.available


def test_unknown_kind_is_rejected():
    with pytest.raises(UnknownComponent):
        registry.names("Inspector")


def test_duplicate_registration_is_rejected():
    fresh = ComponentRegistry()
    fresh.register(Kind.DATA_POINTS_FILTER, "Identity", IdentityDataPointsFilter)
    with pytest.raises(DuplicateComponent):
        fresh.register(Kind.DATA_POINTS_FILTER, "Identity", IdentityDataPointsFilter)


def test_same_name_may_be_used_by_different_kinds():
    fresh = ComponentRegistry()
    fresh.register(Kind.DATA_POINTS_FILTER, "Null", IdentityDataPointsFilter)
    fresh.register(Kind.MATCHER, "Null", lambda params: "matcher")
    assert (Kind.MATCHER, "Null") in fresh
    assert fresh.create(Kind.MATCHER, "Null") == "matcher"


def test_factories_receive_a_parameter_dict():
    received = []
    fresh = ComponentRegistry()
    fresh.register(Kind.MATCHER, "Spy", received.append)
    fresh.create(Kind.MATCHER, "Spy")
    fresh.create(Kind.MATCHER, "Spy", {"a": "1"})
    assert received == [{}, {"a": "1"}]


def test_describe_returns_parameter_docs():
    described = registry.describe(Kind.OUTLIER_FILTER, "TrimmedDistOutlierFilter")
    assert described == [("ratio", "0.85", "fraction of closest matches to keep")]
    assert registry.describe(Kind.MATCHER, "NullMatcher") == []
