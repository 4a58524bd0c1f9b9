"""Unit tests for the KD-tree and the nearest neighbor matchers."""

import numpy as np
import pytest

from pointmatch import Kind, KDTree, PointCloud, create
from pointmatch.errors import PreconditionError
from pointmatch.kdtree import brute_force_knn
from pointmatch.matchers import Matches


def test_kdtree_agrees_with_brute_force(random_points):
    queries = np.random.default_rng(11).uniform(-1, 1, size=(50, 3))
    tree = KDTree(leaf_size=8)
    tree.build_optimized(random_points)

    expected_d, expected_i = brute_force_knn(random_points, queries, k=3)
    for col, query in enumerate(queries):
        dists, ids, visits = tree.query(query, k=3)
        np.testing.assert_allclose(dists, expected_d[:, col])
        np.testing.assert_array_equal(ids, expected_i[:, col])
        assert 0 < visits <= len(random_points)


def test_kdtree_respects_max_dist():
    points = np.array([[0.0, 0.0], [1.0, 0.0], [5.0, 0.0]])
    tree = KDTree(leaf_size=1, dimension=2)
    tree.build_optimized(points)
    dists, ids, _ = tree.query(np.array([0.1, 0.0]), k=3, max_dist=2.0)
    np.testing.assert_array_equal(ids, [0, 1])
    np.testing.assert_allclose(dists, [0.01, 0.81])


def test_approximate_search_stays_within_epsilon(random_points):
    epsilon = 0.5
    tree = KDTree(leaf_size=4)
    tree.build_optimized(random_points)
    queries = np.random.default_rng(5).uniform(-1, 1, size=(30, 3))
    exact_d, _ = brute_force_knn(random_points, queries, k=1)
    for col, query in enumerate(queries):
        dists, _, _ = tree.query(query, k=1, epsilon=epsilon)
        assert dists[0] <= (1 + epsilon) ** 2 * exact_d[0, col] + 1e-12


def test_empty_tree_returns_no_neighbor():
    tree = KDTree()
    assert tree.build_optimized(np.empty((0, 3))) is None
    dists, ids, visits = tree.query(np.zeros(3), k=2)
    assert dists.shape == (0,) and ids.shape == (0,) and visits == 0


def test_matcher_returns_k_by_n_matches(random_points):
    reference = PointCloud.from_points(random_points)
    reading = PointCloud.from_points(random_points[:20] + 0.001)
    matcher = create(Kind.MATCHER, "KDTreeMatcher", {"knn": "2"})
    matcher.init(reference)
    matches = matcher.find_closests(reading)

    assert matches.dists.shape == (2, 20)
    np.testing.assert_array_equal(matches.ids[0], np.arange(20))
    assert np.all(matches.dists[0] <= matches.dists[1])
    assert matcher.visit_count > 0
    matcher.reset_visit_count()
    assert matcher.visit_count == 0


def test_missing_neighbors_are_marked_unmatched():
    reference = PointCloud.from_points([[0.0, 0.0], [10.0, 0.0]])
    reading = PointCloud.from_points([[0.5, 0.0], [5.0, 5.0]])
    for search_type in ("0", "1"):
        matcher = create(Kind.MATCHER, "KDTreeMatcher",
                         {"knn": "2", "maxDist": "1.0", "searchType": search_type})
        matcher.init(reference)
        matches = matcher.find_closests(reading)
        np.testing.assert_array_equal(matches.ids, [[0, -1], [-1, -1]])
        assert np.isinf(matches.dists[1]).all()
        assert matches.matched_count == 1


def test_brute_force_and_kdtree_search_types_agree(random_points):
    reference = PointCloud.from_points(random_points)
    reading = PointCloud.from_points(np.random.default_rng(2).uniform(-1, 1, size=(40, 3)))
    results = []
    for search_type in ("0", "1"):
        matcher = create(Kind.MATCHER, "KDTreeMatcher", {"knn": "4", "searchType": search_type})
        matcher.init(reference)
        results.append(matcher.find_closests(reading))
    np.testing.assert_array_equal(results[0].ids, results[1].ids)
    np.testing.assert_allclose(results[0].dists, results[1].dists)


def test_parallel_queries_match_serial_queries(random_points):
    reference = PointCloud.from_points(random_points)
    reading = PointCloud.from_points(random_points[::3] + 0.01)
    serial = create(Kind.MATCHER, "KDTreeMatcher", {"knn": "3"})
    parallel = create(Kind.MATCHER, "KDTreeMatcher", {"knn": "3", "nJobs": "2"})
    serial.init(reference)
    parallel.init(reference)
    expected = serial.find_closests(reading)
    actual = parallel.find_closests(reading)
    np.testing.assert_array_equal(actual.ids, expected.ids)
    np.testing.assert_allclose(actual.dists, expected.dists)


def test_index_is_reused_for_the_same_reference(random_points):
    reference = PointCloud.from_points(random_points)
    matcher = create(Kind.MATCHER, "KDTreeMatcher")
    matcher.init(reference)
    tree = matcher.tree
    matcher.init(reference)
    assert matcher.tree is tree
    matcher.init(reference.copy())
    assert matcher.tree is not tree


def test_matcher_rejects_dimension_mismatch(random_points):
    matcher = create(Kind.MATCHER, "KDTreeMatcher")
    matcher.init(PointCloud.from_points(random_points))
    with pytest.raises(PreconditionError):
        matcher.find_closests(PointCloud.from_points(random_points[:, :2]))


def test_matcher_requires_init(random_points):
    matcher = create(Kind.MATCHER, "KDTreeMatcher")
    with pytest.raises(PreconditionError):
        matcher.find_closests(PointCloud.from_points(random_points))


def test_null_matcher_matches_nothing(random_points):
    matcher = create(Kind.MATCHER, "NullMatcher")
    matcher.init(PointCloud.from_points(random_points))
    matches = matcher.find_closests(PointCloud.from_points(random_points[:5]))
    assert matches.matched_count == 0
    assert matches.ids.shape == (1, 5)


def test_empty_matches():
    matches = Matches.empty(2, 3)
    assert not matches.matched_mask().any()
    assert np.isinf(matches.dists).all()
