"""
Point Cloud Octree

Spatial index that deduplicates incoming points and answers radius and
k-nearest-neighbor queries. Nodes are stored in an arena and refer to their
children by integer index.
"""

import heapq
import logging
import math
import threading
from typing import List, Optional, Tuple

import numpy as np

from ..utils.config_manager import ConfigManager
from ..utils.geometry import as_point_array, as_vector


Point = Tuple[float, float, float]


class _OctreeNode:
    """Cubic cell: a leaf holding points or an internal node with 8 child slots."""

    __slots__ = ('center', 'half_size', 'points', 'children')

    def __init__(self, center: Point, half_size: float):
        self.center = center
        self.half_size = half_size
        self.points: List[Point] = []
        self.children: Optional[List[Optional[int]]] = None

    @property
    def is_leaf(self) -> bool:
        return self.children is None

    def contains(self, point: Point) -> bool:
        h = self.half_size
        c = self.center
        return (abs(point[0] - c[0]) <= h
                and abs(point[1] - c[1]) <= h
                and abs(point[2] - c[2]) <= h)

    def octant(self, point: Point) -> int:
        """Child slot index: bit 0 = +x, bit 1 = +y, bit 2 = +z."""
        c = self.center
        index = 0
        if point[0] >= c[0]:
            index |= 1
        if point[1] >= c[1]:
            index |= 2
        if point[2] >= c[2]:
            index |= 4
        return index

    def distance_sq_to(self, point: Point) -> float:
        """Squared distance from a point to the closest point of this cube."""
        h = self.half_size
        total = 0.0
        for axis in range(3):
            offset = abs(point[axis] - self.center[axis]) - h
            if offset > 0:
                total += offset * offset
        return total


def _distance_sq(a: Point, b: Point) -> float:
    dx = a[0] - b[0]
    dy = a[1] - b[1]
    dz = a[2] - b[2]
    return dx * dx + dy * dy + dz * dz


class PointCloudOctree:
    """Octree that accumulates points with minimum spacing deduplication."""

    def __init__(self, config_manager: Optional[ConfigManager] = None,
                 min_point_spacing: Optional[float] = None):
        """
        Initialize an empty octree.

        Args:
            config_manager: Configuration manager instance
            min_point_spacing: Override for the configured duplicate distance
        """
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        octree_config = self.config.get_spatial_index_params()

        self.max_points_per_node = int(octree_config.get('max_points_per_node', 16))
        self.min_half_size = float(octree_config.get('min_half_size', 0.001))
        self.root_margin = float(octree_config.get('root_margin', 0.1))
        self.min_root_half_size = float(octree_config.get('min_root_half_size', 0.5))
        self.nn_sample_size = int(octree_config.get('nn_sample_size', 100))
        self.min_point_spacing = 0.0
        self.set_min_point_spacing(
            min_point_spacing if min_point_spacing is not None
            else float(octree_config.get('min_point_spacing', 0.003))
        )

        self._lock = threading.RLock()
        self._nodes: List[_OctreeNode] = []
        self._root: Optional[int] = None
        self._point_count = 0

        self.logger.debug(f"Octree initialized: min_spacing={self.min_point_spacing}, "
                          f"max_points_per_node={self.max_points_per_node}")

    def set_min_point_spacing(self, spacing: float) -> None:
        """
        Set the distance below which an incoming point is a duplicate.

        Args:
            spacing: Minimum spacing in meters
        """
        if spacing < 0:
            raise ValueError("Minimum point spacing must be non-negative")
        self.min_point_spacing = float(spacing)

    @property
    def point_count(self) -> int:
        with self._lock:
            return self._point_count

    @property
    def node_count(self) -> int:
        with self._lock:
            return len(self._nodes)

    @property
    def bounds(self) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """(min, max) corners of the root cube, or None when empty."""
        with self._lock:
            if self._root is None:
                return None
            root = self._nodes[self._root]
            center = np.array(root.center)
            return center - root.half_size, center + root.half_size

    def clear(self) -> None:
        """Drop every node and point."""
        with self._lock:
            self._nodes = []
            self._root = None
            self._point_count = 0
        self.logger.debug("Octree cleared")

    reset = clear

    # Insertion

    def insert(self, points) -> int:
        """
        Insert a batch of points, dropping near-duplicates.

        Args:
            points: (N, 3) array-like of world points

        Returns:
            Number of points actually added
        """
        array = as_point_array(points)
        finite = np.all(np.isfinite(array), axis=1)
        if not np.all(finite):
            self.logger.debug(f"Skipping {int(np.count_nonzero(~finite))} non-finite points")
            array = array[finite]
        if len(array) == 0:
            return 0

        with self._lock:
            if self._root is None:
                self._create_root(array)

            inserted = 0
            for row in array.tolist():
                if self._insert_point((row[0], row[1], row[2])):
                    inserted += 1
            self._point_count += inserted

        self.logger.debug(f"Inserted {inserted}/{len(array)} points "
                          f"(total {self._point_count})")
        return inserted

    def _new_node(self, center: Point, half_size: float) -> int:
        self._nodes.append(_OctreeNode(center, half_size))
        return len(self._nodes) - 1

    def _create_root(self, points: np.ndarray) -> None:
        min_corner = points.min(axis=0)
        max_corner = points.max(axis=0)
        center = (min_corner + max_corner) / 2.0
        half_size = float(np.max(max_corner - min_corner)) / 2.0 + self.root_margin
        half_size = max(half_size, self.min_root_half_size)
        self._root = self._new_node(tuple(float(v) for v in center), half_size)

    def _expand_root(self, toward: Point) -> None:
        """Double the root cube in the direction of an outside point."""
        old_index = self._root
        old_root = self._nodes[old_index]
        half = old_root.half_size

        direction = [1.0 if toward[axis] >= old_root.center[axis] else -1.0 for axis in range(3)]
        new_center = tuple(old_root.center[axis] + direction[axis] * half for axis in range(3))
        new_root_index = self._new_node(new_center, half * 2.0)
        new_root = self._nodes[new_root_index]
        new_root.children = [None] * 8

        old_slot = new_root.octant(old_root.center)
        for slot in range(8):
            if slot == old_slot:
                new_root.children[slot] = old_index
                continue
            child_center = (
                new_center[0] + (half if slot & 1 else -half),
                new_center[1] + (half if slot & 2 else -half),
                new_center[2] + (half if slot & 4 else -half),
            )
            new_root.children[slot] = self._new_node(child_center, half)

        self._root = new_root_index

    def _insert_point(self, point: Point) -> bool:
        root = self._nodes[self._root]
        while not root.contains(point):
            self._expand_root(point)
            root = self._nodes[self._root]

        if self.min_point_spacing > 0 and self._has_point_within(
                self._root, point, self.min_point_spacing * self.min_point_spacing, strict=True):
            return False

        index = self._root
        while True:
            node = self._nodes[index]
            if node.is_leaf:
                node.points.append(point)
                if (len(node.points) > self.max_points_per_node
                        and node.half_size > self.min_half_size):
                    self._subdivide(index)
                return True
            index = node.children[node.octant(point)]

    def _subdivide(self, index: int) -> None:
        node = self._nodes[index]
        quarter = node.half_size / 2.0
        children = []
        for slot in range(8):
            child_center = (
                node.center[0] + (quarter if slot & 1 else -quarter),
                node.center[1] + (quarter if slot & 2 else -quarter),
                node.center[2] + (quarter if slot & 4 else -quarter),
            )
            children.append(self._new_node(child_center, quarter))

        points = node.points
        node.points = []
        node.children = children
        for point in points:
            child = self._nodes[children[node.octant(point)]]
            child.points.append(point)

        # Coincident clusters may still overflow a child
        for child_index in children:
            child = self._nodes[child_index]
            if len(child.points) > self.max_points_per_node and child.half_size > self.min_half_size:
                self._subdivide(child_index)

    # Queries

    def get_all_points(self) -> np.ndarray:
        """All retained points as an (N, 3) array."""
        with self._lock:
            collected: List[Point] = []
            if self._root is not None:
                stack = [self._root]
                while stack:
                    node = self._nodes[stack.pop()]
                    if node.is_leaf:
                        collected.extend(node.points)
                    else:
                        stack.extend(child for child in node.children if child is not None)
        if not collected:
            return np.empty((0, 3), dtype=np.float64)
        return np.array(collected, dtype=np.float64)

    def find_points_in_sphere(self, center, radius: float) -> np.ndarray:
        """
        Find all points within a radius of a center.

        Args:
            center: Query center
            radius: Search radius in meters

        Returns:
            (M, 3) array of points with distance <= radius
        """
        if radius < 0:
            raise ValueError("Radius must be non-negative")
        query = tuple(float(v) for v in as_vector(center))
        radius_sq = radius * radius

        found: List[Point] = []
        with self._lock:
            if self._root is not None:
                stack = [self._root]
                while stack:
                    node = self._nodes[stack.pop()]
                    if node.distance_sq_to(query) > radius_sq:
                        continue
                    if node.is_leaf:
                        found.extend(p for p in node.points if _distance_sq(p, query) <= radius_sq)
                    else:
                        stack.extend(child for child in node.children if child is not None)

        if not found:
            return np.empty((0, 3), dtype=np.float64)
        return np.array(found, dtype=np.float64)

    def find_k_nearest(self, target, k: int) -> np.ndarray:
        """
        Find the k nearest points to a target.

        Children are visited closest first and pruned once their nearest
        corner is farther than the current k-th best distance.

        Args:
            target: Query point
            k: Number of neighbors

        Returns:
            (min(k, N), 3) array sorted by increasing distance
        """
        if k < 0:
            raise ValueError("k must be non-negative")
        query = tuple(float(v) for v in as_vector(target))
        if k == 0:
            return np.empty((0, 3), dtype=np.float64)

        # Max-heap of (-distance_sq, counter, point)
        best: List[Tuple[float, int, Point]] = []
        counter = 0

        def search(index: int) -> None:
            nonlocal counter
            node = self._nodes[index]
            if len(best) == k and node.distance_sq_to(query) > -best[0][0]:
                return
            if node.is_leaf:
                for point in node.points:
                    dist_sq = _distance_sq(point, query)
                    if len(best) < k:
                        heapq.heappush(best, (-dist_sq, counter, point))
                        counter += 1
                    elif dist_sq < -best[0][0]:
                        heapq.heapreplace(best, (-dist_sq, counter, point))
                        counter += 1
                return

            ordered = sorted(
                (child for child in node.children if child is not None),
                key=lambda child: _distance_sq(self._nodes[child].center, query),
            )
            for child in ordered:
                search(child)

        with self._lock:
            if self._root is not None:
                search(self._root)

        if not best:
            return np.empty((0, 3), dtype=np.float64)
        ordered_points = [point for _, _, point in sorted(best, key=lambda item: (-item[0], item[1]))]
        return np.array(ordered_points, dtype=np.float64)

    def has_point_near(self, target, distance: float) -> bool:
        """
        Check whether any point lies within a distance of the target.

        Args:
            target: Query point
            distance: Search distance in meters

        Returns:
            True if a point with distance <= ``distance`` exists
        """
        if distance < 0:
            raise ValueError("Distance must be non-negative")
        query = tuple(float(v) for v in as_vector(target))
        with self._lock:
            if self._root is None:
                return False
            return self._has_point_within(self._root, query, distance * distance, strict=False)

    def _has_point_within(self, index: int, query: Point, radius_sq: float, strict: bool) -> bool:
        stack = [index]
        while stack:
            node = self._nodes[stack.pop()]
            bound = node.distance_sq_to(query)
            if bound > radius_sq or (strict and bound == radius_sq):
                continue
            if node.is_leaf:
                for point in node.points:
                    dist_sq = _distance_sq(point, query)
                    if dist_sq < radius_sq or (not strict and dist_sq == radius_sq):
                        return True
            else:
                stack.extend(child for child in node.children if child is not None)
        return False

    def average_nearest_neighbor_distance(self, sample_size: Optional[int] = None) -> float:
        """
        Mean distance to the nearest neighbor over a stride sample of points.

        Args:
            sample_size: Maximum number of sampled points (defaults to config)

        Returns:
            Mean distance, or 0.0 with fewer than 2 points
        """
        sample_size = sample_size or self.nn_sample_size
        points = self.get_all_points()
        if len(points) < 2:
            return 0.0

        step = max(1, len(points) // sample_size)
        distances = []
        for point in points[::step][:sample_size]:
            neighbors = self.find_k_nearest(point, 2)
            if len(neighbors) == 2:
                distances.append(math.sqrt(float(np.sum((neighbors[1] - point) ** 2))))

        return float(np.mean(distances)) if distances else 0.0
