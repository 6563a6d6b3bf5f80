"""
Ball Pivoting Mesh Builder

Grows a triangle mesh over a point cloud by rolling a ball of fixed radius
from a seed triangle across the front of unmatched edges. Neighbor queries go
through a private octree built for each call.
"""

import logging
import math
import time
from collections import Counter
from typing import Dict, List, NamedTuple, Optional, Set, Tuple

import numpy as np

from ..data_models import MeshResult
from ..spatial.octree import PointCloudOctree
from ..utils.config_manager import ConfigManager
from ..utils.geometry import (
    as_point_array, average_nearest_neighbor_distance, triangle_circumcenter,
    triangle_circumcircles, orient_faces_outward, mesh_volume, mesh_surface_area,
    is_watertight,
)


EdgeKey = Tuple[int, int]


class FrontEdge(NamedTuple):
    """Directed mesh boundary edge with the third vertex of its triangle."""
    v0: int
    v1: int
    opposite: int
    ball_center: np.ndarray


def _edge_key(a: int, b: int) -> EdgeKey:
    return (a, b) if a < b else (b, a)


class _PivotState:
    """Mutable state of a single reconstruction."""

    def __init__(self, points: np.ndarray, normals: np.ndarray,
                 index: PointCloudOctree, lookup: Dict[Tuple[float, float, float], int]):
        self.points = points
        self.normals = normals
        self.index = index
        self.lookup = lookup
        self.triangles: List[Tuple[int, int, int]] = []
        self.triangle_keys: Set[Tuple[int, int, int]] = set()
        self.edge_use: Counter = Counter()
        self.front: Dict[EdgeKey, FrontEdge] = {}
        self.front_vertices: Counter = Counter()
        self.used: Set[int] = set()
        self.boundary: List[FrontEdge] = []
        self.boundary_vertices: Counter = Counter()

    def mark_boundary(self, edge: FrontEdge) -> None:
        """Keep an edge the ball could not pivot over."""
        self.boundary.append(edge)
        self.boundary_vertices[edge.v0] += 1
        self.boundary_vertices[edge.v1] += 1

    def take_boundary(self) -> List[FrontEdge]:
        """Remove and return the boundary edges that are still open."""
        open_edges = [edge for edge in self.boundary
                      if self.edge_use[_edge_key(edge.v0, edge.v1)] == 1]
        self.boundary = []
        self.boundary_vertices = Counter()
        return open_edges

    def push_front(self, edge: FrontEdge) -> None:
        self.front[_edge_key(edge.v0, edge.v1)] = edge
        self.front_vertices[edge.v0] += 1
        self.front_vertices[edge.v1] += 1

    def pop_front(self, key: Optional[EdgeKey] = None) -> FrontEdge:
        if key is None:
            key = next(iter(self.front))
        edge = self.front.pop(key)
        self.front_vertices[edge.v0] -= 1
        self.front_vertices[edge.v1] -= 1
        return edge

    def is_interior(self, vertex: int) -> bool:
        """Used by the mesh and no longer touching the front or an open boundary."""
        return (vertex in self.used
                and self.front_vertices[vertex] <= 0
                and self.boundary_vertices[vertex] <= 0)

    def add_triangle(self, a: int, b: int, c: int, ball_center: np.ndarray) -> None:
        self.triangles.append((a, b, c))
        self.triangle_keys.add(tuple(sorted((a, b, c))))
        self.used.update((a, b, c))

        for v0, v1, opposite in ((a, b, c), (b, c, a), (c, a, b)):
            key = _edge_key(v0, v1)
            self.edge_use[key] += 1
            if key in self.front:
                self.pop_front(key)
            elif self.edge_use[key] == 1:
                self.push_front(FrontEdge(v0, v1, opposite, ball_center))


class BallPivotingMeshBuilder:
    """Ball pivoting surface reconstruction."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        """
        Initialize ball pivoting mesh builder.

        Args:
            config_manager: Configuration manager instance
        """
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        bpa_config = self.config.get_ball_pivoting_params()

        self.radius_multiplier = float(bpa_config.get('radius_multiplier', 3.0))
        self.min_radius = float(bpa_config.get('min_radius', 0.005))
        self.max_radius = float(bpa_config.get('max_radius', 0.2))
        self.normal_neighbors = int(bpa_config.get('normal_neighbors', 10))
        self.seed_search_limit = int(bpa_config.get('seed_search_limit', 100))
        self.max_triangles = int(bpa_config.get('max_triangles', 100000))
        self.candidate_search_factor = float(bpa_config.get('candidate_search_factor', 2.5))
        self.empty_ball_tolerance = float(bpa_config.get('empty_ball_tolerance', 1e-4))
        self.hole_fill_multipliers = [float(m) for m in bpa_config.get('hole_fill_multipliers',
                                                                       [1.5, 2.0, 3.0])]
        self.max_hole_fill_edges = int(bpa_config.get('max_hole_fill_edges', 1000))
        self.index_point_spacing = float(bpa_config.get('index_point_spacing', 0.001))

        self.logger.info(f"Ball pivoting builder initialized: radius range "
                         f"[{self.min_radius}, {self.max_radius}], max_triangles={self.max_triangles}")

    def build_mesh(self, points, normals=None, ball_radius: Optional[float] = None) -> MeshResult:
        """
        Reconstruct a surface mesh and its enclosed volume.

        Args:
            points: (N, 3) world points
            normals: Optional (N, 3) outward normals; estimated when omitted
            ball_radius: Ball radius in meters; chosen from point spacing if None

        Returns:
            MeshResult (empty with fewer than 3 points or when no seed is found)
        """
        start_time = time.perf_counter()
        pts = as_point_array(points)

        if normals is not None:
            normals = as_point_array(normals)
            if len(normals) != len(pts):
                raise ValueError(f"Expected {len(pts)} normals, got {len(normals)}")
        if ball_radius is not None and ball_radius <= 0:
            raise ValueError("Ball radius must be positive")

        finite = np.all(np.isfinite(pts), axis=1)
        if normals is not None:
            finite &= np.all(np.isfinite(normals), axis=1)
            normals = normals[finite]
        pts = pts[finite]

        if len(pts) < 3:
            self.logger.debug(f"Too few points for ball pivoting: {len(pts)}")
            return MeshResult.empty(ball_radius or 0.0, time.perf_counter() - start_time)

        index = PointCloudOctree(self.config, min_point_spacing=self.index_point_spacing)
        index.insert(pts)
        lookup = {tuple(row): i for i, row in enumerate(pts.tolist())}

        if normals is None:
            normals = self.estimate_normals(pts, index)
        else:
            lengths = np.linalg.norm(normals, axis=1, keepdims=True)
            normals = normals / np.where(lengths > 1e-12, lengths, 1.0)

        radius = ball_radius if ball_radius is not None else self.auto_radius(pts)
        state = _PivotState(pts, normals, index, lookup)

        seed = self._find_seed(state, radius)
        if seed is None:
            self.logger.warning(f"No seed triangle found among the first "
                                f"{min(self.seed_search_limit, len(pts))} points")
            return MeshResult.empty(radius, time.perf_counter() - start_time)

        state.add_triangle(*seed)
        self._expand(state, radius)

        for multiplier in self.hole_fill_multipliers:
            if len(state.triangles) >= self.max_triangles:
                break
            self._fill_holes(state, radius * multiplier)

        elapsed = time.perf_counter() - start_time
        return self._build_result(state, radius, elapsed)

    def auto_radius(self, points: np.ndarray) -> float:
        """Ball radius from the average nearest-neighbor distance."""
        spacing = average_nearest_neighbor_distance(points)
        radius = spacing * self.radius_multiplier
        return float(min(max(radius, self.min_radius), self.max_radius))

    def estimate_normals(self, points: np.ndarray,
                         index: Optional[PointCloudOctree] = None) -> np.ndarray:
        """
        PCA normals from nearest neighbors, oriented away from the centroid.

        Args:
            points: (N, 3) world points
            index: Octree over the points; built when omitted

        Returns:
            (N, 3) unit normals
        """
        pts = as_point_array(points)
        if index is None:
            index = PointCloudOctree(self.config, min_point_spacing=self.index_point_spacing)
            index.insert(pts)

        centroid = pts.mean(axis=0)
        outward = pts - centroid
        covariances = np.zeros((len(pts), 3, 3))
        sparse = np.zeros(len(pts), dtype=bool)

        for i, point in enumerate(pts):
            neighbors = index.find_k_nearest(point, self.normal_neighbors)
            if len(neighbors) < 3:
                sparse[i] = True
                continue
            centered = neighbors - neighbors.mean(axis=0)
            covariances[i] = centered.T @ centered

        _, eigenvectors = np.linalg.eigh(covariances)
        normals = eigenvectors[:, :, 0]
        normals[sparse] = outward[sparse]

        flip = np.einsum('ij,ij->i', normals, outward) < 0
        normals[flip] = -normals[flip]

        lengths = np.linalg.norm(normals, axis=1, keepdims=True)
        fallback = lengths[:, 0] < 1e-12
        normals[fallback] = np.array([0.0, 1.0, 0.0])
        lengths[fallback] = 1.0
        return normals / lengths

    # Seed search

    def _find_seed(self, state: _PivotState, radius: float) -> Optional[Tuple[int, int, int, np.ndarray]]:
        limit = min(self.seed_search_limit, len(state.points))
        candidates = state.points[:limit]
        offsets = candidates[:, None, :] - candidates[None, :, :]
        distances = np.linalg.norm(offsets, axis=2)
        close = (distances < 2.0 * radius) & (distances > 1e-12)

        for i in range(limit):
            neighbors = [j for j in np.nonzero(close[i])[0].tolist() if j > i]
            for position, j in enumerate(neighbors):
                for k in neighbors[position + 1:]:
                    if not close[j, k]:
                        continue
                    seed = self._try_seed(state, i, j, k, radius)
                    if seed is not None:
                        self.logger.debug(f"Seed triangle found: {seed[:3]}")
                        return seed
        return None

    def _try_seed(self, state: _PivotState, i: int, j: int, k: int,
                  radius: float) -> Optional[Tuple[int, int, int, np.ndarray]]:
        p = state.points
        normal = np.cross(p[j] - p[i], p[k] - p[i])
        if np.dot(normal, state.normals[i] + state.normals[j] + state.normals[k]) < 0:
            j, k = k, j

        center = self._ball_center(p[i], p[j], p[k], radius)
        if center is None or not self._is_empty(state, center, radius, (i, j, k)):
            return None
        return i, j, k, center

    # Geometry

    @staticmethod
    def _ball_center(a: np.ndarray, b: np.ndarray, c: np.ndarray,
                     radius: float) -> Optional[np.ndarray]:
        """Center of a ball touching a, b, c on the side of (b - a) x (c - a)."""
        circumcenter = triangle_circumcenter(a, b, c)
        if circumcenter is None:
            return None
        rho_sq = float(np.sum((circumcenter - a) ** 2))
        height_sq = radius * radius - rho_sq
        if height_sq < 0:
            return None
        normal = np.cross(b - a, c - a)
        normal /= np.linalg.norm(normal)
        return circumcenter + normal * math.sqrt(height_sq)

    def _is_empty(self, state: _PivotState, center: np.ndarray, radius: float,
                  vertices: Tuple[int, int, int]) -> bool:
        query_radius = max(radius - self.empty_ball_tolerance, 0.0)
        inside = state.index.find_points_in_sphere(center, query_radius)
        for point in inside.tolist():
            if state.lookup[tuple(point)] not in vertices:
                return False
        return True

    # Front propagation

    def _expand(self, state: _PivotState, radius: float) -> None:
        """Pivot front edges until the front empties or the triangle cap is hit."""
        while state.front:
            if len(state.triangles) >= self.max_triangles:
                self.logger.warning(f"Triangle cap of {self.max_triangles} reached")
                while state.front:
                    state.mark_boundary(state.pop_front())
                return

            edge = state.pop_front()
            pivot = self._pivot(state, edge, radius)
            if pivot is None:
                state.mark_boundary(edge)
                continue

            k, center = pivot
            state.add_triangle(edge.v1, edge.v0, k, center)

    def _fill_holes(self, state: _PivotState, radius: float) -> None:
        """Retry open boundary edges with a larger ball."""
        open_edges = state.take_boundary()
        if not open_edges:
            return

        retry = open_edges[:self.max_hole_fill_edges]
        for edge in open_edges[self.max_hole_fill_edges:]:
            state.mark_boundary(edge)
        before = len(state.triangles)

        for edge in retry:
            state.push_front(edge)
        self._expand(state, radius)

        self.logger.debug(f"Hole filling at radius {radius:.4f}: "
                          f"{len(state.triangles) - before} triangles added")

    def _pivot(self, state: _PivotState, edge: FrontEdge,
               radius: float) -> Optional[Tuple[int, np.ndarray]]:
        """Find the point the ball reaches first when rolled over an edge."""
        p = state.points
        i, j, opposite = edge.v0, edge.v1, edge.opposite
        pi, pj = p[i], p[j]

        midpoint = (pi + pj) / 2.0
        axis = pj - pi
        axis_length = np.linalg.norm(axis)
        if axis_length < 1e-12:
            return None
        axis /= axis_length

        old_center = self._ball_center(pi, pj, p[opposite], radius)
        if old_center is None:
            old_center = edge.ball_center
        old_direction = old_center - midpoint
        old_direction -= axis * np.dot(old_direction, axis)

        search_radius = max(self.candidate_search_factor, 2.0) * radius
        nearby = state.index.find_points_in_sphere(midpoint, search_radius)
        if len(nearby) == 0:
            return None
        nearby_index = np.array([state.lookup[tuple(point)] for point in nearby.tolist()])

        candidate_mask = np.array([
            k not in (i, j, opposite)
            and not state.is_interior(k)
            and state.edge_use[_edge_key(i, k)] < 2
            and state.edge_use[_edge_key(k, j)] < 2
            and tuple(sorted((i, j, k))) not in state.triangle_keys
            for k in nearby_index.tolist()
        ], dtype=bool)
        candidate_mask &= np.linalg.norm(nearby - midpoint, axis=1) <= self.candidate_search_factor * radius
        if not np.any(candidate_mask):
            return None

        candidates = nearby_index[candidate_mask]
        pk = p[candidates]
        count = len(candidates)

        # New triangle (j, i, k) keeps the winding of the mesh
        a = np.repeat(pj[None, :], count, axis=0)
        b = np.repeat(pi[None, :], count, axis=0)
        circumcenters, rho = triangle_circumcircles(a, b, pk)
        normals = np.cross(b - a, pk - a)
        normal_lengths = np.linalg.norm(normals, axis=1)

        valid = np.isfinite(rho) & (rho <= radius) & (normal_lengths > 1e-12)
        vertex_normals = state.normals[i] + state.normals[j] + state.normals[candidates]
        valid &= np.einsum('ij,ij->i', normals, vertex_normals) > 0
        if not np.any(valid):
            return None

        candidates = candidates[valid]
        heights = np.sqrt(np.clip(radius * radius - rho[valid] ** 2, 0.0, None))
        units = normals[valid] / normal_lengths[valid, None]
        centers = circumcenters[valid] + units * heights[:, None]

        # Empty ball: no nearby point strictly inside except the triangle's own vertices
        gaps = np.linalg.norm(centers[:, None, :] - nearby[None, :, :], axis=2)
        inside = gaps < max(radius - self.empty_ball_tolerance, 0.0)
        inside &= nearby_index[None, :] != i
        inside &= nearby_index[None, :] != j
        inside &= nearby_index[None, :] != candidates[:, None]
        empty = ~np.any(inside, axis=1)
        if not np.any(empty):
            return None

        candidates = candidates[empty]
        centers = centers[empty]

        directions = centers - midpoint
        directions -= np.outer(directions @ axis, axis)
        sines = np.cross(old_direction, directions) @ axis
        cosines = directions @ old_direction
        angles = np.mod(np.arctan2(sines, cosines), 2.0 * math.pi)

        best = int(np.argmin(angles))
        return int(candidates[best]), centers[best]

    # Result

    def _build_result(self, state: _PivotState, radius: float, elapsed: float) -> MeshResult:
        faces = np.array(state.triangles, dtype=np.int64).reshape(-1, 3)
        pts = state.points
        centroid = pts.mean(axis=0)

        oriented = orient_faces_outward(pts, faces, centroid)
        volume = mesh_volume(pts, oriented, centroid)
        area = mesh_surface_area(pts, oriented)
        watertight = is_watertight(oriented)
        vertex_count = len(np.unique(faces)) if len(faces) else 0

        self.logger.info(f"Ball pivoting: volume={volume:.6f} m^3, {len(faces)} triangles, "
                         f"radius={radius:.4f}, watertight={watertight}, {elapsed:.3f}s")

        return MeshResult(
            volume=volume,
            surface_area=area,
            triangles=pts[oriented] if len(oriented) else np.empty((0, 3, 3)),
            faces=oriented,
            vertex_count=vertex_count,
            triangle_count=len(faces),
            processing_time=elapsed,
            ball_radius=radius,
            is_watertight=watertight,
            point_coverage=vertex_count / len(pts),
        )
