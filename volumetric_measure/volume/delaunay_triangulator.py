"""
Delaunay Tetrahedralization

Incremental Bowyer-Watson construction of a 3D Delaunay triangulation. All
circumspheres live in numpy arrays so each insertion tests every live
tetrahedron in one vectorized pass.
"""

import logging
import time
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..data_models import Tetrahedron, TriangulationResult
from ..utils.config_manager import ConfigManager
from ..utils.geometry import as_point_array, circumspheres


# Vertex directions of the enclosing super-tetrahedron
SUPER_TETRAHEDRON_DIRECTIONS = np.array([
    [1.0, 1.0, 1.0],
    [1.0, -1.0, -1.0],
    [-1.0, 1.0, -1.0],
    [-1.0, -1.0, 1.0],
])


class _TetrahedronStore:
    """Growable arrays of tetrahedra with cached circumspheres."""

    def __init__(self, capacity: int = 1024):
        self.vertices = np.zeros((capacity, 4), dtype=np.int64)
        self.centers = np.zeros((capacity, 3), dtype=np.float64)
        self.radii_sq = np.zeros(capacity, dtype=np.float64)
        self.alive = np.zeros(capacity, dtype=bool)
        self.size = 0
        self.live_count = 0

    def add(self, vertices: np.ndarray, centers: np.ndarray, radii_sq: np.ndarray) -> None:
        count = len(vertices)
        if count == 0:
            return
        if self.size + count > len(self.vertices):
            self._grow(self.size + count)
        end = self.size + count
        self.vertices[self.size:end] = vertices
        self.centers[self.size:end] = centers
        self.radii_sq[self.size:end] = radii_sq
        self.alive[self.size:end] = True
        self.size = end
        self.live_count += count

    def kill(self, indices: np.ndarray) -> None:
        self.alive[indices] = False
        self.live_count -= len(indices)

    def compact(self) -> None:
        keep = np.nonzero(self.alive[:self.size])[0]
        count = len(keep)
        self.vertices[:count] = self.vertices[keep]
        self.centers[:count] = self.centers[keep]
        self.radii_sq[:count] = self.radii_sq[keep]
        self.alive[:count] = True
        self.alive[count:self.size] = False
        self.size = count

    def _grow(self, required: int) -> None:
        capacity = max(required, 2 * len(self.vertices))
        for name in ('vertices', 'centers', 'radii_sq', 'alive'):
            old = getattr(self, name)
            new = np.zeros((capacity,) + old.shape[1:], dtype=old.dtype)
            new[:self.size] = old[:self.size]
            setattr(self, name, new)


class DelaunayTriangulator:
    """Bowyer-Watson 3D Delaunay triangulation."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        """
        Initialize Delaunay triangulator.

        Args:
            config_manager: Configuration manager instance
        """
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        delaunay_config = self.config.get_delaunay_params()

        self.super_scale = float(delaunay_config.get('super_tetrahedron_scale', 10.0))
        self.epsilon = float(delaunay_config.get('epsilon', 1e-10))

        self.logger.debug(f"Delaunay triangulator initialized: super_scale={self.super_scale}, "
                          f"epsilon={self.epsilon}")

    def triangulate(self, points) -> TriangulationResult:
        """
        Triangulate a point set.

        Args:
            points: (N, 3) array of points

        Returns:
            TriangulationResult with tetrahedra indexing into ``points``;
            empty with fewer than 4 points
        """
        start_time = time.perf_counter()
        pts = as_point_array(points)
        count = len(pts)

        if count < 4 or not np.all(np.isfinite(pts)):
            self.logger.debug(f"Cannot triangulate {count} points")
            return TriangulationResult(points=pts, tetrahedra=[],
                                       processing_time=time.perf_counter() - start_time)

        min_corner = pts.min(axis=0)
        max_corner = pts.max(axis=0)
        diagonal = float(np.linalg.norm(max_corner - min_corner))
        if diagonal < self.epsilon:
            self.logger.debug("All points coincide, nothing to triangulate")
            return TriangulationResult(points=pts, tetrahedra=[],
                                       processing_time=time.perf_counter() - start_time)

        center = (min_corner + max_corner) / 2.0
        super_vertices = center + SUPER_TETRAHEDRON_DIRECTIONS * (diagonal * self.super_scale)
        all_points = np.vstack([pts, super_vertices])

        store = _TetrahedronStore(capacity=max(1024, 8 * count))
        first = np.array([[count, count + 1, count + 2, count + 3]])
        self._add_tetrahedra(store, all_points, first)

        skipped = 0
        for index in range(count):
            skipped += self._insert_point(store, all_points, index)
            if store.size > 2 * store.live_count + 1024:
                store.compact()

        live = store.vertices[:store.size][store.alive[:store.size]]
        real = live[np.all(live < count, axis=1)]
        tetrahedra = [Tetrahedron(*row) for row in real.tolist()]

        elapsed = time.perf_counter() - start_time
        self.logger.debug(f"Triangulated {count} points into {len(tetrahedra)} tetrahedra "
                          f"({skipped} degenerate skipped) in {elapsed:.3f}s")
        return TriangulationResult(points=pts, tetrahedra=tetrahedra, processing_time=elapsed)

    def _add_tetrahedra(self, store: _TetrahedronStore, all_points: np.ndarray,
                        vertices: np.ndarray) -> int:
        """Add tetrahedra with valid circumspheres; returns how many were degenerate."""
        centers, radii_sq, valid = circumspheres(
            all_points[vertices[:, 0]], all_points[vertices[:, 1]],
            all_points[vertices[:, 2]], all_points[vertices[:, 3]],
            epsilon=self.epsilon,
        )
        store.add(vertices[valid], centers[valid], radii_sq[valid])
        return int(np.count_nonzero(~valid))

    def _insert_point(self, store: _TetrahedronStore, all_points: np.ndarray, index: int) -> int:
        point = all_points[index]
        size = store.size

        offsets = store.centers[:size] - point
        dist_sq = np.einsum('ij,ij->i', offsets, offsets)
        bad = np.nonzero(store.alive[:size] & (dist_sq < store.radii_sq[:size] - self.epsilon))[0]
        if len(bad) == 0:
            return 0

        # Cavity boundary: faces used by exactly one bad tetrahedron
        face_counts: Dict[Tuple[int, int, int], int] = {}
        for a, b, c, d in store.vertices[bad].tolist():
            for face in ((a, b, c), (a, b, d), (a, c, d), (b, c, d)):
                key = tuple(sorted(face))
                face_counts[key] = face_counts.get(key, 0) + 1
        boundary: List[Tuple[int, int, int]] = [key for key, n in face_counts.items() if n == 1]

        store.kill(bad)
        if not boundary:
            return 0

        new_vertices = np.array([(a, b, c, index) for a, b, c in boundary], dtype=np.int64)
        return self._add_tetrahedra(store, all_points, new_vertices)
