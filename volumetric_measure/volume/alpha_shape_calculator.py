"""
Alpha Shape Volume Calculator

Carves a Delaunay triangulation from the hull inward with an alpha ball, keeps
the tetrahedra the ball cannot reach as the alpha solid, and integrates the
volume enclosed by the solid's boundary with the divergence theorem.
"""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..data_models import AlphaShapeResult, TriangulationResult
from ..utils.config_manager import ConfigManager
from ..utils.geometry import (
    as_point_array, average_nearest_neighbor_distance, circumspheres,
    triangle_circumcircles, triangle_normals, mesh_volume,
    mesh_surface_area, is_watertight,
)
from .delaunay_triangulator import DelaunayTriangulator


# Local vertex positions of each tetrahedron face and of the vertex opposite it
FACE_CORNERS = np.array([[0, 1, 2], [0, 1, 3], [0, 2, 3], [1, 2, 3]])
OPPOSITE_CORNER = np.array([3, 2, 1, 0])


@dataclass
class _ComplexGeometry:
    """Alpha-independent measures of a triangulation."""
    tetra_radii: np.ndarray  # (M,) circumradius per tetrahedron
    face_keys: np.ndarray  # (4M, 3) sorted vertex indices per (tetrahedron, face)
    face_radii: np.ndarray  # (4M,) face circumradius
    face_exposed: np.ndarray  # (4M,) opposite vertex outside the face circumcircle
    tetra_of_face: np.ndarray  # (4M,) owning tetrahedron
    faces: np.ndarray  # (4M, 3) vertex indices in tetrahedron order
    opposite: np.ndarray  # (4M,) vertex opposite each face
    face_ids: np.ndarray  # (4M,) index of the shared face, equal for both sides
    neighbors: np.ndarray  # (4M,) tetrahedron across each face, -1 on the hull


class AlphaShapeCalculator:
    """Alpha shape surface extraction and volume integration."""

    def __init__(self, config_manager: Optional[ConfigManager] = None,
                 triangulator: Optional[DelaunayTriangulator] = None):
        """
        Initialize alpha shape calculator.

        Args:
            config_manager: Configuration manager instance
            triangulator: Triangulator to use; created from the config if omitted
        """
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        alpha_config = self.config.get_alpha_shape_params()

        self.alpha_multiplier = float(alpha_config.get('alpha_multiplier', 2.5))
        self.min_alpha = float(alpha_config.get('min_alpha', 0.005))
        self.max_alpha = float(alpha_config.get('max_alpha', 0.5))
        self.nn_sample_size = int(alpha_config.get('nn_sample_size', 100))

        self.triangulator = triangulator or DelaunayTriangulator(self.config)

        self.logger.info(f"Alpha shape calculator initialized: alpha range "
                         f"[{self.min_alpha}, {self.max_alpha}], multiplier={self.alpha_multiplier}")

    def calculate_volume(self, points, alpha: Optional[float] = None) -> AlphaShapeResult:
        """
        Compute the alpha shape volume of a point cloud.

        Args:
            points: (N, 3) world points
            alpha: Alpha radius in meters; chosen from point spacing if None

        Returns:
            AlphaShapeResult (empty with fewer than 4 points)
        """
        start_time = time.perf_counter()
        pts = as_point_array(points)

        if len(pts) < 4:
            self.logger.debug(f"Too few points for alpha shape: {len(pts)}")
            return AlphaShapeResult.empty(alpha or 0.0, time.perf_counter() - start_time)

        alpha_value = self.clamp_alpha(alpha) if alpha is not None else self.auto_alpha(pts)

        triangulation = self.triangulator.triangulate(pts)
        if triangulation.is_empty:
            self.logger.warning("Triangulation produced no tetrahedra")
            return AlphaShapeResult.empty(alpha_value, time.perf_counter() - start_time)

        geometry = self._measure(triangulation)
        faces = self._surface_faces(geometry, alpha_value, pts)

        if len(faces) == 0:
            self.logger.warning(f"Alpha {alpha_value:.4f} produced no surface triangles")
            return AlphaShapeResult.empty(alpha_value, time.perf_counter() - start_time)

        volume = mesh_volume(pts, faces)
        area = mesh_surface_area(pts, faces)
        watertight = is_watertight(faces)

        elapsed = time.perf_counter() - start_time
        self.logger.info(f"Alpha shape: volume={volume:.6f} m^3, {len(faces)} triangles, "
                         f"alpha={alpha_value:.4f}, watertight={watertight}, {elapsed:.3f}s")

        return AlphaShapeResult(
            volume=volume,
            surface_area=area,
            alpha=alpha_value,
            triangle_count=len(faces),
            processing_time=elapsed,
            surface_triangles=pts[faces],
            faces=faces,
            is_watertight=watertight,
        )

    def clamp_alpha(self, alpha: float) -> float:
        """Clamp an alpha value to the configured range."""
        return float(min(max(alpha, self.min_alpha), self.max_alpha))

    def auto_alpha(self, points: np.ndarray) -> float:
        """Alpha from the average nearest-neighbor distance."""
        spacing = average_nearest_neighbor_distance(points, self.nn_sample_size)
        return self.clamp_alpha(spacing * self.alpha_multiplier)

    def find_optimal_alpha(self, points, target_connectivity: float = 0.8,
                           iterations: int = 10) -> float:
        """
        Bisect alpha until the claimed face fraction reaches a target.

        Connectivity is the share of (tetrahedron, face) pairs claimed by the
        alpha complex.

        Args:
            points: (N, 3) world points
            target_connectivity: Desired claimed fraction in (0, 1]
            iterations: Bisection steps

        Returns:
            Alpha value in meters
        """
        pts = as_point_array(points)
        low, high = self.min_alpha, self.max_alpha
        if len(pts) < 4:
            return (low + high) / 2.0

        triangulation = self.triangulator.triangulate(pts)
        if triangulation.is_empty:
            return (low + high) / 2.0
        geometry = self._measure(triangulation)
        total_pairs = len(geometry.face_keys)

        for _ in range(iterations):
            mid = (low + high) / 2.0
            connectivity = np.count_nonzero(self._claimed(geometry, mid)) / total_pairs
            if connectivity < target_connectivity:
                low = mid
            else:
                high = mid

        return (low + high) / 2.0

    def estimate_volume_at_multiple_alphas(self, points,
                                           alphas: Sequence[float]) -> List[Tuple[float, float]]:
        """
        Volume for several alpha values.

        Returns:
            (alpha, volume) pairs sorted by alpha
        """
        results = []
        for alpha in alphas:
            result = self.calculate_volume(points, alpha)
            results.append((result.alpha, result.volume))
        return sorted(results, key=lambda item: item[0])

    def _measure(self, triangulation: TriangulationResult) -> _ComplexGeometry:
        pts = triangulation.points
        tetra = np.array(triangulation.tetrahedra, dtype=np.int64).reshape(-1, 4)

        _, radii_sq, _ = circumspheres(pts[tetra[:, 0]], pts[tetra[:, 1]],
                                       pts[tetra[:, 2]], pts[tetra[:, 3]])
        tetra_radii = np.sqrt(radii_sq)

        faces = tetra[:, FACE_CORNERS].reshape(-1, 3)
        opposite = tetra[:, OPPOSITE_CORNER].reshape(-1)
        centers, face_radii = triangle_circumcircles(pts[faces[:, 0]], pts[faces[:, 1]],
                                                     pts[faces[:, 2]])
        opposite_distance = np.linalg.norm(pts[opposite] - centers, axis=1)

        face_keys = np.sort(faces, axis=1)
        tetra_of_face = np.repeat(np.arange(len(tetra)), 4)
        _, face_ids, counts = np.unique(face_keys, axis=0, return_inverse=True,
                                        return_counts=True)
        face_ids = face_ids.reshape(-1)

        # Pair the two sides of every interior face
        neighbors = np.full(len(faces), -1, dtype=np.int64)
        order = np.argsort(face_ids, kind='stable')
        ordered_ids = face_ids[order]
        starts = np.nonzero(np.r_[True, ordered_ids[1:] != ordered_ids[:-1]])[0]
        shared = starts[counts[ordered_ids[starts]] == 2]
        first, second = order[shared], order[shared + 1]
        neighbors[first] = tetra_of_face[second]
        neighbors[second] = tetra_of_face[first]

        return _ComplexGeometry(
            tetra_radii=tetra_radii,
            face_keys=face_keys,
            face_radii=face_radii,
            face_exposed=opposite_distance > face_radii,
            tetra_of_face=tetra_of_face,
            faces=faces,
            opposite=opposite,
            face_ids=face_ids,
            neighbors=neighbors,
        )

    def _claimed(self, geometry: _ComplexGeometry, alpha: float) -> np.ndarray:
        """(tetrahedron, face) pairs contributing a face to the alpha complex."""
        included = (geometry.tetra_radii <= alpha)[geometry.tetra_of_face]
        face_rule = (geometry.face_radii <= alpha) & geometry.face_exposed
        return included | face_rule

    def _exterior(self, geometry: _ComplexGeometry, alpha: float) -> np.ndarray:
        """
        Tetrahedra an alpha ball reaches from outside the hull.

        The ball enters a tetrahedron only if its circumradius exceeds alpha
        and only through a face outside the alpha complex. A face blocks on
        both sides once either side claims it.
        """
        blocking = np.zeros(int(geometry.face_ids.max()) + 1, dtype=bool)
        np.logical_or.at(blocking, geometry.face_ids, self._claimed(geometry, alpha))
        passable = ~blocking[geometry.face_ids]
        carvable = geometry.tetra_radii > alpha

        exterior = np.zeros(len(geometry.tetra_radii), dtype=bool)
        entry = geometry.tetra_of_face[passable & (geometry.neighbors < 0)]
        frontier = np.unique(entry[carvable[entry]])

        while len(frontier) > 0:
            exterior[frontier] = True
            pairs = (frontier[:, None] * 4 + np.arange(4)).reshape(-1)
            reached = geometry.neighbors[pairs[passable[pairs]]]
            reached = np.unique(reached[reached >= 0])
            frontier = reached[carvable[reached] & ~exterior[reached]]

        return exterior

    def _surface_faces(self, geometry: _ComplexGeometry, alpha: float,
                       points: np.ndarray) -> np.ndarray:
        """
        Boundary between the alpha solid and the carved exterior.

        Every face is taken once, from its solid side, and wound so its normal
        points away from the solid tetrahedron's opposite vertex.
        """
        solid = ~self._exterior(geometry, alpha)
        owner_solid = solid[geometry.tetra_of_face]
        across = geometry.neighbors
        across_exterior = np.ones(len(across), dtype=bool)
        inside = across >= 0
        across_exterior[inside] = ~solid[across[inside]]

        boundary = owner_solid & across_exterior
        faces = geometry.faces[boundary]
        if len(faces) == 0:
            return np.empty((0, 3), dtype=np.int64)

        normals = triangle_normals(points, faces)
        toward_solid = points[geometry.opposite[boundary]] - points[faces].mean(axis=1)
        inward = np.einsum('ij,ij->i', normals, toward_solid) > 0
        faces[inward] = faces[inward][:, [0, 2, 1]]
        return faces
