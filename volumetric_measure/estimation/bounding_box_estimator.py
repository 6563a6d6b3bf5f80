"""
Oriented Bounding Box Estimation

Fits a minimum-enclosing oriented box to a point cloud. The axis-locked policy
keeps the box upright (world up is +Y) and searches the horizontal orientation
with a convex hull and minimum-area rectangle; the free policy uses 3D PCA.
"""

import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from ..data_models import OrientedBoundingBox, OrientationPolicy, ReferencePlane
from ..utils.config_manager import ConfigManager
from ..utils.geometry import as_point_array


HALF_PI = math.pi / 2.0


def convex_hull_2d(points: np.ndarray) -> np.ndarray:
    """
    Andrew's monotone chain convex hull.

    Args:
        points: (N, 2) array

    Returns:
        (H, 2) hull vertices in counter-clockwise order without collinear points
    """
    unique = np.unique(np.asarray(points, dtype=np.float64), axis=0)
    if len(unique) < 3:
        return unique

    def cross(o, a, b) -> float:
        return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])

    pts = unique.tolist()
    lower: List[List[float]] = []
    for p in pts:
        while len(lower) >= 2 and cross(lower[-2], lower[-1], p) <= 0:
            lower.pop()
        lower.append(p)

    upper: List[List[float]] = []
    for p in reversed(pts):
        while len(upper) >= 2 and cross(upper[-2], upper[-1], p) <= 0:
            upper.pop()
        upper.append(p)

    return np.array(lower[:-1] + upper[:-1], dtype=np.float64)


def minimum_area_rectangle(hull: np.ndarray) -> Tuple[np.ndarray, float]:
    """
    Minimum-area rectangle around a convex polygon.

    Every hull edge is tried as a rectangle side; the edge whose aligned
    bounding rectangle has the smallest area wins.

    Args:
        hull: (H, 2) convex polygon vertices, H >= 3

    Returns:
        Tuple of (unit direction of the winning edge, rectangle area)
    """
    edges = np.roll(hull, -1, axis=0) - hull
    lengths = np.linalg.norm(edges, axis=1)
    usable = lengths > 1e-10
    if not np.any(usable):
        return np.array([1.0, 0.0]), 0.0

    directions = edges[usable] / lengths[usable, None]
    normals = np.column_stack([-directions[:, 1], directions[:, 0]])

    along = hull @ directions.T
    across = hull @ normals.T
    areas = np.ptp(along, axis=0) * np.ptp(across, axis=0)

    best = int(np.argmin(areas))
    return directions[best], float(areas[best])


def principal_direction_2d(points: np.ndarray) -> np.ndarray:
    """Direction of largest variance of 2D points."""
    if len(points) < 2:
        return np.array([1.0, 0.0])
    covariance = np.cov(points.T)
    eigenvalues, eigenvectors = np.linalg.eigh(covariance)
    direction = eigenvectors[:, int(np.argmax(eigenvalues))]
    norm = np.linalg.norm(direction)
    if norm < 1e-12:
        return np.array([1.0, 0.0])
    return direction / norm


def _wrap_quarter_turn(angle: float) -> float:
    """Reduce an angle to (-45, 45] degrees modulo quarter turns."""
    return angle - HALF_PI * round(angle / HALF_PI)


def _yaw_rotation_matrix(yaw: float) -> np.ndarray:
    """Upright frame whose X axis points along (cos yaw, 0, sin yaw)."""
    x_axis = np.array([math.cos(yaw), 0.0, math.sin(yaw)])
    y_axis = np.array([0.0, 1.0, 0.0])
    z_axis = np.cross(x_axis, y_axis)
    return np.column_stack([x_axis, y_axis, z_axis])


class BoundingBoxEstimator:
    """Oriented bounding box fitting under axis-locked or free orientation."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        """
        Initialize bounding box estimator.

        Args:
            config_manager: Configuration manager instance
        """
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        bbox_config = self.config.get_bounding_box_params()

        self.min_points = int(bbox_config.get('min_points', 4))
        self.min_hull_points = int(bbox_config.get('min_hull_points', 20))
        self.trim_fraction = float(bbox_config.get('trim_fraction', 0.01))
        self.snap_angle = math.radians(float(bbox_config.get('snap_angle_degrees', 10.0)))
        self.refinement_iterations = int(bbox_config.get('refinement_iterations', 3))
        self.refinement_margin = float(bbox_config.get('refinement_margin', 0.015))
        self.min_retained_fraction = float(bbox_config.get('min_retained_fraction', 0.5))
        self.min_retained_points = int(bbox_config.get('min_retained_points', 20))
        self.convergence_angle = math.radians(float(bbox_config.get('convergence_degrees', 0.1)))

        self.logger.info(f"Bounding box estimator initialized: trim={self.trim_fraction}, "
                         f"refinement_iterations={self.refinement_iterations}")

    def estimate(self, points,
                 policy: OrientationPolicy = OrientationPolicy.AXIS_LOCKED,
                 reference_planes: Optional[Sequence[ReferencePlane]] = None
                 ) -> Optional[OrientedBoundingBox]:
        """
        Estimate an oriented bounding box.

        Args:
            points: (N, 3) world points
            policy: Orientation policy
            reference_planes: Optional vertical planes for orientation snapping

        Returns:
            OrientedBoundingBox, or None with fewer than 4 usable points
        """
        pts = as_point_array(points)
        pts = pts[np.all(np.isfinite(pts), axis=1)]
        if len(pts) < self.min_points:
            self.logger.debug(f"Too few points for a bounding box: {len(pts)}")
            return None

        if policy == OrientationPolicy.FREE:
            rotation = self._free_rotation(pts)
            return self._fit_extents(pts, rotation)

        rotation = self._axis_locked_rotation(pts, reference_planes)
        box = self._fit_extents(pts, rotation)
        return self._refine(pts, box, rotation, reference_planes)

    def estimate_bounding_box(self, points,
                              policy: OrientationPolicy = OrientationPolicy.AXIS_LOCKED,
                              reference_planes: Optional[Sequence[ReferencePlane]] = None
                              ) -> Optional[OrientedBoundingBox]:
        """Alias of ``estimate``."""
        return self.estimate(points, policy, reference_planes)

    # Orientation

    def _axis_locked_rotation(self, points: np.ndarray,
                              reference_planes: Optional[Sequence[ReferencePlane]]) -> np.ndarray:
        horizontal = points[:, [0, 2]]

        direction = None
        if len(horizontal) >= self.min_hull_points:
            hull = convex_hull_2d(horizontal)
            if len(hull) >= 3:
                direction, _ = minimum_area_rectangle(hull)
        if direction is None:
            direction = principal_direction_2d(horizontal)

        yaw = _wrap_quarter_turn(math.atan2(direction[1], direction[0]))
        if reference_planes:
            yaw = self._snap_to_planes(yaw, reference_planes)

        return _yaw_rotation_matrix(yaw)

    def _snap_to_planes(self, yaw: float, planes: Sequence[ReferencePlane]) -> float:
        """Snap a yaw angle to the largest nearly parallel vertical plane."""
        best_yaw = None
        best_area = 0.0

        for plane in planes:
            normal = np.asarray(plane.normal, dtype=np.float64)
            horizontal = np.array([normal[0], normal[2]])
            norm = np.linalg.norm(horizontal)
            if norm < 0.5 * max(np.linalg.norm(normal), 1e-12):
                continue  # not a vertical surface

            plane_yaw = math.atan2(horizontal[1], horizontal[0])
            difference = _wrap_quarter_turn(plane_yaw - yaw)
            if abs(difference) <= self.snap_angle and plane.area > best_area:
                best_yaw = yaw + difference
                best_area = plane.area

        if best_yaw is None:
            return yaw

        self.logger.debug(f"Snapped orientation by {math.degrees(best_yaw - yaw):.2f} degrees "
                          f"to plane of area {best_area:.3f}")
        return _wrap_quarter_turn(best_yaw)

    def _free_rotation(self, points: np.ndarray) -> np.ndarray:
        """Right-handed frame from principal axes, largest variance first."""
        centered = points - points.mean(axis=0)
        covariance = centered.T @ centered / len(points)
        eigenvalues, eigenvectors = np.linalg.eigh(covariance)
        order = np.argsort(eigenvalues)[::-1]
        axes = eigenvectors[:, order]

        # Deterministic signs: dominant component of each axis positive
        for i in range(3):
            if axes[np.argmax(np.abs(axes[:, i])), i] < 0:
                axes[:, i] = -axes[:, i]

        x_axis = axes[:, 0] / np.linalg.norm(axes[:, 0])
        z_axis = np.cross(x_axis, axes[:, 1])
        z_norm = np.linalg.norm(z_axis)
        if z_norm < 1e-12:
            return np.eye(3)
        z_axis /= z_norm
        y_axis = np.cross(z_axis, x_axis)
        return np.column_stack([x_axis, y_axis, z_axis])

    # Extents

    def _fit_extents(self, points: np.ndarray, rotation: np.ndarray) -> OrientedBoundingBox:
        """Trimmed-range extents of the points in the given frame."""
        centroid = points.mean(axis=0)
        local = (points - centroid) @ rotation
        count = len(local)

        trim = 0
        if self.trim_fraction > 0:
            trim = max(1, int(count * self.trim_fraction))
            trim = min(trim, (count - 1) // 2)

        ordered = np.sort(local, axis=0)
        low = ordered[trim]
        high = ordered[count - 1 - trim]

        local_center = (low + high) / 2.0
        extents = (high - low) / 2.0
        center = centroid + rotation @ local_center
        return OrientedBoundingBox.from_rotation_matrix(center, extents, rotation)

    def compute_extents(self, points, rotation: np.ndarray) -> OrientedBoundingBox:
        """
        Fit extents for a fixed orientation.

        Args:
            points: (N, 3) world points
            rotation: 3x3 matrix whose columns are the box axes

        Returns:
            OrientedBoundingBox with trimmed extents
        """
        pts = as_point_array(points)
        if len(pts) == 0:
            raise ValueError("Cannot fit extents to an empty point set")
        return self._fit_extents(pts, np.asarray(rotation, dtype=np.float64))

    # Refinement

    def _refine(self, points: np.ndarray, box: OrientedBoundingBox, rotation: np.ndarray,
                reference_planes: Optional[Sequence[ReferencePlane]]) -> OrientedBoundingBox:
        """Re-orient from inlier points; extents always come from the full set."""
        total = len(points)
        min_survivors = max(self.min_retained_fraction * total, self.min_retained_points)

        for iteration in range(self.refinement_iterations):
            inliers = box.contains(points, tolerance=self.refinement_margin)
            survivors = points[inliers]
            if len(survivors) < min_survivors:
                self.logger.debug(f"Refinement stopped at round {iteration + 1}: "
                                  f"{len(survivors)}/{total} points retained")
                break

            new_rotation = self._axis_locked_rotation(survivors, reference_planes)
            change = (Rotation.from_matrix(new_rotation)
                      * Rotation.from_matrix(rotation).inv()).magnitude()
            box = self._fit_extents(points, new_rotation)
            rotation = new_rotation

            if change < self.convergence_angle:
                self.logger.debug(f"Refinement converged after {iteration + 1} rounds")
                break

        return box
