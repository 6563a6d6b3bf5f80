"""
Point Cloud Processing

Robust outlier removal and confidence-weighted grid downsampling applied to
sensor points before consolidation.
"""

import logging
from typing import Optional, Sequence, Tuple

import numpy as np

from ..data_models import WeightedPoint
from ..utils.config_manager import ConfigManager
from ..utils.geometry import as_point_array


class PointCloudProcessor:
    """Filters and downsamples raw sensor point clouds."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        """
        Initialize point cloud processor.

        Args:
            config_manager: Configuration manager instance
        """
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        pc_config = self.config.get_point_cloud_params()

        self.mad_threshold = float(pc_config.get('mad_threshold', 3.0))
        self.mad_scale = float(pc_config.get('mad_scale', 1.4826))
        self.min_outlier_points = int(pc_config.get('min_outlier_points', 10))
        self.grid_size = float(pc_config.get('downsample_grid_size', 0.003))
        self.min_confidence = float(pc_config.get('min_confidence', 0.0))

        self.logger.info(f"Point cloud processor initialized: MAD threshold={self.mad_threshold}, "
                         f"grid={self.grid_size}")

    @staticmethod
    def split_weighted(weighted_points: Sequence[WeightedPoint]) -> Tuple[np.ndarray, np.ndarray]:
        """Convert WeightedPoint records into (positions, weights) arrays."""
        if len(weighted_points) == 0:
            return np.empty((0, 3)), np.empty(0)
        positions = np.array([wp.position for wp in weighted_points], dtype=np.float64)
        weights = np.array([wp.confidence for wp in weighted_points], dtype=np.float64)
        return positions.reshape(-1, 3), weights

    def outlier_mask(self, points) -> np.ndarray:
        """
        Per-axis median absolute deviation filter.

        Args:
            points: (N, 3) points

        Returns:
            Boolean mask of inliers; all True for 10 points or fewer
        """
        pts = as_point_array(points)
        if len(pts) <= self.min_outlier_points:
            return np.ones(len(pts), dtype=bool)

        median = np.median(pts, axis=0)
        deviation = np.abs(pts - median)
        mad = np.median(deviation, axis=0)

        # Axes without spread never reject points
        scale = np.where(mad > 1e-6, self.mad_scale * mad, np.inf)
        return np.all(deviation <= self.mad_threshold * scale, axis=1)

    def remove_outliers(self, points, weights: Optional[np.ndarray] = None):
        """
        Drop points outside the MAD band on any axis.

        Args:
            points: (N, 3) points
            weights: Optional (N,) confidences filtered alongside

        Returns:
            Filtered points, or (points, weights) when weights are given
        """
        pts = as_point_array(points)
        mask = self.outlier_mask(pts)
        removed = int(np.count_nonzero(~mask))
        if removed:
            self.logger.debug(f"Removed {removed}/{len(pts)} outliers")

        if weights is None:
            return pts[mask]
        return pts[mask], np.asarray(weights, dtype=np.float64)[mask]

    def filter_by_confidence(self, points, weights: np.ndarray,
                             min_confidence: Optional[float] = None) -> Tuple[np.ndarray, np.ndarray]:
        """Keep points whose confidence reaches a threshold."""
        pts = as_point_array(points)
        weights = np.asarray(weights, dtype=np.float64)
        if len(weights) != len(pts):
            raise ValueError(f"Expected {len(pts)} weights, got {len(weights)}")
        threshold = self.min_confidence if min_confidence is None else min_confidence
        keep = weights >= threshold
        return pts[keep], weights[keep]

    def downsample(self, points, weights: Optional[np.ndarray] = None,
                   grid_size: Optional[float] = None) -> np.ndarray:
        """
        One confidence-weighted centroid per occupied grid cell.

        Args:
            points: (N, 3) points
            weights: Optional (N,) confidences; uniform when omitted
            grid_size: Cell size in meters (defaults to config)

        Returns:
            (M, 3) centroids ordered by cell index
        """
        pts = as_point_array(points)
        size = self.grid_size if grid_size is None else grid_size
        if size <= 0:
            raise ValueError("Grid size must be positive")
        if len(pts) == 0:
            return pts

        if weights is None:
            weights = np.ones(len(pts))
        weights = np.clip(np.asarray(weights, dtype=np.float64), 0.0, None)
        if len(weights) != len(pts):
            raise ValueError(f"Expected {len(pts)} weights, got {len(weights)}")

        cells = np.floor(pts / size).astype(np.int64)
        _, inverse, counts = np.unique(cells, axis=0, return_inverse=True, return_counts=True)
        inverse = inverse.reshape(-1)
        cell_count = len(counts)

        total_weight = np.bincount(inverse, weights=weights, minlength=cell_count)
        weighted_sum = np.column_stack([
            np.bincount(inverse, weights=pts[:, axis] * weights, minlength=cell_count)
            for axis in range(3)
        ])
        plain_sum = np.column_stack([
            np.bincount(inverse, weights=pts[:, axis], minlength=cell_count)
            for axis in range(3)
        ])

        # Cells with zero total weight fall back to the plain mean
        has_weight = total_weight > 0
        centroids = plain_sum / counts[:, None]
        centroids[has_weight] = weighted_sum[has_weight] / total_weight[has_weight, None]

        self.logger.debug(f"Downsampled {len(pts)} points to {cell_count} cells of {size}m")
        return centroids

    def process(self, weighted_points: Sequence[WeightedPoint]) -> np.ndarray:
        """Confidence filter, outlier removal and downsampling in one pass."""
        positions, weights = self.split_weighted(weighted_points)
        positions, weights = self.filter_by_confidence(positions, weights)
        positions, weights = self.remove_outliers(positions, weights)
        return self.downsample(positions, weights)
