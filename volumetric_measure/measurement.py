"""
Measurement Calculator

Runs the full measurement for a segmented object point cloud: outlier
filtering, oriented bounding box estimation and the selected volume method.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from .data_models import (
    OrientationPolicy, VolumeMethod, ReferencePlane, MeasurementResult
)
from .estimation.bounding_box_estimator import BoundingBoxEstimator
from .reconstruction.point_cloud_processor import PointCloudProcessor
from .utils.config_manager import ConfigManager
from .utils.geometry import as_point_array
from .utils.logging_config import PerformanceTimer
from .volume.alpha_shape_calculator import AlphaShapeCalculator
from .volume.ball_pivoting_mesh_builder import BallPivotingMeshBuilder
from .volume.voxel_volume_calculator import VoxelVolumeCalculator


# Upper volume bounds in liters for each size class
SIZE_CLASS_LIMITS = (
    ("small", 1.0),
    ("medium", 30.0),
    ("large", 200.0),
)


def classify_size(volume: float) -> str:
    """
    Size class of an object from its volume.

    Args:
        volume: Volume in cubic meters

    Returns:
        'small', 'medium', 'large' or 'extra_large'
    """
    liters = volume * 1000.0
    for name, limit in SIZE_CLASS_LIMITS:
        if liters < limit:
            return name
    return "extra_large"


class MeasurementCalculator:
    """Dimensions and volume of an object point cloud."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        """
        Initialize measurement calculator.

        Args:
            config_manager: Configuration manager instance
        """
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        self.processor = PointCloudProcessor(self.config)
        self.estimator = BoundingBoxEstimator(self.config)
        self._calculators = {}

        self.logger.info("Measurement calculator initialized")

    def _volume_calculator(self, method: VolumeMethod):
        """Lazily build the calculator for a volume method."""
        if method not in self._calculators:
            if method == VolumeMethod.VOXEL:
                self._calculators[method] = VoxelVolumeCalculator(self.config)
            elif method == VolumeMethod.ALPHA_SHAPE:
                self._calculators[method] = AlphaShapeCalculator(self.config)
            elif method == VolumeMethod.BALL_PIVOTING:
                self._calculators[method] = BallPivotingMeshBuilder(self.config)
        return self._calculators.get(method)

    def measure(self, points,
                policy: OrientationPolicy = OrientationPolicy.AXIS_LOCKED,
                method: VolumeMethod = VolumeMethod.BOUNDING_BOX,
                reference_planes: Optional[Sequence[ReferencePlane]] = None
                ) -> Optional[MeasurementResult]:
        """
        Measure an object.

        Args:
            points: (N, 3) world points of the object
            policy: Bounding box orientation policy
            method: Volume method; BOUNDING_BOX skips the precise volume
            reference_planes: Optional vertical planes for orientation snapping

        Returns:
            MeasurementResult, or None when no box could be estimated
        """
        pts = as_point_array(points)
        pts = pts[np.all(np.isfinite(pts), axis=1)]
        filtered = self.processor.remove_outliers(pts)

        with PerformanceTimer(self.logger, "bounding box estimation"):
            box = self.estimator.estimate(filtered, policy, reference_planes)
        if box is None:
            self.logger.warning(f"No bounding box for {len(filtered)} points")
            return None

        volume_result = None
        calculator = self._volume_calculator(method)
        if calculator is not None:
            with PerformanceTimer(self.logger, f"{method.value} volume"):
                if method == VolumeMethod.BALL_PIVOTING:
                    volume_result = calculator.build_mesh(filtered)
                else:
                    volume_result = calculator.calculate_volume(filtered)

        result = MeasurementResult(
            bounding_box=box,
            length=box.length,
            width=box.width,
            height=box.height,
            box_volume=box.volume,
            method=method,
            point_count=len(filtered),
            volume_result=volume_result,
        )
        result.size_class = classify_size(result.volume)

        self.logger.info(f"Measured {result.length * 100:.1f} x {result.width * 100:.1f} x "
                         f"{result.height * 100:.1f} cm, volume {result.volume * 1000:.3f} L "
                         f"({result.size_class})")
        return result
