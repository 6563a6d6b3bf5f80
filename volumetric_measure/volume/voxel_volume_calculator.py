"""
Voxel Volume Calculator

Estimates volume by voxelizing the point cloud and filling every empty cell
that cannot be reached from outside the grid.
"""

import logging
import math
import time
from typing import Optional

import numpy as np
from scipy import ndimage

from ..data_models import VoxelIndex, VoxelVolumeResult
from ..utils.config_manager import ConfigManager
from ..utils.geometry import as_point_array


# 6-connectivity (face neighbors only)
FACE_CONNECTIVITY = ndimage.generate_binary_structure(3, 1)


class VoxelVolumeCalculator:
    """Occupancy grid volume with flood-filled interior."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        """
        Initialize voxel volume calculator.

        Args:
            config_manager: Configuration manager instance
        """
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        voxel_config = self.config.get_voxel_params()

        self.default_voxel_size = float(voxel_config.get('default_voxel_size', 0.01))
        self.min_voxel_size = float(voxel_config.get('min_voxel_size', 0.005))
        self.max_voxel_size = float(voxel_config.get('max_voxel_size', 0.05))
        self.max_grid_dimension = int(voxel_config.get('max_grid_dimension', 500))
        self.padding = max(1, int(voxel_config.get('padding', 2)))
        self.max_fill_cells = int(voxel_config.get('max_fill_cells', 20000000))
        self.max_surface_voxels = int(voxel_config.get('max_surface_voxels', 5000))
        self.min_points = int(voxel_config.get('min_points', 10))

        self.logger.info(f"Voxel volume calculator initialized: voxel size "
                         f"{self.default_voxel_size} in [{self.min_voxel_size}, {self.max_voxel_size}]")

    def calculate_volume(self, points, voxel_size: Optional[float] = None) -> VoxelVolumeResult:
        """
        Compute the voxel volume of a point cloud.

        Args:
            points: (N, 3) world points
            voxel_size: Cell edge length in meters (defaults to config)

        Returns:
            VoxelVolumeResult (empty with fewer than 10 points)
        """
        start_time = time.perf_counter()
        if voxel_size is not None and voxel_size <= 0:
            raise ValueError("Voxel size must be positive")

        pts = as_point_array(points)
        pts = pts[np.all(np.isfinite(pts), axis=1)]
        size = self.effective_voxel_size(pts, voxel_size)

        if len(pts) < self.min_points:
            self.logger.debug(f"Too few points for voxel volume: {len(pts)}")
            return VoxelVolumeResult.empty(size, time.perf_counter() - start_time)

        origin = pts.min(axis=0)
        cells = np.floor((pts - origin) / size).astype(np.int64)
        dims = cells.max(axis=0) + 1

        # Pad so the exterior is connected around the whole object
        pad = self.padding
        grid = np.zeros(tuple(dims + 2 * pad), dtype=bool)
        grid[cells[:, 0] + pad, cells[:, 1] + pad, cells[:, 2] + pad] = True
        occupied_count = int(np.count_nonzero(grid))

        interior_count = 0
        if grid.size <= self.max_fill_cells:
            filled = self._fill_interior(grid)
            interior_count = int(np.count_nonzero(filled)) - occupied_count
            grid = filled
        else:
            self.logger.warning(f"Grid of {grid.size} cells exceeds {self.max_fill_cells}, "
                                f"skipping interior fill")

        total_count = occupied_count + interior_count
        volume = total_count * size ** 3
        surface_voxels = self._surface_voxels(grid, pad)

        elapsed = time.perf_counter() - start_time
        self.logger.info(f"Voxel volume: {volume:.6f} m^3 from {total_count} voxels "
                         f"({interior_count} interior), size={size:.4f}, {elapsed:.3f}s")

        return VoxelVolumeResult(
            volume=volume,
            occupied_voxel_count=total_count,
            voxel_size=size,
            processing_time=elapsed,
            grid_dimensions=tuple(int(d) for d in dims),
            grid_origin=origin,
            surface_voxels=surface_voxels,
            interior_voxel_count=interior_count,
            is_watertight=interior_count > 0,
        )

    def effective_voxel_size(self, points: np.ndarray, voxel_size: Optional[float] = None) -> float:
        """Clamp the requested size and grow it until the grid fits the dimension cap."""
        size = voxel_size if voxel_size is not None else self.default_voxel_size
        size = min(max(size, self.min_voxel_size), self.max_voxel_size)

        if len(points) > 0:
            max_extent = float(np.max(points.max(axis=0) - points.min(axis=0)))
            if max_extent / size > self.max_grid_dimension:
                size = max_extent / self.max_grid_dimension
                self.logger.debug(f"Voxel size increased to {size:.4f} to bound the grid")
        return size

    @staticmethod
    def _fill_interior(grid: np.ndarray) -> np.ndarray:
        """Mark empty cells not 6-connected to the padded corner as occupied."""
        labels, _ = ndimage.label(~grid, structure=FACE_CONNECTIVITY)
        exterior = labels == labels[0, 0, 0]
        return ~exterior

    def _surface_voxels(self, grid: np.ndarray, pad: int) -> list:
        """Occupied cells with an empty face neighbor, sub-sampled for display."""
        interior = ndimage.binary_erosion(grid, structure=FACE_CONNECTIVITY, border_value=0)
        surface = np.argwhere(grid & ~interior) - pad

        if len(surface) > self.max_surface_voxels:
            step = math.ceil(len(surface) / self.max_surface_voxels)
            surface = surface[::step]

        return [VoxelIndex(*cell) for cell in surface.tolist()]
