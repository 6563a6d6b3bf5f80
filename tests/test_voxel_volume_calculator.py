"""
Tests for Voxel Volume Calculation
"""

import pytest
import numpy as np

from volumetric_measure.data_models import VoxelIndex
from volumetric_measure.utils.config_manager import ConfigManager
from volumetric_measure.volume.voxel_volume_calculator import VoxelVolumeCalculator


class TestVoxelVolumeCalculator:
    """Test suite for voxel volume calculation."""

    @pytest.fixture
    def calculator(self, config_manager):
        """Fixture providing a voxel volume calculator."""
        return VoxelVolumeCalculator(config_manager)

    def test_calculator_initialization(self, calculator):
        """Test that the calculator reads its configuration."""
        assert calculator.default_voxel_size == 0.01
        assert calculator.max_grid_dimension == 500
        assert calculator.max_surface_voxels == 5000
        assert hasattr(calculator, 'logger')

    def test_too_few_points(self, calculator):
        """Test that fewer than ten points give an empty result."""
        result = calculator.calculate_volume(np.zeros((9, 3)))
        assert result.is_empty
        assert result.occupied_voxel_count == 0
        assert result.surface_voxels == []

    def test_invalid_voxel_size(self, calculator, dense_cube_grid):
        """Test error handling for non-positive voxel sizes."""
        with pytest.raises(ValueError, match="positive"):
            calculator.calculate_volume(dense_cube_grid, voxel_size=0.0)

    def test_effective_voxel_size(self, calculator):
        """Test clamping and growth for large extents."""
        small = np.array([[0, 0, 0], [0.1, 0.1, 0.1]], dtype=float)
        assert calculator.effective_voxel_size(small, 0.001) == 0.005
        assert calculator.effective_voxel_size(small, 1.0) == 0.05

        large = np.array([[0, 0, 0], [50.0, 1.0, 1.0]])
        assert calculator.effective_voxel_size(large, 0.01) == pytest.approx(0.1)

    def test_unit_cube_volume(self, calculator, dense_cube_grid):
        """Test the unit cube volume within 20% at default parameters."""
        result = calculator.calculate_volume(dense_cube_grid)

        assert result.volume == pytest.approx(1.0, rel=0.2)
        assert result.is_watertight
        assert result.interior_voxel_count > 0
        assert result.voxel_size == 0.01
        assert all(d in (100, 101) for d in result.grid_dimensions)

    def test_surface_voxels_capped(self, calculator, dense_cube_grid):
        """Test that the surface voxel list is sub-sampled."""
        result = calculator.calculate_volume(dense_cube_grid)

        assert 0 < len(result.surface_voxels) <= calculator.max_surface_voxels
        assert all(isinstance(v, VoxelIndex) for v in result.surface_voxels[:10])

        centers = np.array([result.voxel_center(v) for v in result.surface_voxels])
        near_face = np.min(np.minimum(centers, 1.0 - centers), axis=1)
        assert np.all(near_face < 0.03)

    def test_open_shell_has_no_interior(self, calculator, dense_cube_grid):
        """Test that a cube missing one face is not filled."""
        open_box = dense_cube_grid[dense_cube_grid[:, 1] < 1.0]
        result = calculator.calculate_volume(open_box)

        assert not result.is_watertight
        assert result.interior_voxel_count == 0
        assert result.volume < 0.1

    def test_solid_block(self, calculator, rng):
        """Test volume of densely sampled solid points."""
        points = rng.uniform(0.0, 0.1, size=(20000, 3))
        result = calculator.calculate_volume(points, voxel_size=0.01)
        assert result.volume == pytest.approx(0.001, rel=0.35)

    def test_fill_skipped_for_huge_grids(self, dense_cube_grid):
        """Test that interior filling is skipped above the cell budget."""
        config = ConfigManager()
        config.set('voxel.max_fill_cells', 1000)
        result = VoxelVolumeCalculator(config).calculate_volume(dense_cube_grid)

        assert result.interior_voxel_count == 0
        assert result.volume < 0.1
