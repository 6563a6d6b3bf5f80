"""
Tests for Alpha Shape Volume Calculation
"""

import pytest
import numpy as np
import trimesh

from volumetric_measure.volume.alpha_shape_calculator import AlphaShapeCalculator


class TestAlphaShapeCalculator:
    """Test suite for alpha shape volume calculation."""

    @pytest.fixture
    def calculator(self, config_manager):
        """Fixture providing an alpha shape calculator."""
        return AlphaShapeCalculator(config_manager)

    @pytest.fixture
    def small_tetrahedron(self):
        """Corner tetrahedron with 10 cm legs."""
        return np.array([[0, 0, 0], [0.1, 0, 0], [0, 0.1, 0], [0, 0, 0.1]], dtype=float)

    def test_calculator_initialization(self, calculator):
        """Test that the calculator reads its configuration."""
        assert calculator.min_alpha == 0.005
        assert calculator.max_alpha == 0.5
        assert calculator.alpha_multiplier == 2.5
        assert hasattr(calculator, 'logger')

    def test_clamp_alpha(self, calculator):
        """Test alpha clamping to the configured range."""
        assert calculator.clamp_alpha(10.0) == 0.5
        assert calculator.clamp_alpha(0.0001) == 0.005
        assert calculator.clamp_alpha(0.1) == 0.1

    def test_single_tetrahedron(self, calculator, small_tetrahedron):
        """Test that a lone tetrahedron is a closed alpha shape."""
        result = calculator.calculate_volume(small_tetrahedron, alpha=0.2)

        assert result.triangle_count == 4
        assert result.is_watertight
        assert result.volume == pytest.approx(0.1 ** 3 / 6.0)
        assert result.surface_triangles.shape == (4, 3, 3)

    def test_faces_match_trimesh(self, calculator, small_tetrahedron):
        """Test the surface against an independent mesh library."""
        result = calculator.calculate_volume(small_tetrahedron, alpha=0.2)
        mesh = trimesh.Trimesh(vertices=small_tetrahedron, faces=result.faces, process=False)

        assert mesh.is_watertight
        assert mesh.is_winding_consistent
        # Outward winding gives a positive signed volume
        assert mesh.volume == pytest.approx(result.volume)
        assert mesh.area == pytest.approx(result.surface_area)

    def test_too_few_points(self, calculator):
        """Test that fewer than four points give an empty result."""
        result = calculator.calculate_volume(np.zeros((3, 3)))
        assert result.is_empty
        assert result.triangle_count == 0
        assert not result.is_watertight

    def test_tiny_alpha_gives_empty_result(self, calculator, cube_surface_points):
        """Test that an alpha below the point spacing claims no faces."""
        result = calculator.calculate_volume(cube_surface_points, alpha=0.001)
        assert result.alpha == 0.005
        assert result.is_empty

    def test_auto_alpha(self, calculator, cube_surface_points):
        """Test alpha selection from the point spacing."""
        alpha = calculator.auto_alpha(cube_surface_points)
        assert calculator.min_alpha <= alpha <= calculator.max_alpha
        assert 0.05 < alpha < 0.3

    def test_unit_cube_volume(self, calculator, cube_surface_points):
        """Test the unit cube volume within 20% at default parameters."""
        result = calculator.calculate_volume(cube_surface_points)

        assert result.volume == pytest.approx(1.0, rel=0.2)
        assert result.volume <= 1.0 + 1e-9
        assert result.is_watertight
        assert result.triangle_count > 0
        assert result.faces.max() < len(cube_surface_points)
        assert result.surface_area == pytest.approx(6.0, rel=0.3)
        assert result.volume_liters == pytest.approx(result.volume * 1000.0)

    @pytest.mark.parametrize("samples_per_side", [8, 16])
    def test_unit_cube_volume_across_densities(self, calculator, cube_sampler, samples_per_side):
        """Test that the cube surface stays closed at coarser and finer sampling."""
        points = cube_sampler(samples_per_side)
        result = calculator.calculate_volume(points)

        assert result.volume == pytest.approx(1.0, rel=0.2)
        mesh = trimesh.Trimesh(vertices=points, faces=result.faces, process=False)
        assert mesh.is_winding_consistent
        assert mesh.volume == pytest.approx(result.volume)

    def test_regular_grid_cube(self, calculator, grid_cube_sampler):
        """Test a lattice-sampled cube with cospherical point sets."""
        result = calculator.calculate_volume(grid_cube_sampler(11))
        assert result.volume == pytest.approx(1.0, rel=0.2)

    def test_separated_cubes_are_not_bridged(self, calculator, cube_sampler):
        """Test that the gap between two objects is carved away."""
        first = cube_sampler(8, edge=0.2, seed=3)
        second = cube_sampler(8, edge=0.2, seed=5) + np.array([0.6, 0.03, -0.02])
        points = np.vstack([first, second])

        result = calculator.calculate_volume(points)

        assert result.volume == pytest.approx(2 * 0.2 ** 3, rel=0.2)
        assert result.is_watertight

    def test_multiple_alphas_sorted(self, calculator, small_tetrahedron):
        """Test volumes over several alpha values."""
        results = calculator.estimate_volume_at_multiple_alphas(small_tetrahedron, [0.3, 0.01, 0.2])

        assert [alpha for alpha, _ in results] == [0.01, 0.2, 0.3]
        assert results[0][1] == 0.0
        assert results[-1][1] == pytest.approx(0.1 ** 3 / 6.0)

    def test_find_optimal_alpha(self, calculator, small_tetrahedron):
        """Test that the bisection stays inside the alpha range."""
        alpha = calculator.find_optimal_alpha(small_tetrahedron, target_connectivity=1.0)
        assert calculator.min_alpha <= alpha <= calculator.max_alpha

        # The lone tetrahedron is fully claimed once alpha reaches its circumradius
        circumradius = np.sqrt(0.75) * 0.1
        assert alpha == pytest.approx(circumradius, abs=0.001)

    def test_find_optimal_alpha_too_few_points(self, calculator):
        """Test the midpoint fallback for tiny inputs."""
        assert calculator.find_optimal_alpha(np.zeros((2, 3))) == pytest.approx(0.2525)
