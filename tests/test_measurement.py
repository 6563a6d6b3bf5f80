"""
Tests for the measurement calculator
"""

import pytest
import numpy as np

from volumetric_measure.data_models import OrientationPolicy, VolumeMethod
from volumetric_measure.measurement import MeasurementCalculator, classify_size


class TestClassifySize:
    """Test suite for size classes."""

    @pytest.mark.parametrize("volume, expected", [
        (0.0005, "small"),
        (0.001, "medium"),
        (0.0299, "medium"),
        (0.1, "large"),
        (0.2, "extra_large"),
        (3.0, "extra_large"),
    ])
    def test_classify_size(self, volume, expected):
        """Test the liter thresholds."""
        assert classify_size(volume) == expected


class TestMeasurementCalculator:
    """Test suite for end-to-end measurement."""

    @pytest.fixture
    def calculator(self, config_manager):
        """Fixture providing a measurement calculator."""
        return MeasurementCalculator(config_manager)

    @pytest.fixture
    def carton_surface(self):
        """Regular 5 mm grid on the faces of a 30 x 20 x 10 cm carton."""
        size = np.array([0.3, 0.2, 0.1])
        faces = []
        for axis in range(3):
            others = [a for a in range(3) if a != axis]
            u = np.linspace(0.0, size[others[0]], int(round(size[others[0]] / 0.005)) + 1)
            v = np.linspace(0.0, size[others[1]], int(round(size[others[1]] / 0.005)) + 1)
            uu, vv = np.meshgrid(u, v, indexing='ij')
            for side in (0.0, size[axis]):
                face = np.empty((uu.size, 3))
                face[:, axis] = side
                face[:, others[0]] = uu.ravel()
                face[:, others[1]] = vv.ravel()
                faces.append(face)
        return np.unique(np.vstack(faces), axis=0)

    def test_box_only(self, calculator, box_points):
        """Test the default bounding box measurement."""
        result = calculator.measure(box_points)

        assert result is not None
        assert result.method == VolumeMethod.BOUNDING_BOX
        assert result.volume_result is None
        assert result.length == pytest.approx(0.2, rel=0.1)
        assert result.width == pytest.approx(0.16, rel=0.1)
        assert result.height == pytest.approx(0.1, rel=0.1)
        assert result.volume == pytest.approx(result.box_volume)
        assert result.size_class == "medium"

    def test_too_few_points(self, calculator):
        """Test that no box gives no measurement."""
        assert calculator.measure(np.zeros((3, 3))) is None

    def test_outliers_removed(self, calculator, box_points):
        """Test that stray points do not inflate the box."""
        noisy = np.vstack([box_points, [[3.0, 0.0, 0.0], [0.0, 0.0, -4.0]]])
        result = calculator.measure(noisy)
        assert result.length < 0.3
        assert result.point_count == len(box_points)

    def test_voxel_volume(self, calculator, carton_surface):
        """Test the precise voxel volume of a closed carton."""
        result = calculator.measure(carton_surface, method=VolumeMethod.VOXEL)

        assert result.volume_result is not None
        assert result.volume_result.is_watertight
        assert result.volume == pytest.approx(0.006, rel=0.25)
        assert result.box_volume == pytest.approx(0.006, rel=0.05)
        assert result.size_class == "medium"

    def test_free_policy(self, calculator, box_points):
        """Test measurement with the free orientation policy."""
        result = calculator.measure(box_points, policy=OrientationPolicy.FREE)
        assert sorted([result.length, result.width, result.height]) == pytest.approx(
            [0.1, 0.16, 0.2], rel=0.15)
