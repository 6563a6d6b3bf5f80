"""
Tests for handle-based bounding box editing
"""

import pytest
import numpy as np

from volumetric_measure.data_models import OrientedBoundingBox
from volumetric_measure.estimation.box_editor import BoxEditor, HandleType


class TestHandleType:
    """Test suite for handle classification."""

    def test_corner_handles(self):
        """Test corner handle properties."""
        handle = HandleType.CORNER_6
        assert handle.is_corner and not handle.is_face
        assert handle.axis_index is None
        assert np.array_equal(handle.corner_multiplier, [1, 1, 1])

    def test_face_handles(self):
        """Test face handle axis and direction."""
        assert HandleType.FACE_NEG_X.axis_index == 0
        assert HandleType.FACE_NEG_X.face_direction == -1.0
        assert HandleType.FACE_POS_Z.axis_index == 2
        assert HandleType.FACE_POS_Z.face_direction == 1.0
        assert HandleType.FACE_POS_Y.corner_multiplier is None


class TestBoxEditor:
    """Test suite for box editing operations."""

    @pytest.fixture
    def editor(self, config_manager):
        """Fixture providing a box editor."""
        return BoxEditor(config_manager)

    def test_drag_face_keeps_opposite_face(self, editor, unit_box):
        """Test that dragging +X moves only that face."""
        edited, changed = editor.drag_face(unit_box, 0, 1.0, [0.05, 0.02, 0.0])

        assert changed
        corners = edited.corners
        assert corners[:, 0].max() == pytest.approx(0.15)
        assert corners[:, 0].min() == pytest.approx(-0.1)
        assert np.allclose(edited.extents[1:], unit_box.extents[1:])

    def test_drag_face_rejects_collapse(self, editor, unit_box):
        """Test that a drag below the minimum extent leaves the box unchanged."""
        edited, changed = editor.drag_face(unit_box, 0, 1.0, [-0.19, 0.0, 0.0])
        assert not changed
        assert edited is unit_box

    def test_drag_face_invalid_axis(self, editor, unit_box):
        """Test error handling for a bad axis."""
        with pytest.raises(ValueError, match="Axis"):
            editor.drag_face(unit_box, 3, 1.0, [0.0, 0.0, 0.0])

    def test_drag_corner_keeps_opposite_corner(self, editor, unit_box):
        """Test that corner 6 moves while corner 0 stays fixed."""
        delta = np.array([0.02, 0.04, 0.06])
        edited, changed = editor.drag_corner(unit_box, 6, delta)

        assert changed
        assert np.allclose(edited.corners[0], unit_box.corners[0])
        assert np.allclose(edited.corners[6], unit_box.corners[6] + delta)

    def test_drag_corner_invalid_index(self, editor, unit_box):
        """Test error handling for a bad corner index."""
        with pytest.raises(ValueError, match="Corner index"):
            editor.drag_corner(unit_box, 8, [0.0, 0.0, 0.0])

    def test_drag_edge(self, editor, unit_box):
        """Test that an edge drag moves both adjacent faces."""
        edited, changed = editor.drag_edge(unit_box, 0, [0.0, -0.02, -0.03])

        assert changed
        assert np.allclose(edited.extents, [0.1, 0.11, 0.115])
        assert edited.corners[:, 1].max() == pytest.approx(0.1)
        assert edited.corners[:, 2].max() == pytest.approx(0.1)

    def test_drag_edge_invalid_index(self, editor, unit_box):
        """Test error handling for a bad edge index."""
        with pytest.raises(ValueError, match="Edge index"):
            editor.drag_edge(unit_box, 12, [0.0, 0.0, 0.0])

    def test_drag_dispatch(self, editor, unit_box):
        """Test that handle drags dispatch to face and corner edits."""
        face_box, _ = editor.drag(unit_box, HandleType.FACE_POS_Y, [0.0, 0.04, 0.0])
        assert face_box.extents[1] == pytest.approx(0.12)

        corner_box, _ = editor.drag(unit_box, HandleType.CORNER_0, [-0.02, 0.0, 0.0])
        assert corner_box.extents[0] == pytest.approx(0.11)

    def test_drag_rotated_box(self, editor, unit_box):
        """Test face drags along a yawed box axis."""
        rotated = unit_box.rotated_around_y(np.pi / 6)
        axis = rotated.local_axes[0]
        edited, changed = editor.drag_face(rotated, 0, 1.0, axis * 0.04)

        assert changed
        assert edited.extents[0] == pytest.approx(0.12)
        assert np.allclose(edited.center, axis * 0.02)

    def test_extend_to_floor(self, editor, unit_box):
        """Test floor snapping through the editor threshold."""
        extended = editor.extend_to_floor(unit_box, -0.12)
        assert extended.corners[:, 1].min() == pytest.approx(-0.12)

    def test_fit_to_points(self, editor, unit_box, rng):
        """Test refitting a loose box to the points inside it."""
        inside = rng.uniform([-0.05, -0.08, -0.04], [0.05, 0.08, 0.04], size=(300, 3))
        outside = rng.uniform(2.0, 3.0, size=(50, 3))

        fitted = editor.fit_to_points(unit_box, np.vstack([inside, outside]))
        assert fitted is not unit_box
        assert fitted.volume < unit_box.volume
        assert fitted.contains(np.zeros(3))
        assert fitted.height == pytest.approx(0.08, rel=0.15)

    def test_fit_to_points_too_few(self, editor, unit_box):
        """Test that sparse boxes are returned unchanged."""
        points = np.array([[0.0, 0.0, 0.0], [0.01, 0.0, 0.0], [5.0, 5.0, 5.0]])
        assert editor.fit_to_points(unit_box, points) is unit_box
