"""
Bounding Box Editing

Handle-driven edits of oriented boxes. Every edit returns a new box; drags
that would shrink an extent below the minimum are rejected per axis.
"""

import logging
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from ..data_models import CORNER_SIGNS, OrientedBoundingBox, OrientationPolicy
from ..utils.config_manager import ConfigManager
from ..utils.geometry import as_point_array, as_vector
from .bounding_box_estimator import BoundingBoxEstimator


class HandleType(Enum):
    """Corner handles 0-7 and face handles 8-13."""
    CORNER_0 = 0
    CORNER_1 = 1
    CORNER_2 = 2
    CORNER_3 = 3
    CORNER_4 = 4
    CORNER_5 = 5
    CORNER_6 = 6
    CORNER_7 = 7
    FACE_NEG_X = 8
    FACE_POS_X = 9
    FACE_NEG_Y = 10
    FACE_POS_Y = 11
    FACE_NEG_Z = 12
    FACE_POS_Z = 13

    @property
    def is_corner(self) -> bool:
        return self.value < 8

    @property
    def is_face(self) -> bool:
        return self.value >= 8

    @property
    def axis_index(self) -> Optional[int]:
        """Local axis moved by a face handle."""
        return (self.value - 8) // 2 if self.is_face else None

    @property
    def face_direction(self) -> Optional[float]:
        """+1 or -1 for face handles."""
        if not self.is_face:
            return None
        return 1.0 if (self.value - 8) % 2 else -1.0

    @property
    def corner_multiplier(self) -> Optional[np.ndarray]:
        """Local sign vector of a corner handle."""
        return CORNER_SIGNS[self.value].copy() if self.is_corner else None


# (axis, direction) faces moved by each of the 12 box edges
EDGE_FACES = (
    ((1, -1.0), (2, -1.0)),
    ((0, 1.0), (2, -1.0)),
    ((1, 1.0), (2, -1.0)),
    ((0, -1.0), (2, -1.0)),
    ((1, -1.0), (2, 1.0)),
    ((0, 1.0), (2, 1.0)),
    ((1, 1.0), (2, 1.0)),
    ((0, -1.0), (2, 1.0)),
    ((0, -1.0), (1, -1.0)),
    ((0, 1.0), (1, -1.0)),
    ((0, 1.0), (1, 1.0)),
    ((0, -1.0), (1, 1.0)),
)


class BoxEditor:
    """Applies face, corner and edge drags and refits boxes to points."""

    def __init__(self, config_manager: Optional[ConfigManager] = None,
                 estimator: Optional[BoundingBoxEstimator] = None):
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        editing_config = self.config.get_box_editing_params()
        self.minimum_extent = float(editing_config.get('minimum_extent', 0.01))
        self.floor_snap_threshold = float(editing_config.get('floor_snap_threshold', 0.05))
        self.fit_min_points = int(editing_config.get('fit_min_points', 10))
        self.fit_expansion = float(editing_config.get('fit_expansion', 1.2))

        self.estimator = estimator or BoundingBoxEstimator(self.config)

    def drag(self, box: OrientedBoundingBox, handle: HandleType,
             world_delta) -> Tuple[OrientedBoundingBox, bool]:
        """Dispatch a handle drag to the corner or face implementation."""
        if handle.is_corner:
            return self.drag_corner(box, handle.value, world_delta)
        return self.drag_face(box, handle.axis_index, handle.face_direction, world_delta)

    def drag_face(self, box: OrientedBoundingBox, axis: int, direction: float,
                  world_delta) -> Tuple[OrientedBoundingBox, bool]:
        """
        Move one face along its normal, keeping the opposite face fixed.

        Args:
            box: Box being edited
            axis: Local axis index of the face
            direction: +1 or -1 selecting the face
            world_delta: Drag vector in world space

        Returns:
            Tuple of (new box, whether it changed)
        """
        if axis not in (0, 1, 2):
            raise ValueError(f"Axis must be 0, 1 or 2, got {axis}")
        face_normal = box.local_axes[axis] * np.sign(direction)
        projected = float(np.dot(as_vector(world_delta), face_normal))

        new_extent = box.extents[axis] + projected / 2.0
        if new_extent < self.minimum_extent:
            return box, False

        extents = box.extents.copy()
        extents[axis] = new_extent
        center = box.center + face_normal * (projected / 2.0)
        return OrientedBoundingBox(center, extents, box.rotation), True

    def drag_corner(self, box: OrientedBoundingBox, corner_index: int,
                    world_delta) -> Tuple[OrientedBoundingBox, bool]:
        """
        Move one corner, keeping the opposite corner fixed.

        Axes whose extent would fall below the minimum are left unchanged.
        """
        if not 0 <= corner_index < 8:
            raise ValueError(f"Corner index must be in [0, 8), got {corner_index}")
        multiplier = CORNER_SIGNS[corner_index]
        local_delta = box.rotation_matrix.T @ as_vector(world_delta)
        scaled = local_delta * multiplier

        extents = box.extents.copy()
        offset = np.zeros(3)
        for axis in range(3):
            new_extent = extents[axis] + scaled[axis] / 2.0
            if new_extent >= self.minimum_extent:
                extents[axis] = new_extent
                offset[axis] = scaled[axis] / 2.0 * multiplier[axis]

        center = box.center + box.rotation_matrix @ offset
        changed = not np.allclose(extents, box.extents)
        return OrientedBoundingBox(center, extents, box.rotation), changed

    def drag_edge(self, box: OrientedBoundingBox, edge_index: int,
                  world_delta) -> Tuple[OrientedBoundingBox, bool]:
        """Move the two faces adjacent to an edge."""
        if not 0 <= edge_index < 12:
            raise ValueError(f"Edge index must be in [0, 12), got {edge_index}")
        delta = as_vector(world_delta)

        changed = False
        for axis, direction in EDGE_FACES[edge_index]:
            face_normal = box.local_axes[axis] * direction
            if abs(float(np.dot(delta, face_normal))) <= 1e-4:
                continue
            box, moved = self.drag_face(box, axis, direction, delta)
            changed = changed or moved
        return box, changed

    def extend_to_floor(self, box: OrientedBoundingBox, floor_y: float) -> OrientedBoundingBox:
        """Close a small gap between the box bottom and the floor."""
        return box.extended_bottom_to_floor(floor_y, self.floor_snap_threshold)

    def fit_to_points(self, box: OrientedBoundingBox, points,
                      policy: OrientationPolicy = OrientationPolicy.AXIS_LOCKED
                      ) -> OrientedBoundingBox:
        """
        Refit a box to the points lying inside a slightly enlarged copy of it.

        Args:
            box: Current box
            points: Full point cloud
            policy: Orientation policy for the refit

        Returns:
            The refitted box, or the original box if too few points are inside
        """
        pts = as_point_array(points)
        search_box = box.scaled(self.fit_expansion)
        inside = pts[search_box.contains(pts)] if len(pts) else pts
        if len(inside) < self.fit_min_points:
            self.logger.debug(f"Not enough points in box to refit: {len(inside)}")
            return box

        fitted = self.estimator.estimate(inside, policy)
        if fitted is None:
            return box
        self.logger.debug(f"Refitted box to {len(inside)} points")
        return fitted
