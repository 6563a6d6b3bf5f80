"""
Bounding Box Estimation Module

Oriented bounding box fitting and handle-based box editing.
"""

from .bounding_box_estimator import BoundingBoxEstimator, convex_hull_2d, minimum_area_rectangle
from .box_editor import BoxEditor, HandleType

__all__ = ['BoundingBoxEstimator', 'convex_hull_2d', 'minimum_area_rectangle',
           'BoxEditor', 'HandleType']
