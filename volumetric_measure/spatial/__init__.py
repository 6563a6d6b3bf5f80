"""
Spatial Indexing Module

Octree used to consolidate point observations and answer neighbor queries.
"""

from .octree import PointCloudOctree

__all__ = ['PointCloudOctree']
