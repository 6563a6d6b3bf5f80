"""
Volumetric Analysis Module

Delaunay triangulation, alpha shapes, ball pivoting and voxel volume estimation.
"""

from .delaunay_triangulator import DelaunayTriangulator
from .alpha_shape_calculator import AlphaShapeCalculator
from .ball_pivoting_mesh_builder import BallPivotingMeshBuilder
from .voxel_volume_calculator import VoxelVolumeCalculator

__all__ = ['DelaunayTriangulator', 'AlphaShapeCalculator',
           'BallPivotingMeshBuilder', 'VoxelVolumeCalculator']
