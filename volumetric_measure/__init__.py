"""
Volumetric Measurement Engine

Geometric core for measuring physical objects from depth sensor point clouds:
oriented bounding boxes and precise volume estimation.

This package implements:
- Octree point consolidation with minimum-spacing deduplication
- Axis-locked and free oriented bounding box estimation with outlier trimming
- Handle-based bounding box editing
- Incremental Delaunay triangulation and alpha shape volume
- Ball pivoting surface reconstruction with divergence theorem volume
- Voxel occupancy volume with flood-filled interior
- Multi-scan session accumulation and quality scoring
"""

__version__ = "1.0.0"
__author__ = "Volumetric Measurement Team"

from .spatial import PointCloudOctree
from .estimation import BoundingBoxEstimator, BoxEditor, HandleType
from .volume import (
    DelaunayTriangulator, AlphaShapeCalculator, BallPivotingMeshBuilder, VoxelVolumeCalculator
)
from .reconstruction import PointCloudProcessor, ScanSession
from .measurement import MeasurementCalculator, classify_size
from .data_models import (
    OrientationPolicy, VolumeMethod, WeightedPoint, ReferencePlane, OrientedBoundingBox,
    TriangulationResult, AlphaShapeResult, MeshResult, VoxelVolumeResult,
    ScanQuality, ScanSessionResult, MeasurementResult
)

__all__ = [
    # Spatial index
    'PointCloudOctree',
    # Estimation
    'BoundingBoxEstimator', 'BoxEditor', 'HandleType',
    # Volume
    'DelaunayTriangulator', 'AlphaShapeCalculator', 'BallPivotingMeshBuilder',
    'VoxelVolumeCalculator',
    # Reconstruction
    'PointCloudProcessor', 'ScanSession',
    # Measurement
    'MeasurementCalculator', 'classify_size',
    # Data Models
    'OrientationPolicy', 'VolumeMethod', 'WeightedPoint', 'ReferencePlane',
    'OrientedBoundingBox', 'TriangulationResult', 'AlphaShapeResult', 'MeshResult',
    'VoxelVolumeResult', 'ScanQuality', 'ScanSessionResult', 'MeasurementResult'
]
