"""
Point Cloud Reconstruction Module

Sensor point filtering, downsampling and multi-scan consolidation.
"""

from .point_cloud_processor import PointCloudProcessor
from .scan_session import ScanSession

__all__ = ['PointCloudProcessor', 'ScanSession']
