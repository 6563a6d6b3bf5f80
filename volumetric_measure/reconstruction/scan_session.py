"""
Multi-Scan Session

Accumulates points from several observations of one object into a shared
octree and scores how complete the combined capture is.
"""

import logging
import math
import threading
import time
from typing import List, Optional

import numpy as np

from ..data_models import OrientedBoundingBox, ScanQuality, ScanSessionResult
from ..spatial.octree import PointCloudOctree
from ..utils.config_manager import ConfigManager
from ..utils.geometry import as_point_array, as_vector


class ScanSession:
    """Long-lived consolidation of repeated scans of a single object."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        """
        Initialize scan session.

        Args:
            config_manager: Configuration manager instance
        """
        self.config = config_manager or ConfigManager()
        self.logger = logging.getLogger(__name__)

        session_config = self.config.get_scan_session_params()

        self.target_point_count = int(session_config.get('target_point_count', 15000))
        self.min_scans = int(session_config.get('min_scans', 3))
        self.bounds_margin = float(session_config.get('bounds_margin', 0.05))
        self.coverage_sectors = int(session_config.get('coverage_sectors', 8))
        self.sufficient_score = float(session_config.get('sufficient_score', 0.6))

        self._lock = threading.Lock()
        self.octree = PointCloudOctree(self.config)
        self._reset_state()

        self.logger.info(f"Scan session initialized: target {self.target_point_count} points, "
                         f"{self.min_scans} scans, {self.coverage_sectors} sectors")

    def _reset_state(self) -> None:
        self.active = False
        self.initial_box: Optional[OrientedBoundingBox] = None
        self._bounds_min: Optional[np.ndarray] = None
        self._bounds_max: Optional[np.ndarray] = None
        self.scan_count = 0
        self.total_inserted = 0
        self.total_processed = 0
        self.camera_positions: List[np.ndarray] = []
        self._start_time: Optional[float] = None

    @property
    def accumulated_points(self) -> np.ndarray:
        """All consolidated points so far."""
        return self.octree.get_all_points()

    @property
    def point_count(self) -> int:
        return self.octree.point_count

    def start(self, initial_box: Optional[OrientedBoundingBox] = None) -> None:
        """
        Begin a new session, discarding anything accumulated before.

        Args:
            initial_box: Optional box around the object; points farther than
                the configured margin outside it are ignored
        """
        self.reset()
        with self._lock:
            self.active = True
            self._start_time = time.perf_counter()
            if initial_box is not None:
                corners = initial_box.corners
                self.initial_box = initial_box
                self._bounds_min = corners.min(axis=0) - self.bounds_margin
                self._bounds_max = corners.max(axis=0) + self.bounds_margin

        self.logger.info("Scan session started" + (
            f" with bounds {self._bounds_min} - {self._bounds_max}" if initial_box is not None else ""))

    def add_scan(self, points, camera_position=None) -> int:
        """
        Merge one observation into the session.

        Args:
            points: (N, 3) world points of this scan
            camera_position: Optional camera position used for coverage

        Returns:
            Number of points that were new to the session
        """
        pts = as_point_array(points)
        camera = as_vector(camera_position) if camera_position is not None else None

        with self._lock:
            if not self.active:
                self.logger.warning("add_scan called without an active session, ignoring")
                return 0

            if self._bounds_min is not None and len(pts) > 0:
                inside = np.all((pts >= self._bounds_min) & (pts <= self._bounds_max), axis=1)
                pts = pts[inside]

            inserted = self.octree.insert(pts)
            self.scan_count += 1
            self.total_inserted += inserted
            self.total_processed += len(pts)
            if camera is not None:
                self.camera_positions.append(camera)

        self.logger.debug(f"Scan {self.scan_count}: {inserted}/{len(pts)} new points, "
                          f"{self.point_count} accumulated")
        return inserted

    def angular_coverage(self) -> float:
        """Fraction of yaw sectors around the object seen by a camera."""
        if not self.camera_positions:
            return 0.0

        if self.initial_box is not None:
            center = self.initial_box.center
        else:
            points = self.accumulated_points
            if len(points) == 0:
                return 0.0
            center = points.mean(axis=0)

        sector_width = 2.0 * math.pi / self.coverage_sectors
        sectors = set()
        for camera in self.camera_positions:
            offset = camera - center
            if math.hypot(offset[0], offset[2]) < 1e-9:
                continue
            yaw = math.atan2(offset[2], offset[0]) % (2.0 * math.pi)
            sectors.add(min(int(yaw // sector_width), self.coverage_sectors - 1))

        return len(sectors) / self.coverage_sectors

    def evaluate_quality(self) -> ScanQuality:
        """
        Score the session.

        The score weights point density (0.4), angular coverage (0.3) and
        number of scans (0.3), each saturating at its target.
        """
        point_count = self.point_count
        coverage = self.angular_coverage()
        density_score = min(1.0, point_count / self.target_point_count) if self.target_point_count > 0 else 1.0
        scan_score = min(1.0, self.scan_count / self.min_scans) if self.min_scans > 0 else 1.0

        score = 0.4 * density_score + 0.3 * coverage + 0.3 * scan_score
        sufficient = self.scan_count >= self.min_scans and score >= self.sufficient_score

        return ScanQuality(
            point_count=point_count,
            scan_count=self.scan_count,
            angular_coverage=coverage,
            score=score,
            is_sufficient=sufficient,
        )

    def finish(self) -> ScanSessionResult:
        """End the session and return the consolidated cloud."""
        quality = self.evaluate_quality()
        with self._lock:
            duration = time.perf_counter() - self._start_time if self._start_time is not None else 0.0
            self.active = False

        points = self.accumulated_points
        self.logger.info(f"Scan session finished: {len(points)} points from {self.scan_count} scans, "
                         f"score={quality.score:.2f}, {duration:.1f}s")

        return ScanSessionResult(
            points=points,
            scan_count=self.scan_count,
            total_inserted=self.total_inserted,
            quality=quality,
            duration=duration,
        )

    def reset(self) -> None:
        """Return to the idle state with an empty octree."""
        with self._lock:
            self.octree.clear()
            self._reset_state()
        self.logger.debug("Scan session reset")
