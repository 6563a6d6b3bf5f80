"""
Data Models for the Volumetric Measurement Engine

Defines all data structures used throughout the system.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple, Dict, List, NamedTuple, Optional
import numpy as np
from scipy.spatial.transform import Rotation


WORLD_UP = np.array([0.0, 1.0, 0.0])
MINIMUM_EXTENT = 0.01  # Smallest half size an edit may leave, meters

# Unit-cube corner signs, bottom face (z = -1) first
CORNER_SIGNS = np.array([
    [-1, -1, -1], [1, -1, -1], [1, 1, -1], [-1, 1, -1],
    [-1, -1, 1], [1, -1, 1], [1, 1, 1], [-1, 1, 1],
], dtype=np.float64)

# Corner index pairs forming the 12 box edges
EDGE_INDICES = (
    (0, 1), (1, 2), (2, 3), (3, 0),
    (4, 5), (5, 6), (6, 7), (7, 4),
    (0, 4), (1, 5), (2, 6), (3, 7),
)


class OrientationPolicy(Enum):
    """How the bounding box orientation is chosen."""
    AXIS_LOCKED = "axis_locked"  # Vertical axis fixed to world up
    FREE = "free"  # Full 3D PCA


class VolumeMethod(Enum):
    """Volume algorithm, ordered from fastest to most detailed."""
    BOUNDING_BOX = "bounding_box"
    VOXEL = "voxel"
    ALPHA_SHAPE = "alpha_shape"
    BALL_PIVOTING = "ball_pivoting"


@dataclass
class WeightedPoint:
    """Point with a sensor confidence weight in [0, 1]."""
    position: np.ndarray  # (3,) world coordinates
    confidence: float


@dataclass
class ReferencePlane:
    """Detected environment plane used to snap box orientation."""
    position: np.ndarray  # Point on the plane
    normal: np.ndarray  # Unit normal
    area: float  # Square meters


class VoxelIndex(NamedTuple):
    """Integer cell coordinates in a voxel grid."""
    x: int
    y: int
    z: int


class Triangle(NamedTuple):
    """Triangle as three indices into a shared point array."""
    a: int
    b: int
    c: int

    @property
    def key(self) -> Tuple[int, int, int]:
        """Orientation independent identity."""
        return tuple(sorted(self))


class Tetrahedron(NamedTuple):
    """Tetrahedron as four indices into a shared point array."""
    a: int
    b: int
    c: int
    d: int

    @property
    def key(self) -> Tuple[int, int, int, int]:
        """Orientation independent identity."""
        return tuple(sorted(self))

    def faces(self) -> List[Triangle]:
        """The four faces, each paired with the vertex not on it by position."""
        return [
            Triangle(self.a, self.b, self.c),
            Triangle(self.a, self.b, self.d),
            Triangle(self.a, self.c, self.d),
            Triangle(self.b, self.c, self.d),
        ]

    def opposite_vertices(self) -> Tuple[int, int, int, int]:
        """Vertex opposite each face returned by ``faces``."""
        return (self.d, self.c, self.b, self.a)


@dataclass(frozen=True, eq=False)
class OrientedBoundingBox:
    """Oriented box given by center, half extents and a unit quaternion [x, y, z, w]."""
    center: np.ndarray
    extents: np.ndarray
    rotation: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))

    def __post_init__(self):
        center = np.asarray(self.center, dtype=np.float64).reshape(3)
        extents = np.abs(np.asarray(self.extents, dtype=np.float64).reshape(3))
        quat = np.asarray(self.rotation, dtype=np.float64).reshape(4)
        norm = np.linalg.norm(quat)
        if norm < 1e-12:
            raise ValueError("Rotation quaternion must be non-zero")
        object.__setattr__(self, 'center', center)
        object.__setattr__(self, 'extents', extents)
        object.__setattr__(self, 'rotation', quat / norm)

    @classmethod
    def axis_aligned(cls, min_point, max_point) -> "OrientedBoundingBox":
        """Create a box from world-axis-aligned min/max corners."""
        min_point = np.asarray(min_point, dtype=np.float64)
        max_point = np.asarray(max_point, dtype=np.float64)
        return cls(center=(min_point + max_point) / 2.0,
                   extents=(max_point - min_point) / 2.0)

    @classmethod
    def from_rotation_matrix(cls, center, extents, matrix: np.ndarray) -> "OrientedBoundingBox":
        """Create a box whose local axes are the columns of ``matrix``."""
        quat = Rotation.from_matrix(np.asarray(matrix, dtype=np.float64)).as_quat()
        return cls(center=center, extents=extents, rotation=quat)

    # Derived geometry

    @property
    def rotation_matrix(self) -> np.ndarray:
        """3x3 matrix whose columns are the local axes in world space."""
        return Rotation.from_quat(self.rotation).as_matrix()

    @property
    def dimensions(self) -> np.ndarray:
        """Full edge lengths along the local axes."""
        return self.extents * 2.0

    @property
    def volume(self) -> float:
        """Box volume in cubic meters."""
        return float(np.prod(self.dimensions))

    @property
    def local_axes(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        matrix = self.rotation_matrix
        return matrix[:, 0], matrix[:, 1], matrix[:, 2]

    @property
    def corners(self) -> np.ndarray:
        """(8, 3) corner positions in world space."""
        return self.local_to_world(CORNER_SIGNS * self.extents)

    @property
    def edges(self) -> List[Tuple[np.ndarray, np.ndarray]]:
        """The 12 box edges as pairs of world-space endpoints."""
        corners = self.corners
        return [(corners[i], corners[j]) for i, j in EDGE_INDICES]

    @property
    def sorted_dimensions(self) -> List[Tuple[float, np.ndarray]]:
        """(dimension, axis) pairs ordered longest first."""
        dims = self.dimensions
        axes = self.local_axes
        pairs = [(float(dims[i]), axes[i]) for i in range(3)]
        return sorted(pairs, key=lambda pair: pair[0], reverse=True)

    @property
    def length(self) -> float:
        return self.sorted_dimensions[0][0]

    @property
    def width(self) -> float:
        return self.sorted_dimensions[1][0]

    @property
    def height(self) -> float:
        return self.sorted_dimensions[2][0]

    def axis_mapping(self, camera_forward: Optional[np.ndarray] = None) -> Tuple[int, int, int]:
        """
        Map local axes to (height, length, width) indices.

        Height is the axis most aligned with world up, length the remaining axis
        most aligned with the horizontal viewing direction.

        Args:
            camera_forward: Viewing direction in world space; defaults to -Z

        Returns:
            Tuple of (height_index, length_index, width_index)
        """
        axes = self.local_axes
        height_index = max(range(3), key=lambda i: abs(float(np.dot(axes[i], WORLD_UP))))

        forward = np.array([0.0, 0.0, -1.0])
        if camera_forward is not None:
            horizontal = np.asarray(camera_forward, dtype=np.float64).copy()
            horizontal[1] = 0.0
            if np.linalg.norm(horizontal) > 0.01:
                forward = horizontal / np.linalg.norm(horizontal)

        remaining = [i for i in range(3) if i != height_index]
        length_index = max(remaining, key=lambda i: abs(float(np.dot(axes[i], forward))))
        width_index = next(i for i in remaining if i != length_index)
        return height_index, length_index, width_index

    # Transforms

    def world_to_local(self, points) -> np.ndarray:
        """Express world points in box-local coordinates."""
        points = np.asarray(points, dtype=np.float64)
        return (points - self.center) @ self.rotation_matrix

    def local_to_world(self, points) -> np.ndarray:
        """Map box-local coordinates back to world space."""
        points = np.asarray(points, dtype=np.float64)
        return points @ self.rotation_matrix.T + self.center

    def contains(self, points, tolerance: float = 0.0):
        """
        Test whether points lie inside the box.

        Args:
            points: A single (3,) point or an (N, 3) array
            tolerance: Slack added to every extent

        Returns:
            bool for a single point, boolean mask for an array
        """
        points = np.asarray(points, dtype=np.float64)
        local = self.world_to_local(points)
        inside = np.all(np.abs(local) <= self.extents + tolerance, axis=-1)
        return bool(inside) if points.ndim == 1 else inside

    # Edits (each returns a new box)

    def with_extents(self, extents, minimum_extent: float = MINIMUM_EXTENT) -> "OrientedBoundingBox":
        """Copy with new extents clamped to the minimum extent."""
        extents = np.maximum(np.abs(np.asarray(extents, dtype=np.float64)), minimum_extent)
        return OrientedBoundingBox(self.center, extents, self.rotation)

    def translated(self, offset) -> "OrientedBoundingBox":
        return OrientedBoundingBox(self.center + np.asarray(offset, dtype=np.float64),
                                   self.extents, self.rotation)

    def scaled(self, factor: float) -> "OrientedBoundingBox":
        """Uniform scale about the center."""
        if factor <= 0:
            raise ValueError("Scale factor must be positive")
        return self.with_extents(self.extents * factor)

    def scaled_along_axis(self, axis: int, factor: float) -> "OrientedBoundingBox":
        """Scale one local axis about the center."""
        if axis not in (0, 1, 2):
            raise ValueError(f"Axis must be 0, 1 or 2, got {axis}")
        if factor <= 0:
            raise ValueError("Scale factor must be positive")
        extents = self.extents.copy()
        extents[axis] *= factor
        return self.with_extents(extents)

    def rotated_around_y(self, angle: float) -> "OrientedBoundingBox":
        """Rotate about the world up axis through the center (radians)."""
        spin = Rotation.from_rotvec(WORLD_UP * angle)
        rotation = (spin * Rotation.from_quat(self.rotation)).as_quat()
        return OrientedBoundingBox(self.center, self.extents, rotation)

    def extended_bottom_to_floor(self, floor_y: float,
                                 threshold: float = 0.05) -> "OrientedBoundingBox":
        """
        Stretch the box down to a floor plane when the gap is small.

        Only applies when the box's vertical axis is its local Y axis (tilted
        boxes are returned unchanged).

        Args:
            floor_y: World Y coordinate of the floor
            threshold: Largest gap that is closed, meters

        Returns:
            Extended box, or the same box if the gap is negative or too large
        """
        local_y = self.local_axes[1]
        if abs(float(np.dot(local_y, WORLD_UP))) < 0.99:
            return self

        bottom_y = float(self.corners[:, 1].min())
        gap = bottom_y - floor_y
        if gap <= 0 or gap > threshold:
            return self

        extents = self.extents.copy()
        extents[1] += gap / 2.0
        center = self.center.copy()
        center[1] -= gap / 2.0
        return OrientedBoundingBox(center, extents, self.rotation)

    def is_close(self, other: "OrientedBoundingBox", tolerance: float = 1e-5) -> bool:
        """Numerical equality of center, extents and rotation (up to quaternion sign)."""
        same_rotation = (np.allclose(self.rotation, other.rotation, atol=tolerance)
                         or np.allclose(self.rotation, -other.rotation, atol=tolerance))
        return (same_rotation
                and np.allclose(self.center, other.center, atol=tolerance)
                and np.allclose(self.extents, other.extents, atol=tolerance))


@dataclass
class TriangulationResult:
    """Delaunay tetrahedralization over a shared point array."""
    points: np.ndarray
    tetrahedra: List[Tetrahedron]
    processing_time: float = 0.0

    @property
    def is_empty(self) -> bool:
        return len(self.tetrahedra) == 0

    def get_face_counts(self) -> Dict[Tuple[int, int, int], int]:
        """Number of tetrahedra sharing each face, keyed by sorted indices."""
        counts: Dict[Tuple[int, int, int], int] = {}
        for tetra in self.tetrahedra:
            for face in tetra.faces():
                counts[face.key] = counts.get(face.key, 0) + 1
        return counts

    def get_surface_triangles(self) -> List[Triangle]:
        """Faces belonging to exactly one tetrahedron (the convex hull)."""
        first_seen: Dict[Tuple[int, int, int], Triangle] = {}
        counts: Dict[Tuple[int, int, int], int] = {}
        for tetra in self.tetrahedra:
            for face in tetra.faces():
                counts[face.key] = counts.get(face.key, 0) + 1
                first_seen.setdefault(face.key, face)
        return [first_seen[key] for key, count in counts.items() if count == 1]

    def get_all_edges(self) -> List[Tuple[int, int]]:
        """Unique undirected edges as sorted index pairs."""
        edges = set()
        for tetra in self.tetrahedra:
            v = tetra.key
            for i in range(4):
                for j in range(i + 1, 4):
                    edges.add((v[i], v[j]))
        return sorted(edges)


@dataclass
class VolumeResultBase:
    """Shared conversions for the algorithm-specific volume results."""

    @property
    def volume_liters(self) -> float:
        return self.volume * 1000.0

    @property
    def volume_cubic_cm(self) -> float:
        return self.volume * 1e6

    @property
    def is_empty(self) -> bool:
        return self.volume == 0.0


@dataclass
class AlphaShapeResult(VolumeResultBase):
    """Results from alpha shape volume calculation."""
    volume: float
    surface_area: float
    alpha: float
    triangle_count: int
    processing_time: float
    surface_triangles: np.ndarray  # (T, 3, 3) world-space triangles
    faces: np.ndarray  # (T, 3) indices into the input points
    is_watertight: bool

    @classmethod
    def empty(cls, alpha: float = 0.0, processing_time: float = 0.0) -> "AlphaShapeResult":
        return cls(volume=0.0, surface_area=0.0, alpha=alpha, triangle_count=0,
                   processing_time=processing_time,
                   surface_triangles=np.empty((0, 3, 3)), faces=np.empty((0, 3), dtype=np.int64),
                   is_watertight=False)


@dataclass
class MeshResult(VolumeResultBase):
    """Results from ball pivoting surface reconstruction."""
    volume: float
    surface_area: float
    triangles: np.ndarray  # (T, 3, 3) world-space triangles
    faces: np.ndarray  # (T, 3) indices into the input points
    vertex_count: int
    triangle_count: int
    processing_time: float
    ball_radius: float
    is_watertight: bool
    point_coverage: float  # Fraction of input points used by the mesh

    @classmethod
    def empty(cls, ball_radius: float = 0.0, processing_time: float = 0.0) -> "MeshResult":
        return cls(volume=0.0, surface_area=0.0, triangles=np.empty((0, 3, 3)),
                   faces=np.empty((0, 3), dtype=np.int64), vertex_count=0, triangle_count=0,
                   processing_time=processing_time, ball_radius=ball_radius,
                   is_watertight=False, point_coverage=0.0)


@dataclass
class VoxelVolumeResult(VolumeResultBase):
    """Results from voxel volume calculation."""
    volume: float
    occupied_voxel_count: int
    voxel_size: float
    processing_time: float
    grid_dimensions: Tuple[int, int, int]
    grid_origin: np.ndarray
    surface_voxels: List[VoxelIndex]
    interior_voxel_count: int = 0
    is_watertight: bool = False  # True when the shell enclosed interior cells

    def voxel_center(self, index: VoxelIndex) -> np.ndarray:
        """World-space center of a voxel."""
        return self.grid_origin + (np.asarray(index, dtype=np.float64) + 0.5) * self.voxel_size

    @classmethod
    def empty(cls, voxel_size: float = 0.0, processing_time: float = 0.0) -> "VoxelVolumeResult":
        return cls(volume=0.0, occupied_voxel_count=0, voxel_size=voxel_size,
                   processing_time=processing_time, grid_dimensions=(0, 0, 0),
                   grid_origin=np.zeros(3), surface_voxels=[])


@dataclass
class ScanQuality:
    """Coverage and quality of an accumulated multi-scan session."""
    point_count: int
    scan_count: int
    angular_coverage: float  # Fraction of yaw sectors observed
    score: float  # Weighted score in [0, 1]
    is_sufficient: bool


@dataclass
class ScanSessionResult:
    """Consolidated output of a multi-scan session."""
    points: np.ndarray
    scan_count: int
    total_inserted: int
    quality: ScanQuality
    duration: float


@dataclass
class MeasurementResult:
    """Box measurement with an optional precise volume."""
    bounding_box: OrientedBoundingBox
    length: float
    width: float
    height: float
    box_volume: float
    method: VolumeMethod
    point_count: int
    volume_result: Optional[VolumeResultBase] = None
    size_class: str = "small"

    @property
    def volume(self) -> float:
        """Best available volume: the precise result when present, else the box."""
        if self.volume_result is not None and not self.volume_result.is_empty:
            return self.volume_result.volume
        return self.box_volume
