"""
Geometry Helpers

Circumspheres, triangle measures and closed-surface integration shared by the
triangulation, alpha shape and ball pivoting components.
"""

import math
from collections import Counter
from typing import Optional, Tuple

import numpy as np


DEGENERACY_EPSILON = 1e-10


def as_point_array(points) -> np.ndarray:
    """
    Convert array-like input into an (N, 3) float64 array.

    Args:
        points: Array-like of 3D points

    Returns:
        Contiguous (N, 3) float64 array (N may be 0)
    """
    array = np.asarray(points, dtype=np.float64)
    if array.size == 0:
        return np.empty((0, 3), dtype=np.float64)
    if array.ndim == 1 and array.shape[0] == 3:
        array = array.reshape(1, 3)
    if array.ndim != 2 or array.shape[1] != 3:
        raise ValueError(f"Points must have shape (N, 3), got {array.shape}")
    return np.ascontiguousarray(array)


def as_vector(value) -> np.ndarray:
    """Convert a single 3D coordinate into a float64 vector."""
    vector = np.asarray(value, dtype=np.float64).reshape(-1)
    if vector.shape != (3,):
        raise ValueError(f"Expected a 3D vector, got shape {vector.shape}")
    return vector


def circumspheres(a: np.ndarray, b: np.ndarray, c: np.ndarray, d: np.ndarray,
                  epsilon: float = DEGENERACY_EPSILON) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Compute circumspheres for a batch of tetrahedra.

    Args:
        a, b, c, d: (M, 3) arrays with the tetrahedron vertices
        epsilon: Determinant magnitude below which a tetrahedron is degenerate

    Returns:
        Tuple of (centers (M, 3), squared radii (M,), valid mask (M,))
    """
    ab = b - a
    ac = c - a
    ad = d - a

    cross_cd = np.cross(ac, ad)
    det = np.einsum('ij,ij->i', ab, cross_cd)
    valid = np.abs(det) >= epsilon

    ab_sq = np.einsum('ij,ij->i', ab, ab)
    ac_sq = np.einsum('ij,ij->i', ac, ac)
    ad_sq = np.einsum('ij,ij->i', ad, ad)

    numerator = (ab_sq[:, None] * cross_cd
                 + ac_sq[:, None] * np.cross(ad, ab)
                 + ad_sq[:, None] * np.cross(ab, ac))
    safe_det = np.where(valid, det, 1.0)
    offset = numerator / (2.0 * safe_det[:, None])

    centers = a + offset
    radii_sq = np.einsum('ij,ij->i', offset, offset)
    radii_sq = np.where(valid, radii_sq, np.inf)
    return centers, radii_sq, valid


def triangle_circumcenter(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> Optional[np.ndarray]:
    """Circumcenter of a triangle in 3D, or None for collinear vertices."""
    ab = b - a
    ac = c - a
    normal = np.cross(ab, ac)
    denominator = 2.0 * float(np.dot(normal, normal))
    if denominator < DEGENERACY_EPSILON:
        return None

    offset = (np.cross(normal, ab) * float(np.dot(ac, ac))
              + np.cross(ac, normal) * float(np.dot(ab, ab))) / denominator
    return a + offset


def triangle_circumcircles(a: np.ndarray, b: np.ndarray,
                           c: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Vectorized triangle circumcenters and circumradii.

    Args:
        a, b, c: (M, 3) arrays with the triangle vertices

    Returns:
        Tuple of (centers (M, 3), radii (M,)); degenerate triangles get an
        infinite radius
    """
    ab = b - a
    ac = c - a
    normal = np.cross(ab, ac)
    denominator = 2.0 * np.einsum('ij,ij->i', normal, normal)
    degenerate = denominator < DEGENERACY_EPSILON
    safe = np.where(degenerate, 1.0, denominator)

    ab_sq = np.einsum('ij,ij->i', ab, ab)
    ac_sq = np.einsum('ij,ij->i', ac, ac)
    offset = (np.cross(normal, ab) * ac_sq[:, None]
              + np.cross(ac, normal) * ab_sq[:, None]) / safe[:, None]
    centers = a + offset

    # Heron's formula for the radius
    la = np.linalg.norm(b - c, axis=1)
    lb = np.sqrt(ac_sq)
    lc = np.sqrt(ab_sq)
    s = (la + lb + lc) / 2.0
    area_sq = np.clip(s * (s - la) * (s - lb) * (s - lc), 0.0, None)
    area = np.sqrt(area_sq)
    flat = degenerate | (area < DEGENERACY_EPSILON)
    radii = np.where(flat, np.inf, (la * lb * lc) / (4.0 * np.where(flat, 1.0, area)))
    return centers, radii


def triangle_normals(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """Unnormalized normals (b - a) x (c - a) for indexed triangles."""
    tri = vertices[faces]
    return np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])


def orient_faces_outward(vertices: np.ndarray, faces: np.ndarray,
                         reference: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Flip triangles whose normal points toward the reference point.

    Args:
        vertices: (N, 3) vertex array
        faces: (T, 3) vertex indices
        reference: Interior reference point; defaults to the vertex centroid

    Returns:
        (T, 3) faces with outward winding
    """
    faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    if len(faces) == 0:
        return faces
    if reference is None:
        reference = vertices.mean(axis=0)

    normals = triangle_normals(vertices, faces)
    centers = vertices[faces].mean(axis=1)
    inward = np.einsum('ij,ij->i', normals, centers - reference) < 0

    oriented = faces.copy()
    oriented[inward] = oriented[inward][:, [0, 2, 1]]
    return oriented


def mesh_volume(vertices: np.ndarray, faces: np.ndarray,
                reference: Optional[np.ndarray] = None) -> float:
    """
    Enclosed volume by the divergence theorem: V = 1/6 sum v0 . (v1 x v2).

    Coordinates are taken relative to ``reference`` (the vertex centroid by
    default), which leaves the result unchanged for closed surfaces.

    Returns:
        Absolute volume in cubic meters
    """
    faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    if len(faces) == 0:
        return 0.0
    if reference is None:
        reference = vertices.mean(axis=0)

    tri = vertices[faces] - reference
    signed = np.einsum('ij,ij->i', tri[:, 0], np.cross(tri[:, 1], tri[:, 2])) / 6.0
    return abs(float(signed.sum()))


def mesh_surface_area(vertices: np.ndarray, faces: np.ndarray) -> float:
    """Total triangle area."""
    faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    if len(faces) == 0:
        return 0.0
    normals = triangle_normals(vertices, faces)
    return float(np.linalg.norm(normals, axis=1).sum() / 2.0)


def is_watertight(faces) -> bool:
    """True if every undirected edge is shared by exactly two triangles."""
    faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    if len(faces) == 0:
        return False

    edge_counts = Counter()
    for a, b, c in faces.tolist():
        for u, v in ((a, b), (b, c), (c, a)):
            edge_counts[(u, v) if u < v else (v, u)] += 1

    return all(count == 2 for count in edge_counts.values())


def average_nearest_neighbor_distance(points: np.ndarray, sample_size: int = 100) -> float:
    """
    Mean nearest-neighbor distance over a stride sample of the points.

    Args:
        points: (N, 3) array
        sample_size: Maximum number of sampled query points

    Returns:
        Mean distance, or 0.0 for fewer than 2 points
    """
    count = len(points)
    if count < 2:
        return 0.0

    step = max(1, count // sample_size)
    samples = points[::step][:sample_size]

    distances = []
    for index, sample in zip(range(0, count, step), samples):
        dist_sq = np.einsum('ij,ij->i', points - sample, points - sample)
        dist_sq[index] = np.inf
        distances.append(math.sqrt(float(dist_sq.min())))

    return float(np.mean(distances))
