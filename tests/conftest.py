"""
Pytest configuration and fixtures for volumetric measurement tests.
"""

import pytest
import numpy as np

from volumetric_measure.data_models import OrientedBoundingBox
from volumetric_measure.utils.config_manager import ConfigManager


def sample_cube_faces(samples_per_side: int, edge: float = 1.0, seed: int = 7) -> np.ndarray:
    """
    Stratified samples on the six faces of an origin-centered cube.

    Each face is split into a regular grid of cells with one point jittered
    inside every cell, so points lie exactly on the face planes without
    forming a regular lattice.
    """
    rng = np.random.default_rng(seed)
    half = edge / 2.0
    cells = np.arange(samples_per_side)

    faces = []
    for axis in range(3):
        for side in (-half, half):
            u_index, v_index = np.meshgrid(cells, cells, indexing='ij')
            u = (u_index.ravel() + rng.uniform(0.1, 0.9, u_index.size)) / samples_per_side
            v = (v_index.ravel() + rng.uniform(0.1, 0.9, v_index.size)) / samples_per_side

            face = np.empty((u.size, 3))
            others = [a for a in range(3) if a != axis]
            face[:, axis] = side
            face[:, others[0]] = u * edge - half
            face[:, others[1]] = v * edge - half
            faces.append(face)

    return np.vstack(faces)


def grid_cube_faces(points_per_side: int, edge: float = 1.0) -> np.ndarray:
    """Regular grid on the six faces of a cube with its minimum corner at the origin."""
    line = np.linspace(0.0, edge, points_per_side)
    u, v = np.meshgrid(line, line, indexing='ij')
    u, v = u.ravel(), v.ravel()

    faces = []
    for axis in range(3):
        for side in (0.0, edge):
            face = np.empty((u.size, 3))
            others = [a for a in range(3) if a != axis]
            face[:, axis] = side
            face[:, others[0]] = u
            face[:, others[1]] = v
            faces.append(face)

    return np.unique(np.vstack(faces), axis=0)


@pytest.fixture
def config_manager():
    """Fixture providing a configuration manager instance."""
    return ConfigManager()


@pytest.fixture
def rng():
    """Fixture providing a seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture
def cube_surface_points():
    """Jittered samples on the surface of a unit cube (12 x 12 per face)."""
    return sample_cube_faces(12)


@pytest.fixture
def dense_cube_grid():
    """Regular 8 mm grid on the surface of a unit cube."""
    return grid_cube_faces(126)


@pytest.fixture
def box_extents():
    """Half extents of the reference box."""
    return np.array([0.1, 0.05, 0.08])


@pytest.fixture
def box_points(rng, box_extents):
    """500 points uniformly inside an axis-aligned box centered at the origin."""
    return rng.uniform(-box_extents, box_extents, size=(500, 3))


@pytest.fixture
def unit_box():
    """Axis-aligned box with 10 cm half extents at the origin."""
    return OrientedBoundingBox(center=np.zeros(3), extents=np.full(3, 0.1))


@pytest.fixture
def tetrahedron_mesh():
    """Closed tetrahedron as (vertices, faces)."""
    vertices = np.array([
        [0.0, 0.0, 0.0],
        [1.0, 0.0, 0.0],
        [0.0, 1.0, 0.0],
        [0.0, 0.0, 1.0],
    ])
    faces = np.array([
        [0, 2, 1],
        [0, 1, 3],
        [0, 3, 2],
        [1, 2, 3],
    ])
    return vertices, faces


@pytest.fixture
def cube_sampler():
    """Factory for jittered cube surface samples at a chosen density."""
    return sample_cube_faces


@pytest.fixture
def grid_cube_sampler():
    """Factory for lattice cube surface samples at a chosen density."""
    return grid_cube_faces
