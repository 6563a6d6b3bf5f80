"""
Tests for shared geometry helpers
"""

import pytest
import numpy as np
import trimesh

from volumetric_measure.utils.geometry import (
    as_point_array, circumspheres, triangle_circumcenter, triangle_circumcircles,
    orient_faces_outward, mesh_volume, mesh_surface_area,
    is_watertight, average_nearest_neighbor_distance,
)


class TestPointArrays:
    """Test suite for input coercion."""

    def test_single_point(self):
        """Test that a lone 3-vector becomes a (1, 3) array."""
        assert as_point_array([1.0, 2.0, 3.0]).shape == (1, 3)

    def test_empty(self):
        """Test that empty input becomes a (0, 3) array."""
        assert as_point_array([]).shape == (0, 3)

    def test_bad_shape(self):
        """Test error handling for non-3D points."""
        with pytest.raises(ValueError, match=r"\(N, 3\)"):
            as_point_array(np.zeros((5, 2)))


class TestCircumspheres:
    """Test suite for circumsphere and circumcircle computation."""

    def test_regular_tetrahedron(self):
        """Test the circumsphere of the unit corner tetrahedron."""
        a = np.array([[0.0, 0.0, 0.0]])
        b = np.array([[1.0, 0.0, 0.0]])
        c = np.array([[0.0, 1.0, 0.0]])
        d = np.array([[0.0, 0.0, 1.0]])

        centers, radii_sq, valid = circumspheres(a, b, c, d)
        assert valid[0]
        assert np.allclose(centers[0], [0.5, 0.5, 0.5])
        assert radii_sq[0] == pytest.approx(0.75)

    def test_flat_tetrahedron_is_invalid(self):
        """Test that coplanar vertices give an infinite radius."""
        a = np.array([[0.0, 0.0, 0.0]])
        b = np.array([[1.0, 0.0, 0.0]])
        c = np.array([[0.0, 1.0, 0.0]])
        d = np.array([[1.0, 1.0, 0.0]])

        _, radii_sq, valid = circumspheres(a, b, c, d)
        assert not valid[0]
        assert np.isinf(radii_sq[0])

    def test_triangle_circumcircle(self):
        """Test scalar and vectorized triangle circumcircles agree."""
        a = np.array([0.0, 0.0, 0.0])
        b = np.array([2.0, 0.0, 0.0])
        c = np.array([0.0, 2.0, 0.0])

        center = triangle_circumcenter(a, b, c)
        assert np.allclose(center, [1.0, 1.0, 0.0])

        centers, radii = triangle_circumcircles(a[None], b[None], c[None])
        assert np.allclose(centers[0], center)
        assert radii[0] == pytest.approx(np.sqrt(2.0))

    def test_collinear_triangle(self):
        """Test degenerate triangle handling."""
        a = np.array([0.0, 0.0, 0.0])
        b = np.array([1.0, 0.0, 0.0])
        c = np.array([2.0, 0.0, 0.0])

        assert triangle_circumcenter(a, b, c) is None
        _, radii = triangle_circumcircles(a[None], b[None], c[None])
        assert np.isinf(radii[0])


class TestMeshMeasures:
    """Test suite for volume, area and watertightness."""

    def test_tetrahedron_is_watertight(self, tetrahedron_mesh):
        """Test that a closed tetrahedron is watertight."""
        _, faces = tetrahedron_mesh
        assert is_watertight(faces)

    def test_removing_face_breaks_watertightness(self, tetrahedron_mesh):
        """Test that dropping one face opens the mesh."""
        _, faces = tetrahedron_mesh
        assert not is_watertight(faces[:3])
        assert not is_watertight(np.empty((0, 3), dtype=int))

    def test_tetrahedron_volume(self, tetrahedron_mesh):
        """Test divergence theorem volume of the corner tetrahedron."""
        vertices, faces = tetrahedron_mesh
        assert mesh_volume(vertices, faces) == pytest.approx(1.0 / 6.0)

    def test_volume_independent_of_winding(self, tetrahedron_mesh):
        """Test that outward orientation repairs mixed winding."""
        vertices, faces = tetrahedron_mesh
        mixed = faces.copy()
        mixed[1] = mixed[1][[0, 2, 1]]

        oriented = orient_faces_outward(vertices, mixed)
        assert mesh_volume(vertices, oriented) == pytest.approx(1.0 / 6.0)

        normals = np.cross(vertices[oriented[:, 1]] - vertices[oriented[:, 0]],
                           vertices[oriented[:, 2]] - vertices[oriented[:, 0]])
        outward = vertices[oriented].mean(axis=1) - vertices.mean(axis=0)
        assert np.all(np.einsum('ij,ij->i', normals, outward) > 0)

    def test_matches_trimesh(self):
        """Test volume, area and watertightness against trimesh on a box."""
        box = trimesh.creation.box(extents=[0.4, 0.2, 0.3])
        vertices = np.asarray(box.vertices)
        faces = np.asarray(box.faces)

        assert mesh_volume(vertices, faces) == pytest.approx(box.volume)
        assert mesh_surface_area(vertices, faces) == pytest.approx(box.area)
        assert is_watertight(faces) == box.is_watertight

    def test_matches_trimesh_icosphere(self):
        """Test volume against trimesh on a shifted sphere mesh."""
        sphere = trimesh.creation.icosphere(subdivisions=2, radius=0.5)
        sphere.apply_translation([3.0, -1.0, 2.0])
        vertices = np.asarray(sphere.vertices)
        faces = np.asarray(sphere.faces)

        assert mesh_volume(vertices, faces) == pytest.approx(sphere.volume, rel=1e-9)
        assert is_watertight(faces)


class TestNearestNeighbors:
    """Test suite for average nearest-neighbor spacing."""

    def test_regular_lattice(self):
        """Test spacing on a regular lattice."""
        line = np.arange(6) * 0.05
        points = np.stack(np.meshgrid(line, line, line, indexing='ij'), axis=-1).reshape(-1, 3)
        assert average_nearest_neighbor_distance(points) == pytest.approx(0.05)

    def test_too_few_points(self):
        """Test the single-point case."""
        assert average_nearest_neighbor_distance(np.zeros((1, 3))) == 0.0
