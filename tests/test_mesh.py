"""
Tests for the structured 3D mesh and trilinear interpolation

Validates:
- Node counts, spacing and node-volume partition
- Linear node and cell indexing
- Scatter conservation and scatter/gather consistency
- Numba bulk kernels against the per-point methods
- Cell binning
"""

import pytest
import numpy as np
from plasmapic.mesh import (
    Mesh3D,
    deposit_scalar,
    gather_vector,
    sort_by_cell,
    trilinear_stencil,
)


def make_mesh(ni=5, nj=4, nk=3, x_min=(0.0, 0.0, 0.0), x_max=(1.0, 0.6, 0.4)):
    mesh = Mesh3D(ni, nj, nk)
    mesh.set_dimensions(x_min, x_max)
    return mesh


class TestMeshSetup:
    """Test mesh construction and dimensions."""

    def test_counts(self):
        """Node and cell counts follow from the node counts per axis."""
        mesh = Mesh3D(5, 4, 3)
        assert mesh.n_nodes == 60
        assert mesh.n_cells == 4 * 3 * 2

    def test_too_few_nodes(self):
        """Fewer than two nodes on any axis is rejected."""
        with pytest.raises(ValueError):
            Mesh3D(1, 4, 4)

    def test_spacing(self):
        """Spacing is extent / (n - 1)."""
        mesh = make_mesh()
        np.testing.assert_allclose(mesh.del_x, [0.25, 0.2, 0.2])
        np.testing.assert_allclose(mesh.L, [1.0, 0.6, 0.4])

    def test_dimensions_set_once(self):
        """Dimensions are immutable once set."""
        mesh = make_mesh()
        with pytest.raises(RuntimeError):
            mesh.set_dimensions([0, 0, 0], [2, 2, 2])

    def test_degenerate_extent(self):
        """A zero-length axis is rejected."""
        mesh = Mesh3D(3, 3, 3)
        with pytest.raises(ValueError):
            mesh.set_dimensions([0, 0, 0], [1, 0, 1])

    @pytest.mark.parametrize("nodes", [(2, 2, 2), (3, 4, 5), (21, 2, 2), (7, 7, 7)])
    def test_node_volume_partition(self, nodes):
        """Node volumes sum to the domain volume."""
        mesh = Mesh3D(*nodes)
        mesh.set_dimensions([-0.1, 0.0, 0.2], [0.3, 0.05, 0.5])
        np.testing.assert_allclose(np.sum(mesh.V_node), 0.4 * 0.05 * 0.3, rtol=1e-12)

    def test_node_volume_weighting(self):
        """Interior, face, edge and corner nodes carry 1, 1/2, 1/4 and 1/8 cell volumes."""
        mesh = make_mesh(4, 4, 4, x_max=(3.0, 3.0, 3.0))
        assert mesh.V_node[mesh.at(1, 1, 1)] == pytest.approx(1.0)
        assert mesh.V_node[mesh.at(0, 1, 1)] == pytest.approx(0.5)
        assert mesh.V_node[mesh.at(0, 0, 1)] == pytest.approx(0.25)
        assert mesh.V_node[mesh.at(0, 0, 0)] == pytest.approx(0.125)


class TestIndexing:
    """Test node and cell indexing."""

    def test_linear_index_roundtrip(self):
        """ijk() inverts at()."""
        mesh = make_mesh()
        for n in range(mesh.n_nodes):
            assert mesh.at(*mesh.ijk(n)) == n

    def test_x_fastest(self):
        """Node index increases fastest along x."""
        mesh = make_mesh()
        assert mesh.at(1, 0, 0) == 1
        assert mesh.at(0, 1, 0) == mesh.ni
        assert mesh.at(0, 0, 1) == mesh.ni * mesh.nj

    def test_node_position(self):
        mesh = make_mesh()
        np.testing.assert_allclose(mesh.node_position(4, 3, 2), [1.0, 0.6, 0.4])

    def test_x_to_l(self):
        """Fractional node coordinate of a point."""
        mesh = make_mesh()
        np.testing.assert_allclose(mesh.x_to_l([0.5, 0.3, 0.1]), [2.0, 1.5, 0.5])

    def test_x_to_c_upper_face(self):
        """A point on the upper face maps to the last cell."""
        mesh = make_mesh()
        assert mesh.x_to_c([1.0, 0.6, 0.4]) == mesh.n_cells - 1
        assert mesh.x_to_c([0.0, 0.0, 0.0]) == 0

    def test_is_inside_strict(self):
        mesh = make_mesh()
        assert mesh.is_inside([0.5, 0.3, 0.2])
        assert not mesh.is_inside([0.0, 0.3, 0.2])
        assert not mesh.is_inside([0.5, 0.7, 0.2])


class TestInterpolation:
    """Test trilinear scatter and gather."""

    def test_stencil_weights_sum_to_one(self):
        """Weights of the 8-node stencil sum to 1."""
        rng = np.random.default_rng(0)
        for _ in range(50):
            l = rng.random(3) * [4, 3, 2]
            _, w = trilinear_stencil(l[0], l[1], l[2], 5, 4, 3)
            assert np.sum(w) == pytest.approx(1.0)
            assert np.all(w >= 0.0)

    def test_upper_face_stencil(self):
        """l = n-1 uses the last cell with offset 1 and stays in range."""
        idx, w = trilinear_stencil(4.0, 3.0, 2.0, 5, 4, 3)
        assert np.all(idx < 60)
        corner = 4 + 3 * 5 + 2 * 5 * 4
        assert w[np.flatnonzero(idx == corner)[0]] == pytest.approx(1.0)

    def test_scatter_conservation(self):
        """The 8 node contributions of a scatter sum to the deposited value."""
        mesh = make_mesh()
        rng = np.random.default_rng(1)
        for _ in range(20):
            f = np.zeros(mesh.n_nodes)
            l = rng.random(3) * (mesh.nn - 1)
            value = rng.normal() * 1e3
            mesh.scatter(f, l, value)
            assert np.sum(f) == pytest.approx(value)

    def test_scatter_vector(self):
        """Vector scatter conserves every component."""
        mesh = make_mesh()
        f = np.zeros((mesh.n_nodes, 3))
        mesh.scatter(f, np.array([1.3, 2.7, 0.2]), np.array([1.0, -2.0, 3.0]))
        np.testing.assert_allclose(np.sum(f, axis=0), [1.0, -2.0, 3.0])

    def test_gather_of_unit_field(self):
        """Gathering a field of ones anywhere inside returns 1."""
        mesh = make_mesh()
        f = np.ones(mesh.n_nodes)
        rng = np.random.default_rng(2)
        for _ in range(20):
            l = rng.random(3) * (mesh.nn - 1)
            assert mesh.gather(f, l) == pytest.approx(1.0)

    def test_gather_linear_field_exact(self):
        """Trilinear interpolation reproduces a linear field."""
        mesh = make_mesh()
        f = np.array([np.dot([1.0, -2.0, 0.5], mesh.node_position(*mesh.ijk(n)))
                      for n in range(mesh.n_nodes)])
        x = np.array([0.37, 0.21, 0.33])
        assert mesh.gather(f, mesh.x_to_l(x)) == pytest.approx(0.37 - 0.42 + 0.165)

    def test_deposit_scalar_matches_scatter(self):
        """Bulk deposition equals repeated single scatters."""
        mesh = make_mesh()
        rng = np.random.default_rng(3)
        l = rng.random((30, 3)) * (mesh.nn - 1)
        values = rng.random(30)

        f_bulk = np.zeros(mesh.n_nodes)
        deposit_scalar(f_bulk, l, values, 30, mesh.ni, mesh.nj, mesh.nk)

        f_single = np.zeros(mesh.n_nodes)
        for p in range(30):
            mesh.scatter(f_single, l[p], values[p])

        np.testing.assert_allclose(f_bulk, f_single)

    def test_gather_vector_matches_gather(self):
        """Bulk gather equals per-point gather."""
        mesh = make_mesh()
        rng = np.random.default_rng(4)
        E = rng.normal(size=(mesh.n_nodes, 3))
        l = rng.random((10, 3)) * (mesh.nn - 1)
        out = np.zeros((10, 3))
        gather_vector(E, l, 10, mesh.ni, mesh.nj, mesh.nk, out)
        for p in range(10):
            np.testing.assert_allclose(out[p], mesh.gather(E, l[p]))


class TestCellBinning:
    """Test particle-to-cell binning."""

    def test_cells_of_and_sort(self):
        """Particles are grouped by cell with consistent counts and offsets."""
        mesh = make_mesh()
        rng = np.random.default_rng(5)
        x = rng.random((200, 3)) * mesh.L
        cells = mesh.cells_of(x)
        order, counts, offsets = sort_by_cell(cells, mesh.n_cells)

        assert np.sum(counts) == 200
        for c in range(mesh.n_cells):
            members = order[offsets[c]:offsets[c] + counts[c]]
            assert np.all(cells[members] == c)
