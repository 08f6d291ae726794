"""
Structured 3D Mesh with Trilinear Particle-Mesh Interpolation

Provides the uniform node grid used by the field solver, the charge
deposition (scatter) and field interpolation (gather) between particles
and nodes, and the particle-to-cell mapping used by the collision models.

Node ordering is linear with x fastest:
    n = i + j*ni + k*ni*nj

Cell ordering uses the same convention on the (ni-1, nj-1, nk-1) cells.
"""

import numpy as np
from numba import njit


class Mesh3D:
    """
    Uniform structured mesh on a rectangular box.

    Nodes sit on the box faces, so spacing is extent / (n - 1) per axis.
    Node volumes follow the dual-cell construction: full cell volume for
    interior nodes, halved once per face the node lies on.

    Attributes:
        ni, nj, nk: Node counts per axis
        nn: Node counts as an integer array (3,)
        n_nodes: Total number of nodes
        n_cells: Total number of cells
        x_min, x_max: Domain corners (3,) [m]
        del_x: Node spacing (3,) [m]
        L: Domain edge lengths (3,) [m]
        V_node: Node volumes (n_nodes,) [m^3]
    """

    def __init__(self, ni: int, nj: int, nk: int):
        """
        Initialize mesh topology.

        Args:
            ni, nj, nk: Number of nodes along x, y, z (each >= 2)

        Raises:
            ValueError: If any node count is below 2
        """
        if min(ni, nj, nk) < 2:
            raise ValueError(
                f"Need at least 2 nodes per axis, got ({ni}, {nj}, {nk})"
            )

        self.ni = int(ni)
        self.nj = int(nj)
        self.nk = int(nk)
        self.nn = np.array([self.ni, self.nj, self.nk], dtype=np.int64)
        self.n_nodes = self.ni * self.nj * self.nk
        self.n_cells = (self.ni - 1) * (self.nj - 1) * (self.nk - 1)

        self.x_min = None
        self.x_max = None
        self.del_x = None
        self.L = None
        self.V_node = np.zeros(self.n_nodes, dtype=np.float64)

    def set_dimensions(self, x_min, x_max):
        """
        Set the physical extent of the mesh.

        Args:
            x_min: Lower corner (3,) [m]
            x_max: Upper corner (3,) [m]

        Raises:
            ValueError: If the extent is not positive along every axis
            RuntimeError: If dimensions were already set
        """
        if self.del_x is not None:
            raise RuntimeError("Mesh dimensions can only be set once")

        x_min = np.asarray(x_min, dtype=np.float64)
        x_max = np.asarray(x_max, dtype=np.float64)
        if x_min.shape != (3,) or x_max.shape != (3,):
            raise ValueError("x_min and x_max must be 3-vectors")
        if np.any(x_max <= x_min):
            raise ValueError(f"Degenerate domain: x_min={x_min}, x_max={x_max}")

        self.x_min = x_min
        self.x_max = x_max
        self.L = x_max - x_min
        self.del_x = self.L / (self.nn - 1)
        self._calc_node_volume()

    @property
    def cell_volume(self):
        """Volume of one cell [m^3]."""
        return float(np.prod(self.del_x))

    def _calc_node_volume(self):
        weights = []
        for n in (self.ni, self.nj, self.nk):
            w = np.ones(n)
            w[0] = w[-1] = 0.5
            weights.append(w)
        wi, wj, wk = weights

        # Shape (nk, nj, ni) ravels to i + j*ni + k*ni*nj
        V = wk[:, None, None] * wj[None, :, None] * wi[None, None, :]
        self.V_node = V.ravel() * self.cell_volume

    def _require_dimensions(self):
        if self.del_x is None:
            raise RuntimeError("Mesh dimensions not set; call set_dimensions() first")

    # ==================== INDEXING ====================

    def at(self, i, j, k):
        """Linear node index of node (i, j, k)."""
        return i + j * self.ni + k * self.ni * self.nj

    def ijk(self, n):
        """Node (i, j, k) of linear node index n."""
        k, rem = divmod(n, self.ni * self.nj)
        j, i = divmod(rem, self.ni)
        return i, j, k

    def node_position(self, i, j, k):
        """Physical position of node (i, j, k) [m]."""
        return self.x_min + self.del_x * np.array([i, j, k], dtype=np.float64)

    def is_inside(self, x):
        """True if x lies strictly inside the domain."""
        x = np.asarray(x)
        return bool(np.all(self.x_min < x) and np.all(x < self.x_max))

    def x_to_l(self, x):
        """
        Map physical position(s) to fractional node coordinates.

        Args:
            x: Position (3,) or positions (n, 3) [m]

        Returns:
            l: (x - x_min) / del_x, same shape as x
        """
        return (np.asarray(x, dtype=np.float64) - self.x_min) / self.del_x

    def x_to_c(self, x):
        """Integer cell index containing position x (clamped to the mesh)."""
        return int(self.cells_of(np.atleast_2d(x))[0])

    def cells_of(self, x):
        """
        Cell indices for an array of positions.

        Positions on the upper domain face map to the last cell.

        Args:
            x: Positions (n, 3) [m]

        Returns:
            cells: Cell indices (n,)
        """
        lint = np.floor(self.x_to_l(x)).astype(np.int64)
        lint = np.clip(lint, 0, self.nn - 2)
        return (lint[:, 0]
                + lint[:, 1] * (self.ni - 1)
                + lint[:, 2] * (self.ni - 1) * (self.nj - 1))

    # ==================== PARTICLE-MESH INTERPOLATION ====================

    def scatter(self, f, l, value):
        """
        Deposit a scalar or 3-vector value onto the 8 nodes around l.

        Args:
            f: Node field (n_nodes,) or (n_nodes, 3), modified in-place
            l: Fractional node coordinate (3,)
            value: Scalar or (3,) value to deposit
        """
        idx, w = trilinear_stencil(l[0], l[1], l[2], self.ni, self.nj, self.nk)
        if f.ndim == 1:
            f[idx] += w * value
        else:
            f[idx] += np.outer(w, value)

    def gather(self, f, l):
        """
        Interpolate a scalar or 3-vector node field to point l.

        Args:
            f: Node field (n_nodes,) or (n_nodes, 3)
            l: Fractional node coordinate (3,)

        Returns:
            Scalar or (3,) interpolated value
        """
        idx, w = trilinear_stencil(l[0], l[1], l[2], self.ni, self.nj, self.nk)
        return w @ f[idx]

    def __repr__(self):
        """String representation."""
        if self.del_x is None:
            return f"Mesh3D(nodes=({self.ni}, {self.nj}, {self.nk}), unsized)"
        return (f"Mesh3D(nodes=({self.ni}, {self.nj}, {self.nk}), "
                f"x_min={self.x_min}, x_max={self.x_max}, del_x={self.del_x})")


# ==================== NUMBA-COMPILED FUNCTIONS ====================

@njit
def _cell_offset(l, n):
    """Cell index along one axis and offset within it; i clamped to [0, n-2]."""
    i = int(np.floor(l))
    if i < 0:
        i = 0
    elif i > n - 2:
        i = n - 2
    return i, l - i


@njit
def trilinear_stencil(l0, l1, l2, ni, nj, nk):
    """
    Node indices and trilinear weights around a fractional coordinate.

    A coordinate on the upper face of the last cell (l = n-1) uses the
    last cell with offset d = 1, so no index leaves the mesh.

    Args:
        l0, l1, l2: Fractional node coordinates
        ni, nj, nk: Node counts

    Returns:
        idx: Linear node indices (8,)
        w: Weights (8,), summing to 1
    """
    i, di = _cell_offset(l0, ni)
    j, dj = _cell_offset(l1, nj)
    k, dk = _cell_offset(l2, nk)

    idx = np.empty(8, dtype=np.int64)
    w = np.empty(8, dtype=np.float64)

    n = 0
    for c in range(2):
        wk = dk if c == 1 else 1.0 - dk
        for b in range(2):
            wj = dj if b == 1 else 1.0 - dj
            for a in range(2):
                wi = di if a == 1 else 1.0 - di
                idx[n] = (i + a) + (j + b) * ni + (k + c) * ni * nj
                w[n] = wi * wj * wk
                n += 1

    return idx, w


@njit
def deposit_scalar(f, l, values, n_particles, ni, nj, nk):
    """
    Scatter one scalar per particle onto the node field.

    Args:
        f: Node field (n_nodes,), accumulated in-place
        l: Fractional coordinates (n_max, 3)
        values: Value per particle (n_max,); zero entries are skipped
        n_particles: Number of particles to process
        ni, nj, nk: Node counts
    """
    for p in range(n_particles):
        if values[p] == 0.0:
            continue
        idx, w = trilinear_stencil(l[p, 0], l[p, 1], l[p, 2], ni, nj, nk)
        for m in range(8):
            f[idx[m]] += values[p] * w[m]


@njit
def deposit_vector(f, l, values, n_particles, ni, nj, nk):
    """Scatter one 3-vector per particle onto the node field (n_nodes, 3)."""
    for p in range(n_particles):
        idx, w = trilinear_stencil(l[p, 0], l[p, 1], l[p, 2], ni, nj, nk)
        for m in range(8):
            for d in range(3):
                f[idx[m], d] += values[p, d] * w[m]


@njit
def gather_vector(f, l, n_particles, ni, nj, nk, out):
    """
    Interpolate a 3-vector node field to every particle.

    Args:
        f: Node field (n_nodes, 3)
        l: Fractional coordinates (n_max, 3)
        n_particles: Number of particles to process
        ni, nj, nk: Node counts
        out: Output (n_max, 3), overwritten for the first n_particles rows
    """
    for p in range(n_particles):
        idx, w = trilinear_stencil(l[p, 0], l[p, 1], l[p, 2], ni, nj, nk)
        out[p, 0] = 0.0
        out[p, 1] = 0.0
        out[p, 2] = 0.0
        for m in range(8):
            for d in range(3):
                out[p, d] += f[idx[m], d] * w[m]


def sort_by_cell(cells, n_cells):
    """
    Group particle indices by cell.

    Args:
        cells: Cell index per particle (n,)
        n_cells: Number of cells

    Returns:
        order: Particle indices sorted by cell (n,)
        counts: Particles per cell (n_cells,)
        offsets: Start of each cell's block in order (n_cells,)

    Example:
        >>> order, counts, offsets = sort_by_cell(cells, mesh.n_cells)
        >>> in_cell_c = order[offsets[c]:offsets[c] + counts[c]]
    """
    order = np.argsort(cells, kind="stable")
    counts = np.bincount(cells, minlength=n_cells)
    offsets = np.zeros(n_cells, dtype=np.int64)
    offsets[1:] = np.cumsum(counts)[:-1]
    return order, counts, offsets
