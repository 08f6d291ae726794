"""
3D Electrostatic Field Solver for PIC

Solves Poisson's equation on the structured node grid:
    ∇²φ = -ρ/ε₀

and, with Boltzmann-relation electrons, the nonlinear form:
    ∇²φ = -(ρ - e n0 exp((φ - φ0)/Te0))/ε₀

Discretization:
- 7-point finite-difference Laplacian on regular nodes
- Boundary rows from the face boundary conditions (Dirichlet, Neumann,
  periodic aliasing); periodic min faces use a wrapped stencil
- Sparse CSR matrix, assembled once on the first solve

Linear systems are solved with BiCGSTAB and a Jacobi preconditioner; the
nonlinear system with a Newton iteration on top of it.

Reference:
    Birdsall & Langdon (2004), Chapter 14
    Brieda (2019), "Plasma Simulations by Example", Ch. 3
"""

import logging
from typing import NamedTuple

import numpy as np
import scipy.sparse as spp
import scipy.sparse.linalg as sppla

from ..constants import NEWTON_ITER_MAX, NEWTON_TOL, e, eps0
from .boundaries import BoundarySide

logger = logging.getLogger(__name__)


class SolveResult(NamedTuple):
    """
    Outcome of a potential solve.

    Attributes:
        converged: True if the tolerance was met
        iterations: Linear (or Newton) iterations performed
        residual: Relative linear residual (or Newton correction max-norm [V])
    """

    converged: bool
    iterations: int
    residual: float


def jacobi_preconditioner(A):
    """Inverse-diagonal preconditioner for a sparse matrix."""
    return spp.diags(1.0 / A.diagonal()).tocsr()


class PoissonSolver:
    """
    Sparse Poisson solver bound to a Domain.

    The solver reads domain.rho and writes domain.phi, domain.E and (in
    Boltzmann-relation mode) domain.n_e.

    Example:
        >>> solver = PoissonSolver(domain, iter_max=5000, tol=1e-4)
        >>> result = solver.calc_potential()
        >>> solver.calc_electric_field()
    """

    def __init__(self, domain, iter_max: int = 5000, tol: float = 1e-4,
                 newton_iter_max: int = NEWTON_ITER_MAX,
                 newton_tol: float = NEWTON_TOL):
        """
        Args:
            domain: Domain to solve on
            iter_max: Maximum BiCGSTAB iterations per linear solve
            tol: Relative residual tolerance of the linear solver
            newton_iter_max: Maximum Newton iterations (Boltzmann mode)
            newton_tol: Newton correction max-norm tolerance [V]
        """
        self.domain = domain
        self.iter_max = iter_max
        self.tol = tol
        self.newton_iter_max = newton_iter_max
        self.newton_tol = newton_tol

        self.A = None
        self.M = None
        self.b0 = None
        self.regular = None

        self.phi0 = 0.0
        self.Te0 = None
        self.n0 = 0.0

        self.last_result = None

    def set_reference_values(self, phi0: float, Te0: float, n0: float):
        """
        Set the Boltzmann-relation reference state.

        Args:
            phi0: Reference potential [V]
            Te0: Electron temperature [eV]
            n0: Reference electron density [m^-3]
        """
        if Te0 <= 0.0:
            raise ValueError(f"Reference electron temperature must be positive, got {Te0}")
        self.phi0 = phi0
        self.Te0 = Te0
        self.n0 = n0

    # ==================== ASSEMBLY ====================

    def _boundary_row(self, ijk, u, x, rows, cols, vals):
        """Try every face the node lies on, in side order; True once a row is emitted."""
        d = self.domain
        for side in BoundarySide:
            axis = side.axis
            face = d.nn[axis] - 1 if side.is_max else 0
            if ijk[axis] != face:
                continue

            inward = list(ijk)
            inward[axis] += -1 if side.is_max else 1
            alias = None
            if side.is_max:
                opposite = list(ijk)
                opposite[axis] = 0
                alias = d.at(*opposite)

            if d.eval_field_bc(side, self.b0, rows, cols, vals, u, d.at(*inward), x,
                               alias=alias):
                return True
        return False

    def _stencil_row(self, ijk, u, rows, cols, vals):
        """7-point Laplacian row; neighbours wrap on periodic axes."""
        d = self.domain
        diag = 0.0
        for axis in range(3):
            inv_h2 = 1.0 / d.del_x[axis] ** 2
            n = d.nn[axis]
            for step in (-1, 1):
                nb = list(ijk)
                nb[axis] += step
                if not 0 <= nb[axis] < n:
                    if not d.is_periodic(2 * axis):
                        raise RuntimeError(
                            f"Node {tuple(ijk)} needs a boundary row on axis {'xyz'[axis]}"
                        )
                    # node n-1 duplicates node 0 on a periodic axis
                    nb[axis] %= n - 1
                rows.append(u)
                cols.append(d.at(*nb))
                vals.append(inv_h2)
                diag -= inv_h2
        rows.append(u)
        cols.append(u)
        vals.append(diag)

    def assemble(self):
        """
        Build the coefficient matrix and boundary right-hand side.

        Raises:
            ValueError: If any face has no boundary condition
        """
        d = self.domain
        d._require_dimensions()
        d.check_boundaries()

        n = d.n_nodes
        rows, cols, vals = [], [], []
        self.b0 = np.zeros(n)
        self.regular = np.zeros(n, dtype=bool)

        for k in range(d.nk):
            for j in range(d.nj):
                for i in range(d.ni):
                    u = d.at(i, j, k)
                    ijk = (i, j, k)
                    x = d.node_position(i, j, k)
                    if self._boundary_row(ijk, u, x, rows, cols, vals):
                        continue
                    self.regular[u] = True
                    self._stencil_row(ijk, u, rows, cols, vals)

        self.A = spp.csr_matrix((vals, (rows, cols)), shape=(n, n))
        self.M = jacobi_preconditioner(self.A)

        logger.debug("Assembled Poisson matrix: %d nodes, %d regular, %d nonzeros",
                     n, int(self.regular.sum()), self.A.nnz)

    def _ensure_assembled(self):
        if self.A is None:
            self.assemble()

    def _bicgstab(self, A, b, x0, M):
        iterations = 0

        def count(_xk):
            nonlocal iterations
            iterations += 1

        x, info = sppla.bicgstab(A, b, x0=x0, rtol=self.tol, maxiter=self.iter_max,
                                 M=M, callback=count)

        b_norm = np.linalg.norm(b)
        r_norm = np.linalg.norm(b - A @ x)
        residual = r_norm / b_norm if b_norm > 0.0 else r_norm
        return x, SolveResult(info == 0, iterations, float(residual))

    # ==================== SOLVE ====================

    def calc_potential(self) -> SolveResult:
        """
        Solve the linear Poisson equation for domain.phi.

        Warm-starts from the current potential. Non-convergence is logged
        and the last iterate is kept.

        Returns:
            SolveResult
        """
        self._ensure_assembled()
        d = self.domain

        b = self.b0.copy()
        b[self.regular] = -d.rho[self.regular] / eps0

        phi, result = self._bicgstab(self.A, b, d.phi, self.M)
        d.phi[:] = phi

        if not result.converged:
            logger.warning(
                "Poisson solver did not converge after %d iterations (residual %.3e)",
                result.iterations, result.residual,
            )
        self.last_result = result
        return result

    def calc_potential_BR(self) -> SolveResult:
        """
        Solve Poisson's equation with Boltzmann-relation electrons.

        Newton iteration on F(phi) = A phi - b(phi) with
            b = -rho/eps0 + (e n0/eps0) exp((phi - phi0)/Te0)
        on regular nodes, Jacobian J = A - diag(db/dphi). Stops when the
        correction max-norm drops below newton_tol. Also stores the
        electron density n0 exp((phi - phi0)/Te0) in domain.n_e.

        Returns:
            SolveResult with Newton iterations and final correction norm

        Raises:
            RuntimeError: If set_reference_values() was not called
        """
        if self.Te0 is None:
            raise RuntimeError("Reference values not set; call set_reference_values() first")

        self._ensure_assembled()
        d = self.domain
        reg = self.regular
        c0 = e * self.n0 / eps0

        phi = d.phi.copy()
        converged = False
        norm = np.inf
        iterations = 0

        for iterations in range(1, self.newton_iter_max + 1):
            boltz = np.exp((phi[reg] - self.phi0) / self.Te0)

            b = self.b0.copy()
            b[reg] = -d.rho[reg] / eps0 + c0 * boltz
            F = self.A @ phi - b

            db = np.zeros(d.n_nodes)
            db[reg] = c0 / self.Te0 * boltz
            J = (self.A - spp.diags(db)).tocsr()

            dphi, _ = self._bicgstab(J, F, None, jacobi_preconditioner(J))
            phi -= dphi

            norm = float(np.max(np.abs(dphi)))
            if norm < self.newton_tol:
                converged = True
                break

        d.phi[:] = phi
        d.n_e[:] = self.n0 * np.exp((phi - self.phi0) / self.Te0)

        if not converged:
            logger.warning(
                "Newton solver did not converge after %d iterations (|dphi| = %.3e V)",
                iterations, norm,
            )
        result = SolveResult(converged, iterations, norm)
        self.last_result = result
        return result

    # ==================== ELECTRIC FIELD ====================

    def calc_electric_field(self, E_ext=(0.0, 0.0, 0.0)):
        """
        Compute E = -∇φ + E_ext on every node.

        Central differences inside, one-sided differences on faces, and
        wrapped central differences along periodic axes.

        Args:
            E_ext: Uniform external field (3,) [V/m]
        """
        d = self.domain
        phi = d.phi.reshape(d.nk, d.nj, d.ni)
        E = np.empty((d.nk, d.nj, d.ni, 3))

        for axis in range(3):
            array_axis = 2 - axis
            h = d.del_x[axis]
            if d.is_periodic(2 * axis):
                n = d.nn[axis]
                core = np.take(phi, np.arange(n - 1), axis=array_axis)
                grad = (np.roll(core, -1, axis=array_axis)
                        - np.roll(core, 1, axis=array_axis)) / (2.0 * h)
                grad = np.concatenate([grad, np.take(grad, [0], axis=array_axis)],
                                      axis=array_axis)
            else:
                grad = np.gradient(phi, h, axis=array_axis, edge_order=1)
            E[..., axis] = -grad

        d.E[:] = E.reshape(-1, 3) + np.asarray(E_ext, dtype=np.float64)

    def __repr__(self):
        return (f"PoissonSolver(nodes={self.domain.n_nodes}, iter_max={self.iter_max}, "
                f"tol={self.tol}, assembled={self.A is not None})")
