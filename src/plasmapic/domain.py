"""
Simulation Domain

The Domain is the mesh plus everything a scenario driver configures and
steps: time step and iteration counter, boundary conditions on the six
faces, the node fields shared by the solver and the species, and the
steady-state and output hooks.

Typical driver loop:
    >>> domain = Domain("out/box", 21, 21, 21)
    >>> domain.set_dimensions([0, 0, 0], [0.1, 0.1, 0.1])
    >>> domain.set_time_step(1e-9)
    >>> domain.set_iter_max(2000)
    >>> for side in BoundarySide:
    ...     domain.set_bc_at(side, BoundaryCondition(ParticleBCType.SYMMETRIC,
    ...                                              FieldBCType.DIRICHLET))
    >>> while domain.advance_time():
    ...     domain.calc_charge_density(species)
    ...     solver.calc_potential()
    ...     solver.calc_electric_field()
    ...     for sp in species:
    ...         sp.push_particles_leapfrog(rng)
"""

import logging
import time

import numpy as np

from .constants import COULOMB_LOG_MIN, PI, debye_length, eps0, plasma_frequency
from .diagnostics import SteadyStateDetector, StatisticsWriter, print_info
from .mesh import Mesh3D
from . import output
from .pic.boundaries import (
    BoundarySide,
    FieldBCType,
    apply_boundary_conditions,
    eval_field_bc,
    select_bc,
)

logger = logging.getLogger(__name__)


class Domain(Mesh3D):
    """
    Structured simulation domain with boundary conditions and node fields.

    Attributes:
        prefix: Output file prefix
        rho: Charge density (n_nodes,) [C/m^3]
        phi: Electric potential (n_nodes,) [V]
        E: Electric field (n_nodes, 3) [V/m]
        n_e: Boltzmann-relation electron density (n_nodes,) [m^-3]
        ln_Lambda: Coulomb logarithm (n_nodes,)
        T_tot: Density-weighted temperature of all species (n_nodes,) [K]
        bc: Ordered boundary condition list per BoundarySide
        time: Simulated time [s]
        iter: Current iteration (-1 before the first advance_time)
    """

    def __init__(self, prefix: str, ni: int, nj: int, nk: int):
        super().__init__(ni, nj, nk)
        self.prefix = prefix

        self.rho = np.zeros(self.n_nodes)
        self.phi = np.zeros(self.n_nodes)
        self.E = np.zeros((self.n_nodes, 3))
        self.n_e = np.zeros(self.n_nodes)
        self.ln_Lambda = np.zeros(self.n_nodes)
        self.T_tot = np.zeros(self.n_nodes)

        self.bc = {side: [] for side in BoundarySide}

        self.time = 0.0
        self.dt = None
        self.iter = -1
        self.iter_max = 0

        self._wtime_start = time.perf_counter()
        self._steady = None
        self._averaging_time = False
        self._stats = None

    # ==================== CONFIGURATION ====================

    def set_time_step(self, dt: float):
        if dt <= 0.0:
            raise ValueError(f"Time step must be positive, got {dt}")
        self.dt = float(dt)

    def set_iter_max(self, iter_max: int):
        if iter_max < 0:
            raise ValueError(f"iter_max must be non-negative, got {iter_max}")
        self.iter_max = int(iter_max)

    def set_bc_at(self, side, *bcs):
        """
        Replace the boundary conditions of a face.

        Several conditions form an ordered patch list; the first one whose
        predicate accepts a point is used there.

        Args:
            side: BoundarySide
            *bcs: One or more BoundaryCondition
        """
        if not bcs:
            raise ValueError("set_bc_at needs at least one boundary condition")
        self.bc[BoundarySide(side)] = list(bcs)

    def add_bc_at(self, side, bc):
        """Append a boundary condition to the end of a face's list."""
        self.bc[BoundarySide(side)].append(bc)

    def reverse_boundary_conditions(self):
        """Reverse the evaluation order of every face list."""
        for side in BoundarySide:
            self.bc[side].reverse()

    def get_bc(self, side, x, y, z):
        """Boundary condition of a face that applies at (x, y, z)."""
        return select_bc(self.bc[BoundarySide(side)], side, x, y, z)

    def is_periodic(self, side) -> bool:
        bcs = self.bc[BoundarySide(side)]
        return bool(bcs) and all(bc.field_bc is FieldBCType.PERIODIC for bc in bcs)

    def check_boundaries(self):
        """
        Validate that every face is configured.

        Raises:
            ValueError: If a face has no boundary condition, or a periodic
                face is paired with a non-periodic opposite face
        """
        missing = [side.name for side in BoundarySide if not self.bc[side]]
        if missing:
            raise ValueError(f"No boundary condition set on: {', '.join(missing)}")

        for axis in range(3):
            lo = self.is_periodic(2 * axis)
            hi = self.is_periodic(2 * axis + 1)
            if lo != hi:
                raise ValueError(
                    f"Periodic field boundary on axis {'xyz'[axis]} must be set "
                    f"on both faces"
                )

    def check_configuration(self):
        """Validate dimensions, time step and boundaries before stepping."""
        self._require_dimensions()
        if self.dt is None:
            raise ValueError("Time step not set; call set_time_step() first")
        self.check_boundaries()

    # ==================== TIME STEPPING ====================

    def advance_time(self) -> bool:
        """
        Advance to the next iteration.

        Returns:
            True while iter <= iter_max
        """
        if self.iter < 0:
            self.check_configuration()

        self.time += self.dt
        self.iter += 1
        return self.iter <= self.iter_max

    def is_last_iter(self) -> bool:
        return self.iter == self.iter_max

    def get_wtime(self) -> float:
        """Wall-clock time since construction [s]."""
        return time.perf_counter() - self._wtime_start

    # ==================== FIELDS ====================

    def fold_periodic(self, f):
        """
        Sum node data across periodic faces, in place.

        On a periodic axis the max-face nodes are copies of the min-face
        nodes. Their deposits are added together and both copies receive
        the total. Edge and corner nodes are folded once per periodic axis.

        Args:
            f: Node array of shape (n_nodes,) or (n_nodes, m)

        Returns:
            f
        """
        g = f.reshape((self.nk, self.nj, self.ni) + f.shape[1:])
        for axis in range(3):
            if not self.is_periodic(2 * axis):
                continue
            lo = [slice(None)] * g.ndim
            hi = [slice(None)] * g.ndim
            lo[2 - axis] = 0
            hi[2 - axis] = -1
            total = g[tuple(lo)] + g[tuple(hi)]
            g[tuple(lo)] = total
            g[tuple(hi)] = total
        return f

    def periodic_node_volume(self):
        """Node volumes with seam nodes holding their full dual cell."""
        return self.fold_periodic(self.V_node.copy())

    def calc_charge_density(self, species):
        """rho = sum over species of charge * number density."""
        self.rho[:] = 0.0
        for sp in species:
            if sp.charge == 0.0:
                continue
            self.rho += sp.charge * sp.n

    def get_potential_energy(self) -> float:
        """Electrostatic field energy 0.5 eps0 sum(|E|^2 V_node) [J]."""
        return 0.5 * eps0 * float(np.sum(np.sum(self.E**2, axis=1) * self.V_node))

    def calc_total_temperature(self, species):
        num = np.zeros(self.n_nodes)
        den = np.zeros(self.n_nodes)
        for sp in species:
            num += sp.n * sp.T
            den += sp.n
        self.T_tot = np.divide(num, den, out=np.zeros(self.n_nodes), where=den > 0)

    def calc_coulomb_log(self, T_e: float, n_e: float):
        """
        Node Coulomb logarithm ln(12 pi n lambda_D^3).

        Args:
            T_e: Electron temperature [K]; 0 uses the node total temperature
            n_e: Electron density [m^-3]
        """
        T = T_e if T_e > 0.0 else self.T_tot
        with np.errstate(divide="ignore", invalid="ignore"):
            lambda_D = debye_length(n_e, T)
            ln_Lambda = np.log(12.0 * PI * n_e * lambda_D**3)
        ln_Lambda = np.where(np.isfinite(ln_Lambda), ln_Lambda, COULOMB_LOG_MIN)
        self.ln_Lambda = np.maximum(ln_Lambda, COULOMB_LOG_MIN) * np.ones(self.n_nodes)

    def check_formulation(self, n_e: float, T_e: float):
        """
        Check mesh and time step resolution against plasma scales.

        Requires dx <= lambda_D (when T_e > 0) and omega_pe * dt <= 0.2.

        Args:
            n_e: Reference electron density [m^-3]
            T_e: Reference electron temperature [K]

        Returns:
            dict with lambda_D, omega_pe, omega_pe_dt and is_resolved
        """
        omega_pe = float(plasma_frequency(n_e))
        omega_pe_dt = omega_pe * self.dt if self.dt is not None else 0.0
        lambda_D = float(debye_length(n_e, T_e)) if T_e > 0.0 else None

        is_resolved = True
        if lambda_D is not None and np.any(self.del_x > lambda_D):
            logger.warning(
                "Mesh does not resolve the Debye length: del_x=%s, lambda_D=%.3e m",
                self.del_x, lambda_D,
            )
            is_resolved = False
        if omega_pe_dt > 0.2:
            logger.warning(
                "Time step does not resolve plasma oscillations: omega_pe*dt=%.3f",
                omega_pe_dt,
            )
            is_resolved = False

        logger.info("omega_pe=%.3e rad/s, omega_pe*dt=%.3f, lambda_D=%s m",
                    omega_pe, omega_pe_dt, lambda_D)

        return {
            "lambda_D": lambda_D,
            "omega_pe": omega_pe,
            "omega_pe_dt": omega_pe_dt,
            "is_resolved": is_resolved,
        }

    def eval_field_bc(self, side, rhs, rows, cols, vals, u, v, x, alias=None) -> bool:
        """
        Emit the Poisson matrix row of boundary node u on a face.

        Args:
            side: BoundarySide the node lies on
            rhs, rows, cols, vals: System being assembled, modified in-place
            u: Boundary node index
            v: Interior neighbour along the face normal
            x: Node position (3,) [m]
            alias: Opposite-face node for periodic max faces

        Returns:
            True if a row was emitted
        """
        side = BoundarySide(side)
        bc = self.get_bc(side, x[0], x[1], x[2])
        return eval_field_bc(bc, rhs, rows, cols, vals, u, v,
                             self.del_x[side.axis], x[0], x[1], x[2], alias=alias)

    # ==================== PARTICLES ====================

    def apply_boundary_conditions(self, species, x_old, particle, rng):
        """Apply face particle policies to a particle; returns the updated particle."""
        return apply_boundary_conditions(self, species, x_old, particle, rng)

    # ==================== STEADY STATE ====================

    def steady_state(self, species=None, check_every: int = 1, tol: float = 1e-2) -> bool:
        """
        Steady-state test on total real count, momentum and kinetic energy.

        Called without species it only reports the latched state. With
        species the aggregates are compared every check_every iterations
        using the tol of that call. Once reached, steady state is never
        revoked.

        Raises:
            ValueError: If check_every < 1 or tol <= 0
        """
        if self._steady is None:
            self._steady = SteadyStateDetector(tol)

        if species is None or self._steady.is_steady:
            return self._steady.is_steady

        if check_every < 1:
            raise ValueError(f"check_every must be at least 1, got {check_every}")
        if tol <= 0.0:
            raise ValueError(f"Steady-state tolerance must be positive, got {tol}")
        self._steady.tol = tol

        if self.iter % check_every != 0:
            return False

        if self._steady.check(species):
            logger.info("Steady state reached at iteration %d", self.iter)
        return self._steady.is_steady

    def averaging_time(self) -> bool:
        return self._averaging_time

    def start_averaging_time(self):
        self._averaging_time = True

    # ==================== OUTPUT ====================

    def print_info(self, species):
        print_info(self.iter, species)

    def write_statistics(self, species):
        if self._stats is None:
            self._stats = StatisticsWriter(self.prefix)
        self._stats.write(self, species)

    def save_fields(self, species):
        return output.save_fields(self, species)

    def save_particles(self, species, n_particles: int):
        return output.save_particles(self, species, n_particles)

    def save_velocity_histogram(self, species, n_bins: int = 100):
        return output.save_velocity_histogram(self, species, n_bins)

    def close(self):
        """Close the statistics file, if open."""
        if self._stats is not None:
            self._stats.close()
            self._stats = None

    def __repr__(self):
        return (f"Domain(prefix={self.prefix!r}, nodes=({self.ni}, {self.nj}, {self.nk}), "
                f"iter={self.iter})")
