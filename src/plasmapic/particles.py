"""
Particle Species for PIC-DSMC

Each Species owns a Structure-of-Arrays (SoA) particle population on a
Domain, together with the node moments sampled from it (number density,
streaming velocity, temperature) and the per-cell macroparticle count.

A particle is dead when its weight is zero; dead particles are dropped by
remove_dead_particles().
"""

import numpy as np

from .constants import SPECIES, kB
from .mesh import deposit_scalar, deposit_vector
from .pic import mover


class Species:
    """
    Particle population of one species.

    Attributes:
        name: Species name (used in output file names and column headers)
        mass: Particle mass [kg]
        charge: Particle charge [C]
        w_mp: Default macroparticle weight (real particles per simulated one)
        domain: Domain the particles live on
        x: Positions [max_particles, 3] [m]
        v: Velocities [max_particles, 3] [m/s]
        w: Macroparticle weights [max_particles]
        n_particles: Number of stored particles (live and dead)
        n: Number density (n_nodes,) [m^-3]
        n_mean: Time-averaged number density (n_nodes,) [m^-3]
        v_stream: Streaming velocity (n_nodes, 3) [m/s]
        T: Temperature (n_nodes,) [K]
        mp_count: Macroparticles per cell (n_cells,)
    """

    def __init__(self, name: str, mass: float, charge: float, w_mp: float,
                 domain, max_particles: int = 1_000_000):
        if mass <= 0.0:
            raise ValueError(f"Species mass must be positive, got {mass}")
        if w_mp <= 0.0:
            raise ValueError(f"Macroparticle weight must be positive, got {w_mp}")

        self.name = name
        self.mass = mass
        self.charge = charge
        self.w_mp = w_mp
        self.domain = domain
        self.max_particles = max_particles
        self.n_particles = 0

        self.x = np.zeros((max_particles, 3), dtype=np.float64)
        self.v = np.zeros((max_particles, 3), dtype=np.float64)
        self.w = np.zeros(max_particles, dtype=np.float64)

        n_nodes = domain.n_nodes
        self.n = np.zeros(n_nodes)
        self.n_mean = np.zeros(n_nodes)
        self.v_stream = np.zeros((n_nodes, 3))
        self.T = np.zeros(n_nodes)
        self.mp_count = np.zeros(domain.n_cells)

        self._n_sum = np.zeros(n_nodes)
        self._n_samples = 0
        self._n_samples_max = 0

        self._mom_w = np.zeros(n_nodes)
        self._mom_wv = np.zeros((n_nodes, 3))
        self._mom_wvv = np.zeros(n_nodes)

    @classmethod
    def from_database(cls, name: str, w_mp: float, domain, max_particles: int = 1_000_000):
        """Create a species with mass and charge taken from constants.SPECIES."""
        data = SPECIES[name]
        return cls(name, data.mass, data.charge, w_mp, domain, max_particles)

    # ==================== POPULATION ====================

    def add_particles(self, x, v, w=None):
        """
        Append particles.

        Args:
            x: Positions, shape (n, 3) or (3,) [m]
            v: Velocities, shape (n, 3) or (3,) [m/s]
            w: Weights (scalar or (n,)); defaults to w_mp

        Returns:
            indices: Array indices of added particles

        Raises:
            ValueError: If the capacity would be exceeded
        """
        x = np.atleast_2d(x)
        v = np.atleast_2d(v)
        n_add = x.shape[0]

        if self.n_particles + n_add > self.max_particles:
            raise ValueError(
                f"Cannot add {n_add} {self.name} particles: "
                f"would exceed max capacity {self.max_particles}"
            )

        start = self.n_particles
        end = start + n_add
        self.x[start:end] = x
        self.v[start:end] = v
        self.w[start:end] = self.w_mp if w is None else w
        self.n_particles = end

        return np.arange(start, end)

    def _fill_box(self, x1, x2, density, rng):
        x1 = np.asarray(x1, dtype=np.float64)
        x2 = np.asarray(x2, dtype=np.float64)
        volume = float(np.prod(x2 - x1))
        n_sim = int(density * volume / self.w_mp)
        return x1 + rng.random((n_sim, 3)) * (x2 - x1)

    def add_cold_box(self, x1, x2, density, v_drift, rng):
        """
        Fill a box uniformly with particles moving at a single velocity.

        Args:
            x1, x2: Box corners (3,) [m]
            density: Real number density [m^-3]
            v_drift: Velocity of every particle (3,) [m/s]
            rng: numpy.random.Generator
        """
        x = self._fill_box(x1, x2, density, rng)
        v = np.broadcast_to(np.asarray(v_drift, dtype=np.float64), x.shape)
        return self.add_particles(x, v)

    def add_warm_box(self, x1, x2, density, v_drift, T, rng):
        """Fill a box uniformly with a drifting Maxwellian at temperature T [K]."""
        x = self._fill_box(x1, x2, density, rng)
        v = np.asarray(v_drift) + sample_maxwellian_velocity(T, self.mass, len(x), rng)
        return self.add_particles(x, v)

    def remove_dead_particles(self):
        """Compact the arrays, dropping particles with zero weight."""
        n = self.n_particles
        alive = self.w[:n] > 0.0
        n_alive = int(np.count_nonzero(alive))
        if n_alive == n:
            return

        self.x[:n_alive] = self.x[:n][alive]
        self.v[:n_alive] = self.v[:n][alive]
        self.w[:n_alive] = self.w[:n][alive]
        self.w[n_alive:n] = 0.0
        self.n_particles = n_alive

    def alive(self):
        """Indices of live particles."""
        return np.flatnonzero(self.w[:self.n_particles] > 0.0)

    # ==================== AGGREGATES ====================

    def get_sim_count(self) -> int:
        return int(np.count_nonzero(self.w[:self.n_particles] > 0.0))

    def get_real_count(self) -> float:
        return float(np.sum(self.w[:self.n_particles]))

    def get_momentum(self):
        """Total momentum [kg m/s] (3,)."""
        n = self.n_particles
        return self.mass * (self.w[:n] @ self.v[:n])

    def get_kinetic_energy(self) -> float:
        """Total kinetic energy [J]."""
        n = self.n_particles
        return 0.5 * self.mass * float(self.w[:n] @ np.sum(self.v[:n] ** 2, axis=1))

    def get_maxwellian_velocity_magnitude(self, T, rng) -> float:
        """Speed of one velocity sampled from a Maxwellian at temperature T [K]."""
        return float(np.linalg.norm(sample_maxwellian_velocity(T, self.mass, 1, rng)))

    # ==================== NODE MOMENTS ====================

    def _node_coordinates(self):
        return self.domain.x_to_l(self.x[:self.n_particles])

    def calc_number_density(self):
        """
        Deposit particle weights to nodes and divide by node volume.

        On periodic axes the two copies of a seam node share one dual cell,
        so their deposits and volumes are summed. While time averaging is
        active, n is also accumulated into n_mean.
        """
        d = self.domain
        self.n[:] = 0.0
        if self.n_particles > 0:
            deposit_scalar(self.n, self._node_coordinates(), self.w, self.n_particles,
                           d.ni, d.nj, d.nk)
        d.fold_periodic(self.n)
        self.n /= d.periodic_node_volume()

        if self._n_samples < self._n_samples_max:
            self._n_sum += self.n
            self._n_samples += 1
            self.n_mean = self._n_sum / self._n_samples

    def start_time_averaging(self, n_samples: int):
        """Average n over the next n_samples calls to calc_number_density."""
        self._n_sum[:] = 0.0
        self._n_samples = 0
        self._n_samples_max = int(n_samples)

    def sample_moments(self):
        """Accumulate weight, momentum and energy sums on the nodes."""
        if self.n_particles == 0:
            return

        d = self.domain
        n = self.n_particles
        l = self._node_coordinates()
        v = self.v[:n]
        w = self.w[:n]

        deposit_scalar(self._mom_w, l, w, n, d.ni, d.nj, d.nk)
        deposit_vector(self._mom_wv, l, w[:, None] * v, n, d.ni, d.nj, d.nk)
        deposit_scalar(self._mom_wvv, l, w * np.sum(v * v, axis=1), n, d.ni, d.nj, d.nk)

    def calc_gas_properties(self):
        """
        Streaming velocity and temperature from the sampled moments.

        T = m / (3 kB) * (<v^2> - |<v>|^2). Resets the moment sums.
        """
        for sums in (self._mom_w, self._mom_wv, self._mom_wvv):
            self.domain.fold_periodic(sums)

        has = self._mom_w > 0.0
        self.v_stream[:] = 0.0
        self.T[:] = 0.0

        self.v_stream[has] = self._mom_wv[has] / self._mom_w[has, None]
        v2_mean = self._mom_wvv[has] / self._mom_w[has]
        v_stream2 = np.sum(self.v_stream[has] ** 2, axis=1)
        self.T[has] = np.maximum(self.mass / (3.0 * kB) * (v2_mean - v_stream2), 0.0)

        self._mom_w[:] = 0.0
        self._mom_wv[:] = 0.0
        self._mom_wvv[:] = 0.0

    def calc_macroparticle_count(self):
        """Number of live macroparticles in every cell."""
        idx = self.alive()
        cells = self.domain.cells_of(self.x[idx])
        self.mp_count = np.bincount(cells, minlength=self.domain.n_cells).astype(np.float64)

    # ==================== PUSH ====================

    def push_particles_leapfrog(self, rng):
        """Advance all particles one time step; see pic.mover."""
        mover.push_particles_leapfrog(self, self.domain, rng)

    def __repr__(self):
        return (f"Species({self.name!r}, n_particles={self.n_particles}, "
                f"max={self.max_particles}, w_mp={self.w_mp:g})")

    def __len__(self):
        return self.n_particles


# ==================== HELPER FUNCTIONS ====================

def sample_maxwellian_velocity(T, mass, n_samples, rng):
    """
    Sample velocities from a 3D Maxwellian distribution.

    Args:
        T: Temperature [K]
        mass: Particle mass [kg]
        n_samples: Number of samples
        rng: numpy.random.Generator

    Returns:
        v: Velocity array of shape (n_samples, 3) [m/s]
    """
    v_th = np.sqrt(kB * T / mass)
    return rng.normal(0.0, v_th, size=(n_samples, 3))
