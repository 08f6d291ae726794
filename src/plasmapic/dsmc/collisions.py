"""
DSMC Collision Module - Variable Hard Sphere (VHS) Model

Implements:
- VHS collision cross-section as a function of relative speed
- Bird's No-Time-Counter (NTC) candidate selection per cell, with the
  fractional candidate count carried between steps
- Acceptance-rejection on sigma*g / (sigma*g)_max, updating the maximum
- Post-collision velocities (isotropic scattering in the COM frame)
- Same-species and cross-species collision pairs

Reference:
- Bird (1994), "Molecular Gas Dynamics and the Direct Simulation of Gas Flows"
  Eq. 4.63 (VHS cross-section), Section 11.1 (NTC scheme)
- Boyd (1996), "Conservative species weighting scheme for DSMC"
"""

import math

import numpy as np
from numba import njit
from scipy.special import gamma

from ..constants import PI, SIGMA_VR_MAX_INIT, SPECIES, kB
from ..mesh import sort_by_cell


# ==================== VHS CROSS-SECTION MODEL ====================

def vhs_cross_section(g, m_r, d_ref, T_ref, omega):
    """
    Variable Hard Sphere collision cross-section.

        σ = π d_ref² (2 kB T_ref / (m_r g²))^(ω - 1/2) / Γ(5/2 - ω)

    For ω = 0.5 the cross-section is the constant hard-sphere value
    π d_ref² (Γ(2) = 1).

    Args:
        g: Relative speed [m/s] (scalar or array, > 0)
        m_r: Reduced mass [kg]
        d_ref: Reference diameter [m]
        T_ref: Reference temperature [K]
        omega: Viscosity index

    Returns:
        sigma: Cross-section [m^2]
    """
    g = np.asarray(g, dtype=np.float64)
    return (PI * d_ref * d_ref
            * (2.0 * kB * T_ref / (m_r * g * g)) ** (omega - 0.5)
            / gamma(2.5 - omega))


# ==================== POST-COLLISION VELOCITIES ====================

@njit
def scatter_pair(v1, v2, m1, m2, cos_theta, phi):
    """
    Post-collision velocities for a given scattering direction.

    The relative velocity keeps its magnitude and points along
    (sin θ cos φ, sin θ sin φ, cos θ); the centre-of-mass velocity is
    unchanged.
    """
    m_total = m1 + m2
    g2 = 0.0
    for d in range(3):
        g2 += (v1[d] - v2[d]) ** 2
    g = math.sqrt(g2)
    sin_theta = math.sqrt(max(1.0 - cos_theta * cos_theta, 0.0))

    g_post = np.empty(3)
    g_post[0] = g * sin_theta * math.cos(phi)
    g_post[1] = g * sin_theta * math.sin(phi)
    g_post[2] = g * cos_theta

    v1_post = np.empty(3)
    v2_post = np.empty(3)
    for d in range(3):
        v_com = (m1 * v1[d] + m2 * v2[d]) / m_total
        v1_post[d] = v_com + (m2 / m_total) * g_post[d]
        v2_post[d] = v_com - (m1 / m_total) * g_post[d]
    return v1_post, v2_post


def collide(v1, v2, m1, m2, rng):
    """
    Elastic binary collision with isotropic scattering in the COM frame.

    The centre-of-mass velocity and the relative speed are preserved, so
    momentum and kinetic energy are conserved.

    Args:
        v1, v2: Pre-collision velocities (3,) [m/s]
        m1, m2: Masses [kg]
        rng: numpy.random.Generator

    Returns:
        v1_post, v2_post: Post-collision velocities (3,) [m/s]
    """
    cos_theta = 2.0 * rng.random() - 1.0
    phi = 2.0 * PI * rng.random()
    return scatter_pair(np.asarray(v1, dtype=np.float64), np.asarray(v2, dtype=np.float64),
                        m1, m2, cos_theta, phi)


@njit
def update_flags(w1, w2, u):
    """Boyd update flags for weights w1, w2 and a uniform variate u."""
    if w1 == w2:
        return True, True
    if w1 > w2:
        return u < w2 / w1, True
    return True, u < w1 / w2


def weighted_update(w1, w2, rng):
    """
    Decide which partners of a collision take their new velocity.

    With unequal macroparticle weights the heavier-weighted particle is
    updated only with probability w_light / w_heavy.

    Returns:
        (update_1, update_2)
    """
    if w1 == w2:
        return True, True
    return update_flags(w1, w2, rng.random())


def cell_members(species, n_cells):
    """
    Live particle indices of a species grouped by cell.

    Returns:
        (members, counts, offsets) such that the particles of cell c are
        members[offsets[c]:offsets[c] + counts[c]]
    """
    idx = species.alive()
    cells = species.domain.cells_of(species.x[idx])
    order, counts, offsets = sort_by_cell(cells, n_cells)
    return idx[order], counts, offsets


# ==================== NTC COLLISIONS ====================

# uniform variates per candidate: partner a, partner b, acceptance,
# cos(theta), phi, weighted update
N_VARIATES = 6


@njit
def ntc_collisions(v_a, w_a, members_a, counts_a, offsets_a,
                   v_b, w_b, members_b, counts_b, offsets_b, same,
                   m_a, m_b, n_cand, sigma_vr_max, sigma_coef, sigma_exp, u):
    """
    NTC candidate loop over all cells.

    The VHS cross-section is sigma_coef * g**sigma_exp. For same-species
    collisions v_b and members_b are v_a and members_a, and the second
    partner is drawn from the other N - 1 particles of the cell.

    Parameters:
    -----------
    v_a, v_b : ndarray (max_particles, 3)
        Velocities, updated in place
    w_a, w_b : ndarray (max_particles,)
        Macroparticle weights
    members_*, counts_*, offsets_* : ndarray
        Particle indices grouped by cell (see cell_members)
    same : bool
        Self-collisions of one species
    m_a, m_b : float
        Masses [kg]
    n_cand : ndarray (n_cells,)
        Candidate pairs per cell
    sigma_vr_max : ndarray (n_cells,)
        Per-cell maximum of sigma*g, raised in place
    u : ndarray (n_cand.sum(), N_VARIATES)
        Uniform variates in [0, 1)

    Returns:
    --------
    n_collisions : int
        Number of accepted collisions
    """
    n_collisions = 0
    r = 0
    for c in range(len(n_cand)):
        n_a = counts_a[c]
        n_b = counts_b[c]
        for _ in range(n_cand[c]):
            ia = min(int(u[r, 0] * n_a), n_a - 1)
            i = members_a[offsets_a[c] + ia]
            if same:
                jb = min(int(u[r, 1] * (n_a - 1)), n_a - 2)
                if jb >= ia:
                    jb += 1
                j = members_a[offsets_a[c] + jb]
            else:
                j = members_b[offsets_b[c] + min(int(u[r, 1] * n_b), n_b - 1)]

            u_accept = u[r, 2]
            cos_theta = 2.0 * u[r, 3] - 1.0
            phi = 2.0 * PI * u[r, 4]
            u_weight = u[r, 5]
            r += 1

            g2 = 0.0
            for d in range(3):
                g2 += (v_a[i, d] - v_b[j, d]) ** 2
            if g2 == 0.0:
                continue
            g = math.sqrt(g2)

            sigma_g = sigma_coef * g ** sigma_exp * g
            if sigma_g > sigma_vr_max[c]:
                sigma_vr_max[c] = sigma_g
            if sigma_g / sigma_vr_max[c] <= u_accept:
                continue

            v1_post, v2_post = scatter_pair(v_a[i], v_b[j], m_a, m_b, cos_theta, phi)
            update_1, update_2 = update_flags(w_a[i], w_b[j], u_weight)
            for d in range(3):
                if update_1:
                    v_a[i, d] = v1_post[d]
                if update_2:
                    v_b[j, d] = v2_post[d]
            n_collisions += 1

    return n_collisions


class VHSCollisions:
    """
    Bird NTC collisions between one species and itself or a second species.

    Attributes:
        sigma_vr_max: Per-cell maximum of sigma*g [m^3/s]
        remainder: Per-cell fractional candidate count carried over
    """

    def __init__(self, domain, species, rng, other=None, d_ref=None, T_ref=None,
                 omega=None):
        """
        Args:
            domain: Domain (cells and time step)
            species: First species
            rng: numpy.random.Generator
            other: Second species; None for self-collisions
            d_ref, T_ref, omega: VHS parameters; default to the mean of the
                SPECIES database entries of the colliding species

        Raises:
            ValueError: If a parameter is missing and a species is not in
                the database
        """
        self.domain = domain
        self.species = species
        self.other = other
        self.rng = rng

        self.d_ref = self._parameter("d_ref", d_ref)
        self.T_ref = self._parameter("T_ref", T_ref)
        self.omega = self._parameter("omega", omega)

        self.sigma_vr_max = np.full(domain.n_cells, SIGMA_VR_MAX_INIT)
        self.remainder = np.zeros(domain.n_cells)

        m1 = species.mass
        m2 = species.mass if other is None else other.mass
        self.m_r = m1 * m2 / (m1 + m2)

        # sigma(g) = sigma_coef * g**sigma_exp, evaluated inside the kernel
        self.sigma_exp = 1.0 - 2.0 * self.omega
        self.sigma_coef = (PI * self.d_ref ** 2
                           * (2.0 * kB * self.T_ref / self.m_r) ** (self.omega - 0.5)
                           / gamma(2.5 - self.omega))

    def _parameter(self, key, value):
        if value is not None:
            return value
        names = [self.species.name] + ([] if self.other is None else [self.other.name])
        missing = [name for name in names if name not in SPECIES]
        if missing:
            raise ValueError(
                f"No VHS {key} given and species {', '.join(missing)} not in database"
            )
        return float(np.mean([getattr(SPECIES[name], key) for name in names]))

    def cross_section(self, g):
        return vhs_cross_section(g, self.m_r, self.d_ref, self.T_ref, self.omega)

    def candidates(self, counts_a, counts_b, dt):
        """
        NTC candidate count per cell; updates the carried remainder.

        Cells without a possible pair get no candidates and keep their
        remainder.
        """
        sp_b = self.species if self.other is None else self.other
        w_mp = max(self.species.w_mp, sp_b.w_mp)
        if self.other is None:
            n_pairs = 0.5 * counts_a * (counts_a - 1)
        else:
            n_pairs = (counts_a * counts_b).astype(np.float64)

        active = n_pairs > 0
        n_cand = np.zeros(len(counts_a), dtype=np.int64)
        n_cand_f = (n_pairs[active] * w_mp * self.sigma_vr_max[active] * dt
                    / self.domain.cell_volume + self.remainder[active])
        n_cand[active] = n_cand_f.astype(np.int64)
        self.remainder[active] = n_cand_f - n_cand[active]
        return n_cand

    def apply(self, dt=None) -> int:
        """
        Perform one step of collisions.

        Args:
            dt: Time step [s]; defaults to the domain time step

        Returns:
            Number of accepted collisions
        """
        dt = self.domain.dt if dt is None else dt
        n_cells = self.domain.n_cells

        sp_a = self.species
        sp_b = sp_a if self.other is None else self.other
        same = self.other is None

        members_a, counts_a, offsets_a = cell_members(sp_a, n_cells)
        if same:
            members_b, counts_b, offsets_b = members_a, counts_a, offsets_a
        else:
            members_b, counts_b, offsets_b = cell_members(sp_b, n_cells)

        n_cand = self.candidates(counts_a, counts_b, dt)
        u = self.rng.random((int(n_cand.sum()), N_VARIATES))

        return int(ntc_collisions(sp_a.v, sp_a.w, members_a, counts_a, offsets_a,
                                  sp_b.v, sp_b.w, members_b, counts_b, offsets_b, same,
                                  sp_a.mass, sp_b.mass, n_cand, self.sigma_vr_max,
                                  self.sigma_coef, self.sigma_exp, u))

    def __repr__(self):
        other = self.species.name if self.other is None else self.other.name
        return (f"VHSCollisions({self.species.name!r}-{other!r}, d_ref={self.d_ref:.3e}, "
                f"omega={self.omega})")
