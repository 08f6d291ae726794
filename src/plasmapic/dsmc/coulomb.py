"""
Nanbu Coulomb Collisions

Binary Monte Carlo model of cumulative small-angle Coulomb scattering.
Within each cell the charged particles are paired at random; every pair
is scattered once per step by an angle drawn from Nanbu's distribution

    f(χ) ∝ A exp(A cos χ) / (2 sinh A),   coth A - 1/A = exp(-s)

where s = lnΛ/(4π) (q1 q2 / (ε0 μ))² n2 Δt / g³ is the accumulated
scattering parameter of the step. The relative velocity is rotated by χ
about a random azimuth; the pair's momentum and energy are conserved.

Pairing is done per cell in Python; the scattering of all pairs runs in
the numba kernel nanbu_scatter on variates drawn from the caller's
generator.

Reference:
    Nanbu (1997), Phys. Rev. E 55, 4642
    Takizuka & Abe (1977), J. Comput. Phys. 25, 205 (rotation formulas)
"""

import math

import numpy as np
from numba import njit

from ..constants import COULOMB_LOG_MIN, PI, debye_length, eps0
from .collisions import cell_members, update_flags

# Limits of the scattering parameter s
S_SMALL = 0.01
S_ISOTROPIC = 6.0

NEWTON_MAX_ITER = 100
NEWTON_RTOL = 1e-13


@njit
def langevin(A):
    """coth(A) - 1/A, with its series for small A."""
    if A < 1e-3:
        return A / 3.0 - A**3 / 45.0
    return 1.0 / math.tanh(A) - 1.0 / A


@njit
def langevin_slope(A):
    """d/dA (coth A - 1/A) = 1/A² - 1/sinh² A."""
    if A < 1e-3:
        return 1.0 / 3.0 - A * A / 15.0
    x = math.exp(-2.0 * A)
    return 1.0 / (A * A) - 4.0 * x / ((1.0 - x) * (1.0 - x))


@njit
def solve_nanbu_A(s):
    """
    Solve coth(A) - 1/A = exp(-s) for A.

    Newton's method started from A = 3 exp(-s). coth A - 1/A <= A/3 and is
    concave for A > 0, so the start lies below the root and the iterates
    increase monotonically onto it.

    Args:
        s: Scattering parameter (> 0)

    Returns:
        A, or 0.0 when s is large enough for isotropic scattering
    """
    if s < S_SMALL:
        return 1.0 / s
    if s > S_ISOTROPIC:
        return 0.0

    target = math.exp(-s)
    A = 3.0 * target
    for _ in range(NEWTON_MAX_ITER):
        step = (target - langevin(A)) / langevin_slope(A)
        A += step
        if abs(step) <= NEWTON_RTOL * A:
            break
    return A


@njit
def cos_chi_from_uniform(A, U):
    """cos(χ) = 1 + ln(U + (1 - U) exp(-2A)) / A for U in (0, 1]; A = 0 is isotropic."""
    if A == 0.0:
        return 2.0 * U - 1.0
    cos_chi = 1.0 + math.log(U + (1.0 - U) * math.exp(-2.0 * A)) / A
    return min(max(cos_chi, -1.0), 1.0)


def nanbu_cos_chi(A, rng):
    """Sample cos(χ) from Nanbu's distribution."""
    return cos_chi_from_uniform(A, 1.0 - rng.random())


@njit
def rotate_relative_velocity(g, cos_chi, eps):
    """
    Rotate relative velocity g by χ about azimuth eps.

    Returns:
        g_post (3,) with |g_post| = |g|
    """
    g_mag = math.sqrt(g[0] * g[0] + g[1] * g[1] + g[2] * g[2])
    g_perp = math.sqrt(g[1] * g[1] + g[2] * g[2])
    cos_eps = math.cos(eps)
    sin_eps = math.sin(eps)

    h = np.empty(3)
    if g_perp > 0.0:
        h[0] = g_perp * cos_eps
        h[1] = -(g[0] * g[1] * cos_eps + g_mag * g[2] * sin_eps) / g_perp
        h[2] = -(g[0] * g[2] * cos_eps - g_mag * g[1] * sin_eps) / g_perp
    else:
        h[0] = 0.0
        h[1] = g_mag * cos_eps
        h[2] = g_mag * sin_eps

    sin_chi = math.sqrt(max(1.0 - cos_chi * cos_chi, 0.0))
    return g * cos_chi + h * sin_chi


@njit
def coulomb_log(q1, q2, mu, g, lambda_D):
    """ln(lambda_D / b0), b0 = |q1 q2| / (4 π ε0 μ g²), floored."""
    b0 = abs(q1 * q2) / (4.0 * PI * eps0 * mu * g * g)
    return max(math.log(lambda_D / b0), COULOMB_LOG_MIN)


@njit
def scattering_parameter(q1, q2, mu, g, n2, dt, lambda_D):
    ln_Lambda = coulomb_log(q1, q2, mu, g, lambda_D)
    return ln_Lambda / (4.0 * PI) * (q1 * q2 / (eps0 * mu)) ** 2 * n2 * dt / g**3


# uniform variates per pair: cos(chi), azimuth, weighted update
N_VARIATES = 3


@njit
def nanbu_scatter(v_a, w_a, q_a, m_a, v_b, w_b, q_b, m_b,
                  pair_a, pair_b, n2, dt, lambda_D, u):
    """
    Scatter every listed pair once.

    Parameters:
    -----------
    v_a, v_b : ndarray (max_particles, 3)
        Velocities, updated in place (the same array for like species)
    w_a, w_b : ndarray (max_particles,)
        Macroparticle weights
    pair_a, pair_b : ndarray (n_pairs,)
        Particle indices of each pair
    n2 : ndarray (n_pairs,)
        Density of the second species in the pair's cell [m^-3]
    u : ndarray (n_pairs, N_VARIATES)
        Uniform variates in [0, 1)

    Returns:
    --------
    n_collisions : int
        Number of scattered pairs
    """
    mu = m_a * m_b / (m_a + m_b)
    n_collisions = 0
    g = np.empty(3)
    for p in range(len(pair_a)):
        i = pair_a[p]
        j = pair_b[p]
        for d in range(3):
            g[d] = v_a[i, d] - v_b[j, d]
        g_mag = math.sqrt(g[0] * g[0] + g[1] * g[1] + g[2] * g[2])
        if g_mag == 0.0:
            continue

        s = scattering_parameter(q_a, q_b, mu, g_mag, n2[p], dt, lambda_D)
        cos_chi = cos_chi_from_uniform(solve_nanbu_A(s), 1.0 - u[p, 0])
        g_post = rotate_relative_velocity(g, cos_chi, 2.0 * PI * u[p, 1])

        update_1, update_2 = update_flags(w_a[i], w_b[j], u[p, 2])
        for d in range(3):
            dg = g[d] - g_post[d]
            if update_1:
                v_a[i, d] -= (mu / m_a) * dg
            if update_2:
                v_b[j, d] += (mu / m_b) * dg
        n_collisions += 1

    return n_collisions


class NanbuCollisions:
    """
    Coulomb collisions among a list of charged species.

    Every unordered species pair (including each species with itself) is
    processed in every cell.

    Attributes:
        lambda_D: Debye length used for the Coulomb logarithm [m]
    """

    def __init__(self, domain, species_list, T_e, n_e, rng):
        """
        Args:
            domain: Domain (cells and time step)
            species_list: Species taking part (neutral ones are ignored)
            T_e: Electron temperature [K]
            n_e: Electron density [m^-3]
            rng: numpy.random.Generator
        """
        if T_e <= 0.0 or n_e <= 0.0:
            raise ValueError(f"Need positive T_e and n_e, got T_e={T_e}, n_e={n_e}")

        self.domain = domain
        self.species = [sp for sp in species_list if sp.charge != 0.0]
        self.rng = rng
        self.lambda_D = float(debye_length(n_e, T_e))

    def coulomb_log(self, q1, q2, mu, g):
        return coulomb_log(q1, q2, mu, g, self.lambda_D)

    def scattering_parameter(self, q1, q2, mu, g, n2, dt):
        return scattering_parameter(q1, q2, mu, g, n2, dt, self.lambda_D)

    def apply(self, dt=None) -> int:
        """
        Perform one step of Coulomb collisions.

        Returns:
            Number of scattered pairs
        """
        dt = self.domain.dt if dt is None else dt
        n_cells = self.domain.n_cells
        V_cell = self.domain.cell_volume

        binned = [cell_members(sp, n_cells) for sp in self.species]
        n_collisions = 0

        for a in range(len(self.species)):
            for b in range(a, len(self.species)):
                sp_a, sp_b = self.species[a], self.species[b]
                members_a, counts_a, offsets_a = binned[a]
                members_b, counts_b, offsets_b = binned[b]

                pairs_a, pairs_b, densities = [], [], []
                for c in range(n_cells):
                    in_a = members_a[offsets_a[c]:offsets_a[c] + counts_a[c]]
                    in_b = members_b[offsets_b[c]:offsets_b[c] + counts_b[c]]
                    if len(in_a) == 0 or len(in_b) == 0:
                        continue

                    i, j = self.pairs(in_a, in_b, a == b)
                    pairs_a.append(i)
                    pairs_b.append(j)
                    densities.append(np.full(len(i), float(np.sum(sp_b.w[in_b])) / V_cell))

                if not pairs_a:
                    continue
                pair_a = np.concatenate(pairs_a)
                pair_b = np.concatenate(pairs_b)
                u = self.rng.random((len(pair_a), N_VARIATES))
                n_collisions += nanbu_scatter(sp_a.v, sp_a.w, sp_a.charge, sp_a.mass,
                                              sp_b.v, sp_b.w, sp_b.charge, sp_b.mass,
                                              pair_a, pair_b, np.concatenate(densities),
                                              dt, self.lambda_D, u)

        return int(n_collisions)

    def pairs(self, in_a, in_b, same):
        """
        Random disjoint pairs of one cell.

        Like species are paired within a shuffled list (an odd particle out
        sits the step out). Unlike species are paired up to the smaller count.

        Returns:
            (pair_a, pair_b) index arrays of equal length
        """
        if same:
            shuffled = self.rng.permutation(in_a)
            n = len(shuffled) // 2
            return shuffled[0:2 * n:2], shuffled[1:2 * n:2]
        n = min(len(in_a), len(in_b))
        return self.rng.permutation(in_a)[:n], self.rng.permutation(in_b)[:n]

    def __repr__(self):
        names = ", ".join(sp.name for sp in self.species)
        return f"NanbuCollisions([{names}], lambda_D={self.lambda_D:.3e})"
