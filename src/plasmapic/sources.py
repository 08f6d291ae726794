"""
Particle Sources

WarmBeam injects a drifting Maxwellian through a rectangular patch of a
domain face. The number of real particles crossing the patch per step is
the one-sided flux of a drifting Maxwellian (Bird 1994, Eq. 4.22):

    Γ = n [ v_d/2 (1 + erf(s)) + v_mp/(2√π) exp(-s²) ],   s = v_d / v_mp

where v_d is the drift component along the inward normal and
v_mp = sqrt(2 kT/m). The fractional part of the macroparticle count is
carried to the next step.

Reference:
    Bird (1994), "Molecular Gas Dynamics", Section 4.3
"""

import numpy as np
from scipy.special import erf

from .constants import PI, kB
from .particles import sample_maxwellian_velocity


def half_range_flux(n, v_drift, T, mass):
    """
    One-sided number flux of a drifting Maxwellian through a plane.

    Args:
        n: Number density [m^-3]
        v_drift: Drift velocity along the plane normal [m/s]
        T: Temperature [K]
        mass: Particle mass [kg]

    Returns:
        Flux [m^-2 s^-1]
    """
    if T <= 0.0:
        return n * max(v_drift, 0.0)
    v_mp = np.sqrt(2.0 * kB * T / mass)
    s = v_drift / v_mp
    return n * (0.5 * v_drift * (1.0 + erf(s)) + v_mp / (2.0 * np.sqrt(PI)) * np.exp(-s * s))


class WarmBeam:
    """
    Drifting Maxwellian injected through a face patch every time step.

    Attributes:
        species: Species receiving the particles
        domain: Domain (time step and face location)
        x1, x2: Patch corners (3,) [m]; equal along the face-normal axis
        v_drift: Drift velocity (3,) [m/s]
        density: Beam number density [m^-3]
        T: Beam temperature [K]
        axis: Face-normal axis
        direction: +1 if injecting towards +axis, -1 otherwise
    """

    def __init__(self, species, domain, x1, x2, v_drift, density, T):
        self.species = species
        self.domain = domain
        self.x1 = np.asarray(x1, dtype=np.float64)
        self.x2 = np.asarray(x2, dtype=np.float64)
        self.v_drift = np.asarray(v_drift, dtype=np.float64)
        self.density = density
        self.T = T
        self.remainder = 0.0

        flat = np.flatnonzero(self.x1 == self.x2)
        if len(flat) != 1:
            raise ValueError(
                f"Source patch must be flat along exactly one axis: x1={self.x1}, x2={self.x2}"
            )
        self.axis = int(flat[0])

        if np.isclose(self.x1[self.axis], domain.x_min[self.axis]):
            self.direction = 1.0
        elif np.isclose(self.x1[self.axis], domain.x_max[self.axis]):
            self.direction = -1.0
        else:
            raise ValueError(f"Source patch is not on a domain face: x1={self.x1}")

        extent = np.delete(self.x2 - self.x1, self.axis)
        self.area = float(abs(np.prod(extent)))

    def sample(self, rng):
        """
        Inject this step's macroparticles.

        Returns:
            Number of macroparticles injected
        """
        sp = self.species
        dt = self.domain.dt

        v_normal = self.direction * self.v_drift[self.axis]
        flux = half_range_flux(self.density, v_normal, self.T, sp.mass)
        n_real = flux * self.area * dt

        n_sim_f = n_real / sp.w_mp + self.remainder
        n_sim = int(n_sim_f)
        self.remainder = n_sim_f - n_sim
        if n_sim == 0:
            return 0

        x = self.x1 + rng.random((n_sim, 3)) * (self.x2 - self.x1)
        v = self.v_drift + sample_maxwellian_velocity(self.T, sp.mass, n_sim, rng)

        # only particles moving into the domain cross the patch
        v[:, self.axis] = self.direction * np.abs(v[:, self.axis])

        # spread entry times over the step
        x += v * (rng.random(n_sim) * dt)[:, None]
        x = np.clip(x, self.domain.x_min, self.domain.x_max)

        sp.add_particles(x, v)
        return n_sim

    def __repr__(self):
        return (f"WarmBeam({self.species.name!r}, axis={'xyz'[self.axis]}, "
                f"n={self.density:g}, T={self.T:g})")
