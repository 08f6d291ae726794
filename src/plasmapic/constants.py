"""
Physical Constants, Species Properties and Numerical Defaults

All units in SI unless otherwise noted. Temperatures are in Kelvin.
"""

import numpy as np

# ==================== FUNDAMENTAL CONSTANTS ====================

e = 1.602176634e-19  # Elementary charge [C]
m_e = 9.1093837015e-31  # Electron mass [kg]
eps0 = 8.8541878128e-12  # Vacuum permittivity [F/m]
kB = 1.380649e-23  # Boltzmann constant [J/K]
AMU = 1.66053906660e-27  # Atomic mass unit [kg]
PI = np.pi

# ==================== NUMERICAL DEFAULTS ====================

# Fraction of the pre-wall path kept after a diffuse wall hit, so the
# re-emitted particle starts strictly inside the domain
DIFFUSE_SAFETY_FACTOR = 0.999

DEFAULT_WALL_TEMPERATURE = 1000.0  # [K]
DEFAULT_ACCOMMODATION = 1.0  # [-]

NEWTON_ITER_MAX = 20
NEWTON_TOL = 1e-4  # [V]

SIGMA_VR_MAX_INIT = 1e-14  # [m^3/s] initial NTC majorant
COULOMB_LOG_MIN = 2.0

STATS_FLUSH_EVERY = 25  # iterations between statistics file flushes

# ==================== SPECIES DATABASE ====================


class SpeciesData:
    """
    Species properties used by the collision models.

    Attributes:
        mass: Particle mass [kg]
        charge: Particle charge [C] (0 for neutrals)
        d_ref: VHS reference diameter [m]
        T_ref: VHS reference temperature [K]
        omega: VHS viscosity index (0.5 = hard sphere)
    """

    def __init__(self, mass, charge=0.0, d_ref=4.0e-10, T_ref=273.15, omega=0.77):
        self.mass = mass
        self.charge = charge
        self.d_ref = d_ref
        self.T_ref = T_ref
        self.omega = omega


SPECIES = {
    # Neutrals (Bird 1994, Appendix A)
    'O': SpeciesData(mass=16.0 * AMU, d_ref=4.07e-10, T_ref=273.15, omega=0.77),
    'N2': SpeciesData(mass=28.014 * AMU, d_ref=4.17e-10, T_ref=273.15, omega=0.74),
    'Ar': SpeciesData(mass=39.948 * AMU, d_ref=4.17e-10, T_ref=273.15, omega=0.81),
    'Xe': SpeciesData(mass=131.293 * AMU, d_ref=5.74e-10, T_ref=273.15, omega=0.85),

    # Ions
    'O+': SpeciesData(mass=16.0 * AMU, charge=e, d_ref=4.07e-10, omega=0.77),
    'Xe+': SpeciesData(mass=131.293 * AMU, charge=e, d_ref=5.74e-10, omega=0.85),

    # Electrons
    'e-': SpeciesData(mass=m_e, charge=-e, d_ref=1e-15, omega=0.5),
}

# ==================== PLASMA PARAMETERS ====================


def debye_length(n_e, T_e):
    """
    Electron Debye length.

    Args:
        n_e: Electron density [m^-3]
        T_e: Electron temperature [K]

    Returns:
        lambda_D: Debye length [m]
    """
    return np.sqrt(eps0 * kB * T_e / (n_e * e**2))


def plasma_frequency(n_e):
    """
    Electron plasma frequency.

    Args:
        n_e: Electron density [m^-3]

    Returns:
        omega_pe: Plasma frequency [rad/s]
    """
    return np.sqrt(n_e * e**2 / (m_e * eps0))


def mean_thermal_speed(T, mass):
    """Mean speed of a Maxwellian, sqrt(8 kT / (pi m)) [m/s]."""
    return np.sqrt(8.0 * kB * T / (PI * mass))
