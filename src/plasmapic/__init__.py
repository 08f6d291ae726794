"""
PlasmaPIC: 3D Electrostatic Particle-in-Cell with DSMC Collisions

Particle simulation toolkit for low-temperature plasmas on a structured
3D grid: trilinear particle-mesh interpolation, a sparse Poisson solver
with optional Boltzmann-relation electrons, per-face boundary conditions
for fields and particles, and VHS and Coulomb collision models.
"""

__version__ = "0.1.0"

from .constants import *
from .mesh import Mesh3D
from .domain import Domain
from .particles import Species, sample_maxwellian_velocity
from .sources import WarmBeam
from .pic import (
    BoundaryCondition,
    BoundarySide,
    FieldBCType,
    ParticleBCType,
    PoissonSolver,
    SolveResult,
)
from .dsmc import CollisionModel, make_interaction
from .logging_config import setup_logging

__all__ = [
    "Mesh3D",
    "Domain",
    "Species",
    "sample_maxwellian_velocity",
    "WarmBeam",
    "BoundaryCondition",
    "BoundarySide",
    "FieldBCType",
    "ParticleBCType",
    "PoissonSolver",
    "SolveResult",
    "CollisionModel",
    "make_interaction",
    "setup_logging",
]
