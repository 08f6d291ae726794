"""
Particle-in-Cell (PIC) Module

Components:
- boundaries: face boundary conditions for fields and particles
- field_solver: sparse Poisson solver (linear and Boltzmann-relation)
- mover: electrostatic leapfrog push with boundary handling
"""

from .boundaries import (
    BoundaryCondition,
    BoundarySide,
    BoundaryValue,
    FieldBCType,
    Particle,
    ParticleBCType,
    apply_boundary_conditions,
    diffuse_vector,
    eval_field_bc,
)
from .field_solver import PoissonSolver, SolveResult
from .mover import push_particles_leapfrog

__all__ = [
    # Boundaries
    "BoundaryCondition",
    "BoundarySide",
    "BoundaryValue",
    "FieldBCType",
    "Particle",
    "ParticleBCType",
    "apply_boundary_conditions",
    "diffuse_vector",
    "eval_field_bc",
    # Field solver
    "PoissonSolver",
    "SolveResult",
    # Mover
    "push_particles_leapfrog",
]
