"""
PIC Particle Mover (Electrostatic Leapfrog)

Implements:
- Trilinear gather of the node electric field to the particles
- Leapfrog push: v += (q/m) E dt, x += v dt
- Boundary handling for particles that leave the domain, including the
  continued push of diffusely re-emitted particles for the part of the
  step they had not travelled before hitting the wall

Reference:
    Birdsall & Langdon (2004), "Plasma Physics via Computer Simulation"
    Chapter 4: The Electrostatic Program
"""

import numpy as np

from ..mesh import gather_vector
from .boundaries import Particle

MAX_BOUNDARY_PASSES = 10


def outside_mask(domain, x):
    """True for positions beyond any domain face (positions on a face are inside)."""
    return np.any((x < domain.x_min) | (domain.x_max < x), axis=1)


def push_particles_leapfrog(species, domain, rng):
    """
    Advance every live particle of a species by one time step.

    Args:
        species: Species to push (arrays modified in-place)
        domain: Domain with the node electric field and boundary conditions
        rng: numpy.random.Generator (diffuse re-emission)
    """
    n = species.n_particles
    if n == 0:
        return

    dt = domain.dt
    x = species.x[:n]
    v = species.v[:n]
    w = species.w[:n]

    E = np.zeros((n, 3))
    if species.charge != 0.0:
        gather_vector(domain.E, domain.x_to_l(x), n, domain.ni, domain.nj, domain.nk, E)

    v += (species.charge / species.mass) * dt * E
    x_old = x.copy()
    x += v * dt

    for p in np.flatnonzero(outside_mask(domain, x) & (w > 0.0)):
        resolve_boundaries(species, domain, p, x_old[p], dt, rng)


def resolve_boundaries(species, domain, p, x_old, dt, rng):
    """
    Apply boundary conditions to particle p until it is inside or absorbed.

    After a diffuse wall hit the particle is pushed with its new velocity
    for the remainder of the step.

    Raises:
        RuntimeError: If the particle is still outside after
            MAX_BOUNDARY_PASSES passes
    """
    segment_dt = dt
    for _ in range(MAX_BOUNDARY_PASSES):
        part = Particle(species.x[p].copy(), species.v[p].copy(), segment_dt, species.w[p])
        part = domain.apply_boundary_conditions(species, x_old, part, rng)

        species.x[p] = part.x
        species.v[p] = part.v
        species.w[p] = part.w_mp
        if part.w_mp == 0.0:
            return

        remaining = segment_dt - part.dt
        if remaining > 0.0:
            x_old = part.x.copy()
            species.x[p] = part.x + part.v * remaining
            segment_dt = remaining
        else:
            x_old = species.x[p].copy()

        if not outside_mask(domain, species.x[p][None, :])[0]:
            return

    raise RuntimeError(
        f"{species.name} particle {p} still outside the domain at {species.x[p]} "
        f"after {MAX_BOUNDARY_PASSES} boundary passes"
    )
