"""
Domain Boundary Conditions for Fields and Particles

Each of the six domain faces carries an ordered list of boundary
conditions. A boundary condition pairs a field policy (used when the
Poisson matrix is assembled) with a particle policy (used when a pushed
particle leaves the domain through that face). An optional predicate
restricts a condition to a patch of the face; the first condition whose
predicate accepts the point wins.

Field policies:
    - Dirichlet: fixed potential, possibly varying along the face
    - Neumann: fixed normal gradient (zero-gradient by default)
    - Periodic: max-face nodes alias the opposite min-face nodes

Particle policies:
    - Specular / Symmetric: mirror position and normal velocity
    - Open: particle is absorbed (weight set to zero)
    - Diffuse: re-emitted from the wall with partial thermal accommodation
      and a cosine angular law
    - Periodic: particle re-enters through the opposite face

Reference:
    Bird (1994), "Molecular Gas Dynamics", Ch. 12 (diffuse reflection)
"""

from enum import Enum, IntEnum
from typing import Callable, NamedTuple, Optional

import numpy as np

from ..constants import (
    DEFAULT_ACCOMMODATION,
    DEFAULT_WALL_TEMPERATURE,
    DIFFUSE_SAFETY_FACTOR,
    PI,
)


class BoundarySide(IntEnum):
    """Domain faces; side = 2*axis + (0 for min, 1 for max)."""

    XMIN = 0
    XMAX = 1
    YMIN = 2
    YMAX = 3
    ZMIN = 4
    ZMAX = 5

    @property
    def axis(self):
        return int(self) // 2

    @property
    def is_max(self):
        return int(self) % 2 == 1

    @property
    def normal(self):
        """Unit normal pointing into the domain."""
        n = np.zeros(3)
        n[self.axis] = -1.0 if self.is_max else 1.0
        return n


class FieldBCType(Enum):
    DIRICHLET = "dirichlet"
    NEUMANN = "neumann"
    PERIODIC = "periodic"


class ParticleBCType(Enum):
    SPECULAR = "specular"
    OPEN = "open"
    DIFFUSE = "diffuse"
    SYMMETRIC = "symmetric"
    PERIODIC = "periodic"


class BoundaryValue:
    """
    Boundary target value: either a constant or a function of position.

    Build with BoundaryValue.constant(v) or BoundaryValue.function(f);
    f is called as f(x, y, z) with the node or crossing coordinates.
    """

    def __init__(self, constant: Optional[float] = None,
                 function: Optional[Callable[[float, float, float], float]] = None):
        if (constant is None) == (function is None):
            raise ValueError("BoundaryValue needs exactly one of constant or function")
        self._constant = constant
        self._function = function

    @classmethod
    def constant(cls, value: float) -> "BoundaryValue":
        return cls(constant=float(value))

    @classmethod
    def function(cls, f: Callable[[float, float, float], float]) -> "BoundaryValue":
        return cls(function=f)

    @property
    def is_constant(self) -> bool:
        return self._function is None

    def evaluate(self, x: float, y: float, z: float) -> float:
        if self._function is None:
            return self._constant
        return float(self._function(x, y, z))

    def __repr__(self):
        if self._function is None:
            return f"BoundaryValue.constant({self._constant})"
        return f"BoundaryValue.function({self._function!r})"


class BoundaryCondition:
    """
    Boundary condition record for one face (or one patch of a face).

    Attributes:
        particle_bc: ParticleBCType applied to particles crossing the face
        field_bc: FieldBCType used in the Poisson matrix
        value: BoundaryValue (potential for Dirichlet, gradient for Neumann)
        T: Wall temperature for diffuse emission [K]
        a_th: Thermal accommodation coefficient [0, 1]
    """

    def __init__(self, particle_bc: ParticleBCType, field_bc: FieldBCType,
                 value=0.0, T: float = DEFAULT_WALL_TEMPERATURE,
                 a_th: float = DEFAULT_ACCOMMODATION,
                 applies: Optional[Callable[[float, float, float], bool]] = None):
        """
        Args:
            particle_bc: Particle policy
            field_bc: Field policy
            value: Constant, callable f(x, y, z) or BoundaryValue
            T: Wall temperature [K] (diffuse only)
            a_th: Thermal accommodation coefficient (diffuse only)
            applies: Optional predicate g(x, y, z) -> bool selecting a patch

        Raises:
            ValueError: If a_th is outside [0, 1] or T is negative
        """
        if not 0.0 <= a_th <= 1.0:
            raise ValueError(f"Accommodation coefficient must be in [0, 1], got {a_th}")
        if T < 0.0:
            raise ValueError(f"Wall temperature must be non-negative, got {T}")

        if isinstance(value, BoundaryValue):
            self.value = value
        elif callable(value):
            self.value = BoundaryValue.function(value)
        else:
            self.value = BoundaryValue.constant(value)

        self.particle_bc = particle_bc
        self.field_bc = field_bc
        self.T = T
        self.a_th = a_th
        self._applies = applies

    def does_apply(self, x: float, y: float, z: float) -> bool:
        if self._applies is None:
            return True
        return bool(self._applies(x, y, z))

    def get_value(self, x: float, y: float, z: float) -> float:
        return self.value.evaluate(x, y, z)

    def __repr__(self):
        return (f"BoundaryCondition({self.particle_bc.name}, {self.field_bc.name}, "
                f"value={self.value!r})")


def select_bc(bcs, side, x, y, z):
    """
    First boundary condition of a face list that applies at (x, y, z).

    Raises:
        ValueError: If the face has no condition covering the point
    """
    for bc in bcs:
        if bc.does_apply(x, y, z):
            return bc
    raise ValueError(
        f"No boundary condition on {BoundarySide(side).name} applies at "
        f"({x:.6g}, {y:.6g}, {z:.6g})"
    )


# ==================== FIELD BOUNDARY CONDITIONS ====================

def eval_field_bc(bc, rhs, rows, cols, vals, u, v, spacing, x, y, z, alias=None):
    """
    Emit the matrix row of boundary node u.

    Dirichlet:  phi[u] = value
    Neumann:    phi[u] - phi[v] = value * spacing
    Periodic:   phi[u] - phi[alias] = 0 on a max face; a min face emits
                nothing and the node is assembled with a wrapped stencil.

    Args:
        bc: BoundaryCondition selected for this node
        rhs: Right-hand side vector, modified in-place
        rows, cols, vals: COO coefficient lists, appended in-place
        u: Boundary node index
        v: Interior neighbour along the face normal
        spacing: Node spacing normal to the face [m]
        x, y, z: Node coordinates [m]
        alias: Opposite-face node (periodic max faces only)

    Returns:
        True if a row was emitted, False if the node needs a regular row
    """
    if bc.field_bc is FieldBCType.DIRICHLET:
        rows.append(u)
        cols.append(u)
        vals.append(1.0)
        rhs[u] = bc.get_value(x, y, z)
        return True

    if bc.field_bc is FieldBCType.NEUMANN:
        rows.extend((u, u))
        cols.extend((u, v))
        vals.extend((1.0, -1.0))
        rhs[u] = bc.get_value(x, y, z) * spacing
        return True

    if bc.field_bc is FieldBCType.PERIODIC:
        if alias is None:
            return False
        rows.extend((u, u))
        cols.extend((u, alias))
        vals.extend((1.0, -1.0))
        rhs[u] = 0.0
        return True

    raise ValueError(f"Unknown field boundary condition: {bc.field_bc}")


# ==================== PARTICLE BOUNDARY CONDITIONS ====================

class Particle(NamedTuple):
    """
    One particle as seen by the boundary engine.

    Attributes:
        x: Position (3,) [m]
        v: Velocity (3,) [m/s]
        dt: Duration of the push segment ending at x [s]; a diffuse wall
            hit shortens it to the part travelled before the wall
        w_mp: Macroparticle weight; 0 marks the particle for removal
    """

    x: np.ndarray
    v: np.ndarray
    dt: float
    w_mp: float


def diffuse_vector(n, rng):
    """
    Random unit vector following the cosine law about normal n.

    sin(theta) is uniform on [0, 1) and the azimuth psi uniform on
    [0, 2 pi). The tangent basis uses n x X, or n x Y when n is parallel
    to X.

    Args:
        n: Unit wall normal pointing into the domain (3,)
        rng: numpy.random.Generator

    Returns:
        Unit vector (3,) with positive component along n
    """
    sin_theta = rng.random()
    cos_theta = np.sqrt(1.0 - sin_theta * sin_theta)
    psi = 2.0 * PI * rng.random()

    t1 = np.cross(n, np.array([1.0, 0.0, 0.0]))
    if np.linalg.norm(t1) == 0.0:
        t1 = np.cross(n, np.array([0.0, 1.0, 0.0]))
    t1 /= np.linalg.norm(t1)
    t2 = np.cross(n, t1)

    return sin_theta * (np.cos(psi) * t1 + np.sin(psi) * t2) + cos_theta * n


def eval_particle_bc(bc, species, side, wall, x_old, p, rng):
    """
    Apply one face's particle policy to a particle beyond that face.

    Args:
        bc: BoundaryCondition selected for the crossing point
        species: Species of the particle (supplies the thermal speed)
        side: BoundarySide crossed
        wall: Face coordinate along the crossed axis [m]
        x_old: Position at the start of the push segment (3,) [m]
        p: Particle beyond the face
        rng: numpy.random.Generator

    Returns:
        Updated Particle
    """
    side = BoundarySide(side)
    dim = side.axis

    if bc.particle_bc in (ParticleBCType.SPECULAR, ParticleBCType.SYMMETRIC):
        x = p.x.copy()
        v = p.v.copy()
        x[dim] = 2.0 * wall - x[dim]
        v[dim] = -v[dim]
        return p._replace(x=x, v=v)

    if bc.particle_bc is ParticleBCType.OPEN:
        return p._replace(w_mp=0.0)

    if bc.particle_bc is ParticleBCType.PERIODIC:
        x = p.x.copy()
        length = species.domain.L[dim]
        x[dim] += -length if side.is_max else length
        return p._replace(x=x)

    if bc.particle_bc is ParticleBCType.DIFFUSE:
        t = (wall - x_old[dim]) / (p.x[dim] - x_old[dim])
        dt_unused = (1.0 - t) * p.dt
        x = x_old + DIFFUSE_SAFETY_FACTOR * t * (p.x - x_old)

        v_mag1 = np.linalg.norm(p.v)
        v_th = species.get_maxwellian_velocity_magnitude(bc.T, rng)
        v_mag2 = v_mag1 + bc.a_th * (v_th - v_mag1)
        v = v_mag2 * diffuse_vector(side.normal, rng)

        return p._replace(x=x, v=v, dt=p.dt - dt_unused)

    raise ValueError(f"Unknown particle boundary condition: {bc.particle_bc}")


def apply_boundary_conditions(domain, species, x_old, p, rng):
    """
    Apply the boundary policies of every face the particle has crossed.

    Axes are handled in order x, y, z. The face condition is picked at
    the particle position projected onto the face.

    Args:
        domain: Domain holding the boundary conditions
        species: Species of the particle
        x_old: Position at the start of the push segment (3,) [m]
        p: Particle after the push
        rng: numpy.random.Generator

    Returns:
        Updated Particle (w_mp == 0 if it was absorbed)
    """
    for dim in range(3):
        if p.w_mp == 0.0:
            break

        if p.x[dim] < domain.x_min[dim]:
            side = BoundarySide(2 * dim)
            wall = domain.x_min[dim]
        elif domain.x_max[dim] < p.x[dim]:
            side = BoundarySide(2 * dim + 1)
            wall = domain.x_max[dim]
        else:
            continue

        xw = np.clip(p.x, domain.x_min, domain.x_max)
        bc = domain.get_bc(side, xw[0], xw[1], xw[2])
        p = eval_particle_bc(bc, species, side, wall, x_old, p, rng)

    return p
