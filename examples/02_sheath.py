"""
Planar Plasma Sheath

A quasi-1D column along x, one cell wide in y and z with periodic
boundaries there. Xe+ ions and electrons are injected as warm beams
through the x = 0 face; both x faces absorb particles and hold the
potential (0 V at x = 0, -0.18 V at the far wall).

Physics:
    Ions enter at the Bohm speed, electrons with zero drift
    → Fast electrons reach the wall first and charge it negative
    → A sheath forms that repels electrons and accelerates ions
    → Particle counts and energies settle to a steady state

Once steady state is detected (checked every 5000 iterations) the
number densities are time-averaged over the next 10000 iterations.
"""

import numpy as np

from plasmapic import (
    AMU,
    BoundaryCondition,
    BoundarySide,
    Domain,
    FieldBCType,
    ParticleBCType,
    PoissonSolver,
    Species,
    WarmBeam,
    e,
    m_e,
    setup_logging,
)

# ==================== SIMULATION PARAMETERS ====================

x_min = np.array([0.00, -0.00075, -0.00075])
x_max = np.array([0.03, 0.00075, 0.00075])

dt = 2e-10  # [s]
n_iter = 100_000
output_interval = 1000

n0 = 1e12  # Beam density [m^-3]
T_beam = 1000.0  # Beam temperature [K]
v_ion = np.array([11492.19, 0.0, 0.0])  # Ion injection velocity [m/s]
v_electron = np.array([0.0, 0.0, 0.0])
phi_wall = -0.18011  # [V]

w_mp = 10.0

steady_check_every = 5000
steady_tol = 0.01
n_average = 10000

seed = 1

# ==================== SETUP ====================

setup_logging()
rng = np.random.default_rng(seed)

domain = Domain("results/sheath/sheath", 21, 2, 2)
domain.set_dimensions(x_min, x_max)
domain.set_time_step(dt)
domain.set_iter_max(n_iter)

domain.set_bc_at(BoundarySide.XMIN, BoundaryCondition(ParticleBCType.OPEN, FieldBCType.DIRICHLET))
domain.set_bc_at(BoundarySide.XMAX, BoundaryCondition(ParticleBCType.OPEN, FieldBCType.DIRICHLET,
                                                      phi_wall))
for side in (BoundarySide.YMIN, BoundarySide.YMAX, BoundarySide.ZMIN, BoundarySide.ZMAX):
    domain.set_bc_at(side, BoundaryCondition(ParticleBCType.PERIODIC, FieldBCType.PERIODIC))

species = [
    Species("Xe+", 54 * AMU, e, w_mp, domain, max_particles=500_000),
    Species("e-", m_e, -e, w_mp, domain, max_particles=500_000),
]

x1 = np.array([0.0, x_min[1], x_min[2]])
x2 = np.array([0.0, x_max[1], x_max[2]])
sources = [
    WarmBeam(species[0], domain, x1, x2, v_ion, n0, T_beam),
    WarmBeam(species[1], domain, x1, x2, v_electron, n0, T_beam),
]

solver = PoissonSolver(domain, iter_max=1000, tol=1e-4)

domain.check_formulation(n0, T_beam)

print("=" * 60)
print("Planar Plasma Sheath")
print("=" * 60)
print(f"  Wall potential: {phi_wall:.3f} V")
print(f"  Beam density: {n0:.1e} m^-3, T = {T_beam:.0f} K")
print()

# ==================== MAIN LOOP ====================

while domain.advance_time():
    domain.calc_charge_density(species)
    solver.calc_potential()
    solver.calc_electric_field()

    for source in sources:
        source.sample(rng)

    for sp in species:
        sp.push_particles_leapfrog(rng)
        sp.remove_dead_particles()
        sp.calc_number_density()

    if not domain.averaging_time() and domain.steady_state(species, steady_check_every, steady_tol):
        domain.start_averaging_time()
        for sp in species:
            sp.start_time_averaging(n_average)

    if domain.iter % output_interval == 0 or domain.is_last_iter():
        for sp in species:
            sp.sample_moments()
            sp.calc_gas_properties()
            sp.calc_macroparticle_count()

        domain.print_info(species)
        domain.write_statistics(species)
        domain.save_fields(species)

domain.close()
print(f"\nWall time: {domain.get_wtime():.1f} s")
