"""
Electron Oscillation in a Closed Box

Xe+ ions fill a 10 cm cube uniformly; electrons fill only the lower
octant. The charge separation drives the electrons into oscillation about
the ion background while the walls mirror every particle and hold the
potential at zero.

Physics:
    Cold electrons released into a uniform ion background
    → Electrostatic field pulls them towards the box centre
    → Electrons overshoot and oscillate at about omega_pe
    → Total energy (kinetic + potential) is conserved to the PIC noise level

Output every 10 iterations: console line, statistics CSV and .vti fields.
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
    e,
    m_e,
    setup_logging,
)
from plasmapic.diagnostics import plot_statistics

# ==================== SIMULATION PARAMETERS ====================

x_min = np.array([0.0, 0.0, 0.0])
x_max = np.array([0.1, 0.1, 0.1])
x_mid = 0.5 * (x_min + x_max)

n_nodes = 21
dt = 1e-9  # [s]
n_iter = 2000
output_interval = 10

n0 = 1e11  # Plasma density [m^-3]
w_mp = 1000.0  # Real particles per macroparticle

seed = 42

# ==================== SETUP ====================

setup_logging()
rng = np.random.default_rng(seed)

domain = Domain("results/box/box", n_nodes, n_nodes, n_nodes)
domain.set_dimensions(x_min, x_max)
domain.set_time_step(dt)
domain.set_iter_max(n_iter)

for side in BoundarySide:
    domain.set_bc_at(side, BoundaryCondition(ParticleBCType.SYMMETRIC, FieldBCType.DIRICHLET))

species = [
    Species("Xe+", 54 * AMU, e, w_mp, domain, max_particles=200_000),
    Species("e-", m_e, -e, w_mp, domain, max_particles=200_000),
]

species[0].add_cold_box(x_min, x_max, n0, [0.0, 0.0, 0.0], rng)
species[1].add_cold_box(x_min, x_mid, n0, [0.0, 0.0, 0.0], rng)

for sp in species:
    sp.calc_number_density()

solver = PoissonSolver(domain, iter_max=10000, tol=1e-4)

domain.check_formulation(n0, 0.0)

print("=" * 60)
print("Electron Oscillation in a Closed Box")
print("=" * 60)
for sp in species:
    print(f"  {sp.name}: {sp.get_sim_count()} macroparticles")
print()

# ==================== MAIN LOOP ====================

while domain.advance_time():
    domain.calc_charge_density(species)
    solver.calc_potential()
    solver.calc_electric_field()

    for sp in species:
        sp.push_particles_leapfrog(rng)
        sp.calc_number_density()

    if domain.iter % output_interval == 0 or domain.is_last_iter():
        for sp in species:
            sp.sample_moments()
            sp.calc_gas_properties()
            sp.calc_macroparticle_count()
        domain.calc_total_temperature(species)
        domain.calc_coulomb_log(0.0, n0)

        domain.print_info(species)
        domain.write_statistics(species)
        domain.save_fields(species)

domain.close()
print(f"\nWall time: {domain.get_wtime():.1f} s")

plot_statistics(f"{domain.prefix}_statistics.csv", show=False,
                save_filename=f"{domain.prefix}_statistics.png")
