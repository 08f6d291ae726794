"""
PlasmaPIC Test Suite

Tests organized by:
- test_mesh.py: Mesh indexing, node volumes, scatter/gather kernels
- test_boundaries.py: Field rows and particle boundary policies
- test_field_solver.py: Poisson and Boltzmann-relation solves, electric field
- test_particles.py: Species storage and moments, mover, warm-beam sources
- test_collisions.py: VHS/NTC and Nanbu Coulomb collisions
- test_diagnostics.py: Steady-state detection, statistics file, logging
- test_domain.py: Domain configuration, node quantities, output, PIC loop
"""
