"""
Tests for the simulation Domain

Validates:
- Time stepping and configuration checks
- Boundary condition lists (patches, ordering, periodic pairing)
- Charge density, field energy, temperature and Coulomb logarithm
- Steady-state hook, formulation check and file output
- A short end-to-end PIC loop
"""

import csv
import logging

import pytest
import numpy as np
import pyvista as pv
from plasmapic.constants import COULOMB_LOG_MIN, PI, debye_length, e, eps0, kB, plasma_frequency
from plasmapic.domain import Domain
from plasmapic.output import subsample_indices
from plasmapic.particles import Species
from plasmapic.pic.boundaries import BoundaryCondition, BoundarySide, FieldBCType, ParticleBCType
from plasmapic.pic.field_solver import PoissonSolver


def dirichlet_box(prefix="test", nodes=(5, 5, 5), dt=1e-9, iter_max=10):
    domain = Domain(prefix, *nodes)
    domain.set_dimensions([0, 0, 0], [0.01, 0.01, 0.01])
    domain.set_time_step(dt)
    domain.set_iter_max(iter_max)
    for side in BoundarySide:
        domain.set_bc_at(side, BoundaryCondition(ParticleBCType.SYMMETRIC, FieldBCType.DIRICHLET))
    return domain


class TestTimeStepping:
    """Test the iteration counter."""

    def test_advance_runs_through_iter_max(self):
        """advance_time is True for iterations 0..iter_max inclusive."""
        domain = dirichlet_box(iter_max=2)
        flags = [domain.advance_time() for _ in range(4)]
        assert flags == [True, True, True, False]
        assert domain.time == pytest.approx(4e-9)

    def test_last_iter(self):
        domain = dirichlet_box(iter_max=1)
        domain.advance_time()
        assert not domain.is_last_iter()
        domain.advance_time()
        assert domain.is_last_iter()

    def test_invalid_settings(self):
        domain = Domain("test", 3, 3, 3)
        with pytest.raises(ValueError):
            domain.set_time_step(0.0)
        with pytest.raises(ValueError):
            domain.set_iter_max(-1)

    def test_missing_time_step(self):
        domain = Domain("test", 3, 3, 3)
        domain.set_dimensions([0, 0, 0], [1, 1, 1])
        for side in BoundarySide:
            domain.set_bc_at(side, BoundaryCondition(ParticleBCType.OPEN, FieldBCType.NEUMANN))
        with pytest.raises(ValueError):
            domain.advance_time()

    def test_missing_dimensions(self):
        domain = Domain("test", 3, 3, 3)
        domain.set_time_step(1e-9)
        with pytest.raises(RuntimeError):
            domain.advance_time()

    def test_wtime(self):
        assert dirichlet_box().get_wtime() >= 0.0


class TestBoundaryLists:
    """Test per-face boundary condition lists."""

    def test_patch_selection_and_reverse(self):
        """The first applying condition wins; reversing swaps the priority."""
        domain = dirichlet_box()
        lower = BoundaryCondition(ParticleBCType.OPEN, FieldBCType.DIRICHLET, 1.0,
                                  applies=lambda x, y, z: y < 0.005)
        rest = BoundaryCondition(ParticleBCType.SYMMETRIC, FieldBCType.NEUMANN)
        domain.set_bc_at(BoundarySide.XMIN, lower, rest)

        assert domain.get_bc(BoundarySide.XMIN, 0.0, 0.002, 0.0) is lower
        assert domain.get_bc(BoundarySide.XMIN, 0.0, 0.008, 0.0) is rest

        domain.reverse_boundary_conditions()
        assert domain.get_bc(BoundarySide.XMIN, 0.0, 0.002, 0.0) is rest

    def test_add_bc_at(self):
        domain = dirichlet_box()
        extra = BoundaryCondition(ParticleBCType.OPEN, FieldBCType.NEUMANN)
        domain.add_bc_at(BoundarySide.ZMAX, extra)
        assert domain.bc[BoundarySide.ZMAX][-1] is extra
        assert len(domain.bc[BoundarySide.ZMAX]) == 2

    def test_set_bc_needs_a_condition(self):
        with pytest.raises(ValueError):
            dirichlet_box().set_bc_at(BoundarySide.XMIN)

    def test_missing_face(self):
        domain = Domain("test", 3, 3, 3)
        domain.set_dimensions([0, 0, 0], [1, 1, 1])
        domain.set_bc_at(BoundarySide.XMIN, BoundaryCondition(ParticleBCType.OPEN,
                                                              FieldBCType.NEUMANN))
        with pytest.raises(ValueError, match="XMAX"):
            domain.check_boundaries()

    def test_periodic_pair_mismatch(self):
        """A periodic face needs a periodic opposite face."""
        domain = dirichlet_box()
        domain.set_bc_at(BoundarySide.YMIN, BoundaryCondition(ParticleBCType.PERIODIC,
                                                              FieldBCType.PERIODIC))
        with pytest.raises(ValueError):
            domain.check_boundaries()

        domain.set_bc_at(BoundarySide.YMAX, BoundaryCondition(ParticleBCType.PERIODIC,
                                                              FieldBCType.PERIODIC))
        domain.check_boundaries()
        assert domain.is_periodic(BoundarySide.YMIN)
        assert not domain.is_periodic(BoundarySide.XMIN)


class TestFieldQuantities:
    """Test node quantities computed by the domain."""

    def make_species(self, domain):
        ions = Species.from_database('Xe+', 1.0, domain, max_particles=1)
        electrons = Species.from_database('e-', 1.0, domain, max_particles=1)
        neutrals = Species.from_database('Xe', 1.0, domain, max_particles=1)
        return ions, electrons, neutrals

    def test_charge_density(self):
        domain = dirichlet_box()
        ions, electrons, neutrals = self.make_species(domain)
        ions.n[:] = 3e14
        electrons.n[:] = 1e14
        neutrals.n[:] = 1e20

        domain.calc_charge_density([ions, electrons, neutrals])

        np.testing.assert_allclose(domain.rho, e * 2e14)

    def test_fold_periodic(self):
        """Seam copies are summed on periodic axes only; edges fold once per axis."""
        domain = dirichlet_box(nodes=(3, 3, 3))
        for side in (BoundarySide.XMIN, BoundarySide.XMAX, BoundarySide.YMIN, BoundarySide.YMAX):
            domain.set_bc_at(side, BoundaryCondition(ParticleBCType.PERIODIC,
                                                     FieldBCType.PERIODIC))
        f = np.ones(domain.n_nodes)

        domain.fold_periodic(f)

        g = f.reshape(domain.nk, domain.nj, domain.ni)
        assert g[1, 1, 1] == 1.0
        assert g[1, 1, 0] == g[1, 1, 2] == 2.0
        assert g[1, 0, 1] == g[1, 2, 1] == 2.0
        assert g[0, 0, 0] == g[2, 2, 2] == 4.0

        V = domain.periodic_node_volume().reshape(domain.nk, domain.nj, domain.ni)
        np.testing.assert_allclose(V[1, 0, 0], domain.cell_volume)
        np.testing.assert_allclose(V[0, 0, 0], 0.5 * domain.cell_volume)

    def test_fold_periodic_vector(self):
        domain = dirichlet_box(nodes=(3, 2, 2))
        for side in (BoundarySide.XMIN, BoundarySide.XMAX):
            domain.set_bc_at(side, BoundaryCondition(ParticleBCType.PERIODIC,
                                                     FieldBCType.PERIODIC))
        f = np.zeros((domain.n_nodes, 3))
        f[domain.at(2, 1, 1)] = [1.0, 2.0, 3.0]

        domain.fold_periodic(f)

        np.testing.assert_array_equal(f[domain.at(0, 1, 1)], [1.0, 2.0, 3.0])
        np.testing.assert_array_equal(f[domain.at(2, 1, 1)], [1.0, 2.0, 3.0])
        assert np.count_nonzero(f) == 6

    def test_potential_energy(self):
        """A uniform field stores 0.5 eps0 E^2 per unit volume."""
        domain = dirichlet_box()
        domain.E[:] = [0.0, 300.0, 400.0]
        expected = 0.5 * eps0 * 500.0**2 * 0.01**3
        assert domain.get_potential_energy() == pytest.approx(expected)

    def test_total_temperature(self):
        """Density-weighted temperature; zero where no species is present."""
        domain = dirichlet_box()
        ions, electrons, _ = self.make_species(domain)
        ions.n[:] = 1.0
        ions.T[:] = 1000.0
        electrons.n[:] = 3.0
        electrons.T[:] = 5000.0
        ions.n[0] = electrons.n[0] = 0.0

        domain.calc_total_temperature([ions, electrons])

        assert domain.T_tot[0] == 0.0
        np.testing.assert_allclose(domain.T_tot[1:], 4000.0)

    def test_coulomb_log(self):
        domain = dirichlet_box()
        T_e, n_e = 11604.5, 1e14
        domain.calc_coulomb_log(T_e, n_e)
        expected = np.log(12 * PI * n_e * debye_length(n_e, T_e) ** 3)
        np.testing.assert_allclose(domain.ln_Lambda, expected)
        assert expected > COULOMB_LOG_MIN

    def test_coulomb_log_floor(self):
        """Cold or empty nodes use the minimum Coulomb logarithm."""
        domain = dirichlet_box()
        domain.calc_coulomb_log(0.0, 1e14)
        np.testing.assert_array_equal(domain.ln_Lambda, COULOMB_LOG_MIN)

        domain.calc_coulomb_log(1e-3, 1e20)
        np.testing.assert_array_equal(domain.ln_Lambda, COULOMB_LOG_MIN)

    def test_formulation_resolved(self, caplog):
        domain = dirichlet_box(nodes=(21, 21, 21), dt=1e-13)
        with caplog.at_level(logging.INFO, logger="plasmapic"):
            info = domain.check_formulation(1e14, 11604.5)
        assert info["is_resolved"]
        assert info["omega_pe_dt"] < 0.2
        assert "WARNING" not in [r.levelname for r in caplog.records]

    def test_formulation_unresolved(self, caplog):
        """A coarse mesh and long time step produce warnings."""
        domain = dirichlet_box(nodes=(5, 5, 5), dt=1e-9)
        with caplog.at_level(logging.WARNING, logger="plasmapic"):
            info = domain.check_formulation(1e14, 11604.5)
        assert not info["is_resolved"]
        assert "Debye length" in caplog.text
        assert "plasma oscillations" in caplog.text


class TestPlasmaScales:
    """Test the plasma scale helpers in constants."""

    def test_one_electronvolt_in_kelvin(self):
        """Temperatures are in kelvin; 11604.5 K is 1 eV."""
        assert kB * 11604.5 / e == pytest.approx(1.0, rel=1e-5)

    def test_debye_length(self):
        assert debye_length(1e14, 11604.5) == pytest.approx(7.434e-4, rel=1e-3)

    def test_plasma_frequency(self):
        assert plasma_frequency(1e14) == pytest.approx(5.641e8, rel=1e-3)


class TestSteadyStateHook:
    """Test Domain.steady_state."""

    def test_check_every(self):
        """Aggregates are compared only every check_every iterations and the result latches."""
        domain = dirichlet_box(iter_max=100)
        sp = Species.from_database('Xe', 1.0, domain, max_particles=1)
        sp.add_particles([0.005, 0.005, 0.005], [10.0, 0.0, 0.0])

        results = []
        for _ in range(11):
            domain.advance_time()
            results.append(domain.steady_state([sp], check_every=5))

        # iteration 0 compares against zeros, iteration 5 finds no change
        assert results[:5] == [False] * 5
        assert results[5]
        assert all(results[5:])
        assert domain.steady_state()

    def test_report_before_any_check(self):
        assert not dirichlet_box().steady_state()

    def test_tolerance_of_later_call_is_used(self):
        """A status query first does not pin the default tolerance."""
        domain = dirichlet_box(iter_max=100)
        sp = Species.from_database('Xe', 1.0, domain, max_particles=1)
        sp.add_particles([0.005, 0.005, 0.005], [1000.0, 0.0, 0.0])
        assert not domain.steady_state()

        domain.advance_time()
        assert not domain.steady_state([sp], tol=1e-6)
        # 0.2% change in momentum: steady at 1e-2, not at 1e-6
        sp.v[0, 0] = 1002.0
        domain.advance_time()
        assert not domain.steady_state([sp], tol=1e-6)

        domain.advance_time()
        assert domain.steady_state([sp], tol=1e-6)

    def test_invalid_check_every(self):
        domain = dirichlet_box()
        sp = Species.from_database('Xe', 1.0, domain, max_particles=1)
        domain.advance_time()
        with pytest.raises(ValueError):
            domain.steady_state([sp], check_every=0)
        with pytest.raises(ValueError):
            domain.steady_state([sp], tol=0.0)

    def test_averaging_flag(self):
        domain = dirichlet_box()
        assert not domain.averaging_time()
        domain.start_averaging_time()
        assert domain.averaging_time()


class TestOutput:
    """Test field, particle and histogram files."""

    def make_case(self, tmp_path):
        domain = dirichlet_box(prefix=str(tmp_path / "results" / "case"))
        sp = Species.from_database('Xe+', 1.0, domain, max_particles=10)
        sp.add_particles([[0.002, 0.003, 0.004], [0.006, 0.007, 0.008]],
                         [[100.0, 0, 0], [0, 300.0, 0]])
        domain.advance_time()
        return domain, sp

    def test_save_fields(self, tmp_path):
        domain, sp = self.make_case(tmp_path)
        sp.calc_number_density()
        sp.calc_macroparticle_count()

        filename = domain.save_fields([sp])

        assert filename.endswith("case_000000.vti")
        grid = pv.read(filename)
        assert tuple(grid.dimensions) == (5, 5, 5)
        np.testing.assert_allclose(grid.spacing, domain.del_x)
        for name in ("V_node", "rho", "phi", "E", "n.fluid_e-", "ln_Lambda", "T_tot",
                     "n.Xe+", "n_mean.Xe+", "v_stream.Xe+", "T.Xe+"):
            assert name in grid.point_data
        np.testing.assert_allclose(grid.point_data["n.Xe+"], sp.n)
        np.testing.assert_allclose(grid.point_data["V_node"], domain.V_node)
        assert grid.point_data["v_stream.Xe+"].shape == (domain.n_nodes, 3)
        np.testing.assert_array_equal(grid.cell_data["mp_count.Xe+"], sp.mp_count)
        assert grid.field_data["TimeValue"][0] == pytest.approx(domain.time)

    def test_save_fields_node_order(self, tmp_path):
        """VTK point i + j ni + k ni nj is node (i, j, k)."""
        domain, sp = self.make_case(tmp_path)
        domain.phi[:] = [domain.node_position(*domain.ijk(n))[1] for n in range(domain.n_nodes)]

        grid = pv.read(domain.save_fields([sp]))

        np.testing.assert_allclose(grid.points[:, 1], domain.phi, atol=1e-12)
        np.testing.assert_allclose(grid.point_data["phi"], domain.phi)

    def test_save_particles(self, tmp_path):
        domain, sp = self.make_case(tmp_path)
        filenames = domain.save_particles([sp], 1)

        assert len(filenames) == 1
        assert filenames[0].endswith("case_Xe+_000000.vtp")
        cloud = pv.read(filenames[0])
        assert cloud.n_points == 1
        assert cloud.point_data["vel"].shape == (1, 3)

    def test_save_particles_all(self, tmp_path):
        """With room for every particle, positions and velocities are written as stored."""
        domain, sp = self.make_case(tmp_path)
        cloud = pv.read(domain.save_particles([sp], 10)[0])

        np.testing.assert_allclose(cloud.points, sp.x[:2])
        np.testing.assert_allclose(cloud.point_data["vel"], sp.v[:2])

    def test_subsample_indices(self):
        np.testing.assert_array_equal(subsample_indices(2, 5), [0, 1])
        idx = subsample_indices(10, 3)
        assert len(idx) == 3
        assert len(subsample_indices(1000, 100)) == 100

    def test_velocity_histogram(self, tmp_path):
        domain, sp = self.make_case(tmp_path)
        filenames = domain.save_velocity_histogram([sp], n_bins=4)

        with open(filenames[0], newline='') as f:
            rows = list(csv.reader(f))
        assert rows[0] == ['speed', 'f']
        assert len(rows) == 5
        speeds = np.array([float(r[0]) for r in rows[1:]])
        assert np.all((speeds > 100.0) & (speeds < 300.0))


class TestLoop:
    """Run a few iterations of the full electrostatic cycle."""

    def test_box_loop(self, tmp_path):
        """Particles stay in a symmetric box and the output files appear."""
        rng = np.random.default_rng(0)
        domain = dirichlet_box(prefix=str(tmp_path / "box"), dt=1e-10, iter_max=3)
        ions = Species.from_database('Xe+', 1e3, domain, max_particles=5000)
        electrons = Species.from_database('e-', 1e3, domain, max_particles=5000)
        ions.add_cold_box([0.002, 0.002, 0.002], [0.008, 0.008, 0.008], 1e12, [0, 0, 0], rng)
        electrons.add_cold_box([0.002, 0.002, 0.002], [0.008, 0.008, 0.008], 1e12,
                               [0, 0, 0], rng)
        species = [ions, electrons]
        n0 = [sp.get_sim_count() for sp in species]
        solver = PoissonSolver(domain, iter_max=1000, tol=1e-6)

        while domain.advance_time():
            for sp in species:
                sp.calc_number_density()
            domain.calc_charge_density(species)
            assert solver.calc_potential().converged
            solver.calc_electric_field()
            for sp in species:
                sp.push_particles_leapfrog(rng)
                sp.remove_dead_particles()
            domain.write_statistics(species)
        domain.save_fields(species)
        domain.close()

        assert [sp.get_sim_count() for sp in species] == n0
        for sp in species:
            x = sp.x[:sp.n_particles]
            assert np.all((x >= domain.x_min) & (x <= domain.x_max))
        assert (tmp_path / "box_statistics.csv").exists()
        assert (tmp_path / "box_000004.vti").exists()
