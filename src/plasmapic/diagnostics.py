"""
Diagnostics for PIC-DSMC Simulations

Implements:
- Steady-state detection on aggregate particle count, momentum and energy
- Time-series statistics file (CSV), flushed periodically
- Console progress line
- Time-series plots of the statistics file

The statistics file has one header line and one row per written iteration:
    iter,time,wtime,n_sim.S,n_real.S,Ix.S,Iy.S,Iz.S,E_kin.S,...,E_pot,E_tot
with the per-species block repeated for every species S.
"""

import csv
import logging
import os

import numpy as np

from .constants import STATS_FLUSH_EVERY

logger = logging.getLogger(__name__)


# ==================== STEADY STATE ====================

def relative_change(new, old):
    """|new - old| / |old|; 0 if both are zero, inf if only old is."""
    if old == 0.0:
        return 0.0 if new == 0.0 else np.inf
    return abs((new - old) / old)


class SteadyStateDetector:
    """
    Latching steady-state test.

    Each update compares total real count, momentum magnitude and kinetic
    energy with the previous update. Steady state is declared once all
    three relative changes are below tol and is never revoked.
    """

    def __init__(self, tol: float = 1e-2):
        if tol <= 0.0:
            raise ValueError(f"Steady-state tolerance must be positive, got {tol}")
        self.tol = tol
        self.is_steady = False
        self.prev_n_tot = 0.0
        self.prev_I_tot = 0.0
        self.prev_E_tot = 0.0

    def update(self, n_tot: float, I_tot: float, E_tot: float) -> bool:
        if self.is_steady:
            return True

        if (relative_change(n_tot, self.prev_n_tot) < self.tol
                and relative_change(I_tot, self.prev_I_tot) < self.tol
                and relative_change(E_tot, self.prev_E_tot) < self.tol):
            self.is_steady = True

        self.prev_n_tot = n_tot
        self.prev_I_tot = I_tot
        self.prev_E_tot = E_tot
        return self.is_steady

    def check(self, species) -> bool:
        """Aggregate the species and update."""
        n_tot = sum(sp.get_real_count() for sp in species)
        I_tot = sum(float(np.linalg.norm(sp.get_momentum())) for sp in species)
        E_tot = sum(sp.get_kinetic_energy() for sp in species)
        return self.update(n_tot, I_tot, E_tot)

    def __repr__(self):
        return f"SteadyStateDetector(tol={self.tol}, is_steady={self.is_steady})"


# ==================== STATISTICS FILE ====================

def statistics_header(species):
    header = ['iter', 'time', 'wtime']
    for sp in species:
        header += [f'n_sim.{sp.name}', f'n_real.{sp.name}',
                   f'Ix.{sp.name}', f'Iy.{sp.name}', f'Iz.{sp.name}',
                   f'E_kin.{sp.name}']
    header += ['E_pot', 'E_tot']
    return header


class StatisticsWriter:
    """
    Append-only CSV time series, opened on the first write.

    Example:
        >>> stats = StatisticsWriter("out/box")
        >>> stats.write(domain, species)   # out/box_statistics.csv
        >>> stats.close()
    """

    def __init__(self, prefix: str, flush_every: int = STATS_FLUSH_EVERY):
        self.filename = f"{prefix}_statistics.csv"
        self.flush_every = flush_every
        self._file = None
        self._writer = None

    def _open(self, species):
        directory = os.path.dirname(self.filename)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._file = open(self.filename, 'w', newline='')
        self._writer = csv.writer(self._file)
        self._writer.writerow(statistics_header(species))

    def write(self, domain, species):
        if self._file is None:
            self._open(species)

        row = [domain.iter, domain.time, domain.get_wtime()]
        E_tot = 0.0
        for sp in species:
            I = sp.get_momentum()
            E_kin = sp.get_kinetic_energy()
            E_tot += E_kin
            row += [sp.get_sim_count(), sp.get_real_count(), I[0], I[1], I[2], E_kin]

        E_pot = domain.get_potential_energy()
        row += [E_pot, E_tot + E_pot]
        self._writer.writerow(row)

        if domain.iter % self.flush_every == 0:
            self._file.flush()

    def close(self):
        if self._file is not None:
            self._file.close()
            self._file = None
            self._writer = None


def read_statistics(filename):
    """
    Load a statistics file.

    Returns:
        dict mapping column name to a float array
    """
    with open(filename, newline='') as f:
        reader = csv.reader(f)
        header = next(reader)
        rows = [[float(value) for value in row] for row in reader if row]

    data = np.array(rows).reshape(-1, len(header))
    return {name: data[:, i] for i, name in enumerate(header)}


# ==================== CONSOLE / PLOTS ====================

def print_info(iteration, species):
    """Print the iteration and the simulated particle count of every species."""
    line = f"iter: {iteration:8d}"
    for sp in species:
        line += f"\t{sp.name}: {sp.get_sim_count():8d}"
    print(line)


def plot_statistics(filename, show=True, save_filename=None):
    """
    Plot particle counts and energies from a statistics file.

    Args:
        filename: Statistics CSV
        show: Display plots interactively
        save_filename: Save figure to file (optional)
    """
    import matplotlib.pyplot as plt

    data = read_statistics(filename)
    names = [key.split('.', 1)[1] for key in data if key.startswith('n_sim.')]
    time_us = data['time'] * 1e6

    fig, axes = plt.subplots(1, 2, figsize=(14, 5))

    ax = axes[0]
    for name in names:
        ax.plot(time_us, data[f'n_sim.{name}'], linewidth=2, label=name)
    ax.set_xlabel('Time (μs)', fontsize=12)
    ax.set_ylabel('Macroparticles', fontsize=12)
    ax.set_title('Particle Population', fontsize=14, fontweight='bold')
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    ax = axes[1]
    for name in names:
        ax.plot(time_us, data[f'E_kin.{name}'], linewidth=2, label=f'E_kin {name}')
    ax.plot(time_us, data['E_pot'], 'k--', linewidth=2, label='E_pot')
    ax.plot(time_us, data['E_tot'], 'k-', linewidth=2, label='E_tot')
    ax.set_xlabel('Time (μs)', fontsize=12)
    ax.set_ylabel('Energy (J)', fontsize=12)
    ax.set_title('Energy', fontsize=14, fontweight='bold')
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if save_filename:
        plt.savefig(save_filename, dpi=150, bbox_inches='tight')
        print(f"Plot saved to {save_filename}")

    if show:
        plt.show()

    return fig
