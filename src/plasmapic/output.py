"""
Simulation Output (VTK and CSV)

- save_fields: node and cell arrays as VTK ImageData (.vti)
- save_particles: subsampled particles as VTK PolyData (.vtp), one file
  per species
- save_velocity_histogram: speed histogram per species (.csv)

VTK files are built as PyVista datasets and written with their XML
writers, so they open directly in ParaView. File names follow
{prefix}_{iter:06d}.vti and {prefix}_{species}_{iter:06d}.{ext}.
"""

import csv
import os

import numpy as np
import pyvista as pv


def _prepare(filename):
    directory = os.path.dirname(filename)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return filename


def save_fields(domain, species):
    """
    Write node and cell fields of the current iteration.

    Point data: V_node, rho, phi, E, n.fluid_e-, ln_Lambda, T_tot and per
    species n.S, n_mean.S, v_stream.S, T.S. Cell data: mp_count.S.
    The simulation time is stored as field data "TimeValue".

    Returns:
        Path of the written file
    """
    d = domain
    filename = _prepare(f"{d.prefix}_{d.iter:06d}.vti")

    # VTK point order is x fastest, the same as the node index
    grid = pv.ImageData(dimensions=(d.ni, d.nj, d.nk),
                        spacing=tuple(d.del_x), origin=tuple(d.x_min))

    grid.point_data["V_node"] = d.V_node
    grid.point_data["rho"] = d.rho
    grid.point_data["phi"] = d.phi
    grid.point_data["E"] = d.E
    grid.point_data["n.fluid_e-"] = d.n_e
    grid.point_data["ln_Lambda"] = d.ln_Lambda
    grid.point_data["T_tot"] = d.T_tot
    for sp in species:
        grid.point_data[f"n.{sp.name}"] = sp.n
        grid.point_data[f"n_mean.{sp.name}"] = sp.n_mean
        grid.point_data[f"v_stream.{sp.name}"] = sp.v_stream
        grid.point_data[f"T.{sp.name}"] = sp.T
        grid.cell_data[f"mp_count.{sp.name}"] = sp.mp_count
    grid.field_data["TimeValue"] = [d.time]

    grid.save(filename)
    return filename


def subsample_indices(n_alive, n_target):
    """
    Pick about n_target of n_alive indices by fractional accumulation.

    Every particle adds n_target / n_alive to a counter; a particle is kept
    each time the counter passes one.
    """
    if n_alive <= n_target:
        return np.arange(n_alive)
    ratio = n_target / n_alive
    counter = np.floor(np.arange(1, n_alive + 1) * ratio)
    keep = np.diff(np.concatenate([[0.0], counter])) >= 1.0
    return np.flatnonzero(keep)


def save_particles(domain, species, n_particles):
    """
    Write up to n_particles particles of every species as VTK PolyData.

    Returns:
        List of written file paths
    """
    filenames = []
    for sp in species:
        alive = sp.alive()
        idx = alive[subsample_indices(len(alive), n_particles)]
        filename = _prepare(f"{domain.prefix}_{sp.name}_{domain.iter:06d}.vtp")

        if len(idx) > 0:
            cloud = pv.PolyData(sp.x[idx])
            cloud.point_data["vel"] = sp.v[idx]
        else:
            cloud = pv.PolyData()
        cloud.field_data["TimeValue"] = [domain.time]
        cloud.save(filename)

        filenames.append(filename)
    return filenames


def save_velocity_histogram(domain, species, n_bins=100):
    """
    Write the weighted speed histogram of every species.

    Columns: bin centre [m/s], normalized probability density [s/m].

    Returns:
        List of written file paths
    """
    filenames = []
    for sp in species:
        alive = sp.alive()
        speed = np.linalg.norm(sp.v[alive], axis=1)
        filename = _prepare(f"{domain.prefix}_{sp.name}_{domain.iter:06d}.csv")

        with open(filename, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(['speed', 'f'])
            if len(speed) > 0 and np.max(speed) > 0.0:
                hist, edges = np.histogram(speed, bins=n_bins, weights=sp.w[alive],
                                           density=True)
                centres = 0.5 * (edges[:-1] + edges[1:])
                writer.writerows(zip(centres, hist))

        filenames.append(filename)
    return filenames
