#!/usr/bin/env python
"""
Quick start example - nonbonded energies of a small ionic crystal.

Builds a rock salt lattice with Lennard-Jones parameters, evaluates it with
every nonbonded method, then shows parameter updates, global-parameter
offsets and the threaded backend.

Usage:
    python examples/quickstart.py
"""

import numpy as np

from nbcore import Box, NonbondedForce, NonbondedForceKernel, NonbondedMethod
from nbcore.forcefields.nonbonded import COULOMB_CONSTANT

MADELUNG_NACL = 1.747565
SPACING = 0.5


def rock_salt_force(method, n_per_side=4):
    """Return a force definition, positions and box for a rock salt crystal."""
    grid = np.stack(np.meshgrid(*[np.arange(n_per_side)] * 3, indexing="ij"), axis=-1).reshape(-1, 3)
    force = NonbondedForce(nonbonded_method=method, cutoff=0.9, ewald_error_tolerance=1e-5)
    for index in grid.sum(axis=1):
        if index % 2 == 0:
            force.add_particle(1.0, 0.33, 0.0116)
        else:
            force.add_particle(-1.0, 0.44, 0.4184)
    return force, grid * SPACING, Box.cubic(n_per_side * SPACING)


def main():
    print("=" * 60)
    print("nbcore Quick Start")
    print("=" * 60)

    # 1. Every method on the same crystal
    print("\n1. Energy per ion pair by method (kJ/mol):")
    print("-" * 40)
    for method in NonbondedMethod:
        force, positions, box = rock_salt_force(method)
        with NonbondedForceKernel() as kernel:
            kernel.initialize(force, box)
            result = kernel.evaluate(positions)
        per_pair = 2 * result.energy / force.num_particles
        print(f"   {method.value:<18} {per_pair:12.3f}   max |F| {np.abs(result.forces).max():.2e}")

    madelung = -2 * COULOMB_CONSTANT * MADELUNG_NACL / SPACING
    print(f"   {'Madelung (Coulomb)':<18} {madelung:12.3f}")

    # 2. Reciprocal-space parameters chosen for PME
    print("\n2. Automatic PME parameters:")
    print("-" * 40)
    force, positions, box = rock_salt_force(NonbondedMethod.LJPME)
    with NonbondedForceKernel() as kernel:
        kernel.initialize(force, box)
        alpha, nx, ny, nz = kernel.get_pme_parameters()
        beta, dx, dy, dz = kernel.get_ljpme_parameters()
    print(f"   Electrostatics: alpha = {alpha:.4f} /nm, grid {nx} x {ny} x {nz}")
    print(f"   Dispersion:     beta  = {beta:.4f} /nm, grid {dx} x {dy} x {dz}")

    # 3. Update parameters in place
    print("\n3. Halving all charges with update_parameters:")
    print("-" * 40)
    force, positions, box = rock_salt_force(NonbondedMethod.PME)
    with NonbondedForceKernel() as kernel:
        kernel.initialize(force, box)
        before = kernel.evaluate(positions).energy
        for i, particle in enumerate(force.particles):
            force.set_particle_parameters(i, 0.5 * particle.charge, particle.sigma, particle.epsilon)
        kernel.update_parameters(force)
        after = kernel.evaluate(positions).energy
    print(f"   Before: {before:12.3f}   After: {after:12.3f}")

    # 4. Global parameter scaling the charge of one ion
    print("\n4. Removing one ion's charge with a global parameter:")
    print("-" * 40)
    force, positions, box = rock_salt_force(NonbondedMethod.PME)
    force.add_global_parameter("lambda", 0.0)
    force.add_particle_parameter_offset("lambda", 0, -1.0, 0.0, 0.0)
    with NonbondedForceKernel() as kernel:
        kernel.initialize(force, box)
        for value in (0.0, 0.5, 1.0):
            energy = kernel.evaluate(positions, global_parameters={"lambda": value}).energy
            print(f"   lambda = {value:.1f}: {energy:12.3f}")

    # 5. Threaded backend gives the same answer
    print("\n5. Serial versus threaded evaluation:")
    print("-" * 40)
    force, positions, box = rock_salt_force(NonbondedMethod.LJPME)
    energies = {}
    for backend in ("serial", "threads"):
        with NonbondedForceKernel(backend=backend) as kernel:
            kernel.initialize(force, box)
            energies[backend] = kernel.evaluate(positions).energy
    print(f"   serial: {energies['serial']:.6f}   threads: {energies['threads']:.6f}")

    print("\n" + "=" * 60)
    print("All examples completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    main()
