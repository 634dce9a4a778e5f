"""
2D Resistivity Inversion Example

This example walks through a complete ertorch workflow:
1. Lay out a dipole-dipole line and build the inversion grid
2. Create a synthetic "true" model with a conductive block
3. Generate synthetic data with noise
4. Run the inversion on a background worker with live progress
5. Print the recovered section and the quality indicators
"""

import logging

import numpy as np
import torch

from ertorch import InversionParameters, InversionWorker
from ertorch.discretize import build_grid
from ertorch.utils import (
    create_block_in_halfspace,
    dipole_dipole_line,
    make_survey,
    simulate_data,
)

# Set default dtype
torch.set_default_dtype(torch.float64)
logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")


def print_section(title, section):
    print(f"\n{title}")
    for row in section:
        print("  " + " ".join(f"{v:7.1f}" for v in row))


print("=" * 70)
print("2D Resistivity Inversion")
print("=" * 70)

# ============================================================================
# 1. Survey and grid
# ============================================================================
print("\n[1/5] Creating survey and grid...")
electrode_spacing = 2.0
configurations = dipole_dipole_line(25, a=1, n_max=6)
survey = make_survey(configurations, electrode_spacing=electrode_spacing)
geometry = build_grid(survey)
print(f"Survey: {survey.n_data} readings on 25 electrodes")
print(
    f"Grid: {geometry.nx} x {geometry.nz} cells, "
    f"dx={geometry.dx:.2f} m, dz={geometry.dz:.2f} m"
)

# ============================================================================
# 2. True model
# ============================================================================
print("\n[2/5] Creating true model...")
center_x = geometry.x_origin + 0.5 * geometry.width
true_model = create_block_in_halfspace(
    geometry,
    block_center=[center_x, 0.5 * geometry.depth],
    block_dimensions=[3.0 * geometry.dx, 0.3 * geometry.depth],
    background_value=100.0,
    block_value=10.0,
)
print_section("True model (ohm·m):", true_model.reshape(geometry.nz, geometry.nx))

# ============================================================================
# 3. Synthetic data
# ============================================================================
print("\n[3/5] Generating synthetic data...")
noise_level = 0.03
points = simulate_data(
    configurations,
    true_model,
    geometry,
    electrode_spacing=electrode_spacing,
    noise_level=noise_level,
    seed=42,
)
values = np.array([p.value for p in points])
print(f"Apparent resistivity range: [{values.min():.1f}, {values.max():.1f}] ohm·m")
print(f"Noise: {noise_level:.0%}")

# ============================================================================
# 4. Inversion
# ============================================================================
print("\n[4/5] Running inversion...")
print("-" * 70)
parameters = InversionParameters(
    max_iterations=20,
    convergence_threshold=1e-3,
    regularization_factor=0.1,
    smoothing_factor=0.1,
    damping_factor=0.01,
    electrode_spacing=electrode_spacing,
)
worker = InversionWorker(points, parameters).start()
for update in worker.updates():
    print(
        f"  iteration {update.iteration:2d}: RMS = {update.rms:.4e}, "
        f"change = {update.convergence:.2e}"
    )
result = worker.result()
print("-" * 70)
print(f"\nStopped after {result.iterations} iterations ({result.state.value})")
print(f"Reason: {result.stop_reason}")
print(f"RMS: {result.initial_rms:.4e} -> {result.final_rms:.4e}")

# ============================================================================
# 5. Results
# ============================================================================
print("\n[5/5] Results...")
print_section("Recovered model (ohm·m):", result.model.as_section())

quality = result.quality_indicators
print(f"\nModel roughness: {quality.model_roughness:.3f}")
print(f"Depth of investigation: {quality.depth_of_investigation:.1f} m")
print(f"Runtime: {result.runtime:.2f} s")

print("\n" + "=" * 70)
print("Inversion complete!")
print("=" * 70)
