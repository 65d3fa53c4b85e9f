"""
Shared pytest fixtures for bridgecv tests.

Positions are float64 so finite differences are meaningful.
"""

from __future__ import annotations

from typing import Tuple

import pytest
import torch


class StepSwitch:
    """Hard cutoff: weight 1 below the cutoff, 0 above, zero slope everywhere."""

    def __init__(self, cutoff: float = 1.0):
        self.d_max = cutoff
        self._cutoff2 = cutoff * cutoff

    def calculate_sqr(self, distance2):
        distance2 = torch.as_tensor(distance2)
        weight = (distance2 < self._cutoff2).to(distance2.dtype)
        return weight, torch.zeros_like(weight)


@pytest.fixture
def step_switch() -> StepSwitch:
    return StepSwitch(1.0)


@pytest.fixture
def random_system() -> Tuple[torch.Tensor, int, int, int]:
    """3 A atoms, 2 B atoms and 6 bridging atoms packed in a 2.5 box."""
    generator = torch.Generator().manual_seed(1234)
    n_a, n_b, n_bridge = 3, 2, 6
    positions = torch.rand(n_a + n_b + n_bridge, 3, generator=generator, dtype=torch.float64) * 2.5
    return positions, n_a, n_b, n_bridge


@pytest.fixture
def xyz_trajectory(tmp_path):
    """Four frames: A at origin, B at x=1.0, two bridging atoms (one near, one far)."""
    path = tmp_path / "traj.xyz"
    lines = []
    for frame in range(4):
        shift = 0.01 * frame
        lines.extend(
            [
                "4",
                'Lattice="5.0 0.0 0.0 0.0 5.0 0.0 0.0 0.0 5.0" frame=%d' % frame,
                "O 0.0 0.0 0.0",
                "O 1.0 0.0 0.0",
                f"H {0.5 + shift} 0.2 0.0",
                "H 2.5 2.5 2.5",
            ]
        )
    path.write_text("\n".join(lines) + "\n")
    return path
