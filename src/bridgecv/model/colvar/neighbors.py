"""
Neighbor list for the bridge CV.

Keeps a reduced set of bridging atoms that sit within a cutoff of at least
one atom of group A and at least one atom of group B. The set is rebuilt
every `stride` steps and reused in between.
"""

from typing import List, Optional, Sequence

import torch

from bridgecv.model.colvar.pbc import PeriodicBox


class BridgeNeighborList:
    """
    Stride-based reduced list of bridging atoms.

    The combined atom list is A, then B, then bridging atoms. Only the
    bridging part is ever reduced; the A and B prefix is always requested.

    The reduced list is a conservative superset of the contributing bridging
    atoms only if the cutoff is at least as large as the support of both
    switching functions. That is left to the caller.

    Attributes:
        cutoff: Neighbor distance cutoff
        stride: Rebuild the list every `stride` steps
        n_rebuilds: Number of fresh (full list) steps so far
        n_reused: Number of steps that reused the cached list
    """

    def __init__(
        self,
        n_a: int,
        n_b: int,
        bridging: Sequence[int],
        cutoff: Optional[float],
        stride: Optional[int],
    ):
        if cutoff is None or cutoff <= 0.0:
            raise ValueError("NL_CUTOFF should be explicitly specified and positive")
        if stride is None or stride <= 0:
            raise ValueError("NL_STRIDE should be explicitly specified and positive")

        self.n_a = n_a
        self.n_b = n_b
        self.cutoff = float(cutoff)
        self.stride = int(stride)

        self._bridging = list(bridging)
        self._reduced = list(bridging)
        self._first_time = True
        self._fresh = True

        self.n_rebuilds = 0
        self.n_reused = 0

    @property
    def fresh(self) -> bool:
        """True if the current step requested the full list and must rebuild."""
        return self._fresh

    def prepare(self, step: int, exchange_step: bool = False) -> bool:
        """
        Decide whether this step uses the full or the cached reduced list.

        Args:
            step: Current step index
            exchange_step: True if a replica exchange happens at this step

        Returns:
            True if the full list is requested (the list gets rebuilt)

        Raises:
            RuntimeError: If a reused step coincides with an exchange step
        """
        if self._first_time or step % self.stride == 0:
            self._fresh = True
            self._first_time = False
            self.n_rebuilds += 1
        else:
            self._fresh = False
            self.n_reused += 1
            if exchange_step:
                raise RuntimeError(
                    "Neighbor lists should be updated on exchange steps - "
                    "choose a nl_stride which divides the exchange stride!"
                )
        # Configurations may have been swapped, locality no longer holds
        if exchange_step:
            self._first_time = True
        return self._fresh

    def active_bridging(self) -> List[int]:
        """Bridging atoms requested for the current step."""
        return list(self._bridging) if self._fresh else list(self._reduced)

    def update(self, positions: torch.Tensor, box: Optional[PeriodicBox] = None) -> List[int]:
        """
        Rebuild the reduced bridging list from full-list positions.

        Args:
            positions: [n_a + n_b + n_bridging, 3] positions of the full list
            box: Periodic box (None = no periodicity)

        Returns:
            The new reduced list of bridging atoms
        """
        if not self._fresh:
            raise RuntimeError("Neighbor list can only be rebuilt on a step that requested the full list")
        box = box if box is not None else PeriodicBox(None)

        b_start = self.n_a + self.n_b
        pos_a = positions[: self.n_a]
        pos_b = positions[self.n_a : b_start]
        pos_bridge = positions[b_start:]
        limit = self.cutoff * self.cutoff

        d_a = box.displacement(pos_bridge.unsqueeze(1), pos_a.unsqueeze(0))  # [n_br, n_a, 3]
        d_b = box.displacement(pos_bridge.unsqueeze(1), pos_b.unsqueeze(0))  # [n_br, n_b, 3]
        close_a = ((d_a * d_a).sum(dim=-1) <= limit).any(dim=-1)
        close_b = ((d_b * d_b).sum(dim=-1) <= limit).any(dim=-1)
        keep = (close_a & close_b).tolist()

        self._reduced = [atom for atom, k in zip(self._bridging, keep) if k]
        return list(self._reduced)
