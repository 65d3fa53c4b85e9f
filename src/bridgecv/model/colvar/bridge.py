"""
Bridge collective variable.

Counts bridges between two groups of atoms A and B formed through a set of
bridging atoms:

    s = sum_i sum_j sum_k  s_A(|r_ij|) * s_B(|r_ik|)

with i over bridging atoms, j over A and k over B. Returns the value, the
derivative with respect to every requested atom and the virial.
"""

import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import torch

from bridgecv.model.colvar.neighbors import BridgeNeighborList
from bridgecv.model.colvar.pbc import BoxLike, PeriodicBox
from bridgecv.model.colvar.switching import (
    SwitchingFunction,
    describe_switch,
    parse_switching_function,
    switching_support,
)

SwitchSpec = Union[str, Mapping[str, Any], SwitchingFunction]


@dataclass
class BridgeResult:
    """
    Output of one bridge CV evaluation.

    Attributes:
        value: Scalar CV value (0-d tensor)
        derivatives: [n_active, 3] dCV/dr in the order positions were supplied
        virial: [3, 3] symmetric box derivative
        n_terms: Number of (bridging, A, B) triples that were accumulated
        atoms: Atom ids matching the rows of `derivatives`
    """

    value: torch.Tensor
    derivatives: torch.Tensor
    virial: torch.Tensor
    n_terms: int = 0
    atoms: List[int] = field(default_factory=list)

    def scatter(self, n_atoms: int) -> torch.Tensor:
        """Spread derivatives into a system-wide [n_atoms, 3] gradient."""
        gradient = torch.zeros(
            n_atoms, 3, dtype=self.derivatives.dtype, device=self.derivatives.device
        )
        if self.atoms:
            index = torch.as_tensor(self.atoms, dtype=torch.long, device=self.derivatives.device)
            gradient.index_add_(0, index, self.derivatives)
        return gradient


def bridge_accumulate(
    positions: torch.Tensor,
    n_a: int,
    n_b: int,
    switch_a: SwitchingFunction,
    switch_b: SwitchingFunction,
    box: Optional[PeriodicBox] = None,
) -> BridgeResult:
    """
    Accumulate the bridge CV over A x B x bridging triples.

    A pair whose switching function returns exactly (0, 0) is outside the
    support and is skipped: a (bridging, A) pair skips all of B, a
    (bridging, B) pair skips that single term.

    Args:
        positions: [n_a + n_b + n_bridging, 3] ordered A, then B, then bridging atoms
        n_a: Number of atoms in group A
        n_b: Number of atoms in group B
        switch_a: Switching function on bridging-A distances
        switch_b: Switching function on bridging-B distances
        box: Periodic box (None = no periodicity)

    Returns:
        BridgeResult with value, derivatives [n_atoms, 3] and virial [3, 3]
    """
    box = box if box is not None else PeriodicBox(None)
    b_start = n_a + n_b

    pos_a = positions[:n_a]
    pos_b = positions[n_a:b_start]
    pos_bridge = positions[b_start:]

    # Displacements point from the bridging atom to the group atom
    d_ij = box.displacement(pos_bridge.unsqueeze(1), pos_a.unsqueeze(0))  # [n_br, n_a, 3]
    d_ik = box.displacement(pos_bridge.unsqueeze(1), pos_b.unsqueeze(0))  # [n_br, n_b, 3]

    w1, dw1 = switch_a.calculate_sqr((d_ij * d_ij).sum(dim=-1))  # [n_br, n_a]
    w2, dw2 = switch_b.calculate_sqr((d_ik * d_ik).sum(dim=-1))  # [n_br, n_b]

    active_a = (w1 != 0) | (dw1 != 0)
    active_b = (w2 != 0) | (dw2 != 0)
    w1 = torch.where(active_a, w1, torch.zeros_like(w1))
    dw1 = torch.where(active_a, dw1, torch.zeros_like(dw1))
    w2 = torch.where(active_b, w2, torch.zeros_like(w2))
    dw2 = torch.where(active_b, dw2, torch.zeros_like(dw2))

    # Every (i, j, k) term factorises: sum over k of w2 for fixed i, sum over j of w1
    sum_w1 = w1.sum(dim=-1)  # [n_br]
    sum_w2 = w2.sum(dim=-1)  # [n_br]
    value = (sum_w1 * sum_w2).sum()

    # dw1 * d_ij weighted by the B-side sum, and vice versa
    g_a = (sum_w2.unsqueeze(-1) * dw1).unsqueeze(-1) * d_ij  # [n_br, n_a, 3]
    g_b = (sum_w1.unsqueeze(-1) * dw2).unsqueeze(-1) * d_ik  # [n_br, n_b, 3]

    deriv_a = g_a.sum(dim=0)
    deriv_b = g_b.sum(dim=0)
    deriv_bridge = -(g_a.sum(dim=1) + g_b.sum(dim=1))
    derivatives = torch.cat([deriv_a, deriv_b, deriv_bridge], dim=0)

    virial = -(
        torch.einsum("ija,ijb->ab", g_a, d_ij) + torch.einsum("ika,ikb->ab", g_b, d_ik)
    )

    n_terms = int((active_a.sum(dim=-1) * active_b.sum(dim=-1)).sum().item())

    return BridgeResult(value=value, derivatives=derivatives, virial=virial, n_terms=n_terms)


def _read_switch(spec: SwitchSpec, keyword: str) -> SwitchingFunction:
    if hasattr(spec, "calculate_sqr"):
        return spec
    try:
        return parse_switching_function(spec)
    except ValueError as e:
        raise ValueError(f"problem reading {keyword} keyword : {e}") from e


def _is_given(spec: Optional[SwitchSpec]) -> bool:
    if spec is None:
        return False
    if isinstance(spec, str):
        return len(spec.strip()) > 0
    return True


class BridgeCV:
    """
    Bridge CV between GROUPA and GROUPB through BRIDGING_ATOMS.

    The evaluation sequence per step is:

        atoms = cv.prepare(step, exchange_step)
        result = cv.calculate(coords[atoms], box)

    or simply `cv.evaluate(coords, step, box, exchange_step)`.

    With `nlist=True`, bridging atoms further than `nl_cutoff` from every
    atom of A or of B are dropped for the next `nl_stride - 1` steps. Pick a
    cutoff at least as large as both switching function supports, otherwise
    contributions are lost until the next rebuild.
    """

    periodic = False

    def __init__(
        self,
        group_a: Sequence[int],
        group_b: Sequence[int],
        bridging_atoms: Sequence[int],
        switch: Optional[SwitchSpec] = None,
        switch_a: Optional[SwitchSpec] = None,
        switch_b: Optional[SwitchSpec] = None,
        nlist: bool = False,
        nl_cutoff: Optional[float] = None,
        nl_stride: Optional[int] = None,
        debug: bool = False,
    ):
        """
        Args:
            group_a: Atom ids of the first group
            group_b: Atom ids of the second group
            bridging_atoms: Atom ids that can form the bridge
            switch: Switching function used on both sides
            switch_a: Switching function on bridging-A distances (needs switch_b)
            switch_b: Switching function on bridging-B distances (needs switch_a)
            nlist: Use a neighbor list on the bridging atoms
            nl_cutoff: Neighbor list cutoff (required and > 0 with nlist)
            nl_stride: Steps between neighbor list rebuilds (required and > 0 with nlist)
            debug: Print debug information
        """
        self.group_a = [int(a) for a in group_a]
        self.group_b = [int(b) for b in group_b]
        self.bridging_atoms = [int(i) for i in bridging_atoms]
        self.debug = debug

        for name, group in (
            ("GROUPA", self.group_a),
            ("GROUPB", self.group_b),
            ("BRIDGING_ATOMS", self.bridging_atoms),
        ):
            if not group:
                raise ValueError(f"{name} must contain at least one atom")
            if len(set(group)) != len(group):
                raise ValueError(f"{name} contains duplicate atoms")
            if min(group) < 0:
                raise ValueError(f"{name} contains negative atom indices")
        for (name1, g1), (name2, g2) in (
            (("GROUPA", self.group_a), ("GROUPB", self.group_b)),
            (("GROUPA", self.group_a), ("BRIDGING_ATOMS", self.bridging_atoms)),
            (("GROUPB", self.group_b), ("BRIDGING_ATOMS", self.bridging_atoms)),
        ):
            overlap = set(g1) & set(g2)
            if overlap:
                raise ValueError(f"{name1} and {name2} share atoms: {sorted(overlap)}")

        # Neighbor list
        self.neighbor_list: Optional[BridgeNeighborList] = None
        if nlist:
            self.neighbor_list = BridgeNeighborList(
                len(self.group_a), len(self.group_b), self.bridging_atoms, nl_cutoff, nl_stride
            )

        # Switching functions
        if _is_given(switch):
            if _is_given(switch_a) or _is_given(switch_b):
                raise ValueError("SWITCH cannot be combined with SWITCHA or SWITCHB")
            self.switch_a = _read_switch(switch, "SWITCH")
            self.switch_b = _read_switch(switch, "SWITCH")
        elif _is_given(switch_a):
            self.switch_a = _read_switch(switch_a, "SWITCHA")
            if not _is_given(switch_b):
                raise ValueError("found SWITCHA keyword without SWITCHB")
            self.switch_b = _read_switch(switch_b, "SWITCHB")
        elif _is_given(switch_b):
            raise ValueError("found SWITCHB keyword without SWITCHA")
        else:
            raise ValueError("missing definition of switching functions")

        if self.neighbor_list is not None:
            for side, sf in (("GROUPA", self.switch_a), ("GROUPB", self.switch_b)):
                support = switching_support(sf)
                if support is not None and support > self.neighbor_list.cutoff:
                    warnings.warn(
                        f"nl_cutoff ({self.neighbor_list.cutoff}) is smaller than the support "
                        f"({support}) of the {side} switching function. Bridging atoms "
                        f"between the two distances are missed until the next rebuild."
                    )

        # Combined list: A, then B, then bridging atoms
        self.full_list = self.group_a + self.group_b + self.bridging_atoms
        self.b_start = len(self.group_a) + len(self.group_b)
        self._requested = list(self.full_list)

        if self.debug:
            print(f"[DEBUG] Creating bridge CV:")
            print(f"  GROUPA: {len(self.group_a)} atoms")
            print(f"  GROUPB: {len(self.group_b)} atoms")
            print(f"  BRIDGING_ATOMS: {len(self.bridging_atoms)} atoms")
            for line in self.description():
                print(f"  {line}")

    def description(self) -> List[str]:
        """Human readable summary of the switching functions and neighbor list."""
        lines = [
            "distance between bridging atoms and atoms in GROUPA must be less than "
            + describe_switch(self.switch_a),
            "distance between bridging atoms and atoms in GROUPB must be less than "
            + describe_switch(self.switch_b),
        ]
        if self.neighbor_list is not None:
            lines.append(
                f"using neighbor list with cutoff {self.neighbor_list.cutoff} "
                f"updated every {self.neighbor_list.stride} steps"
            )
        return lines

    @property
    def n_atoms(self) -> int:
        """Length of the full combined atom list."""
        return len(self.full_list)

    @property
    def requested_atoms(self) -> List[int]:
        """Atom ids requested for the current step, in evaluation order."""
        return list(self._requested)

    def prepare(self, step: int, exchange_step: bool = False) -> List[int]:
        """
        Decide which atoms are needed at this step.

        Args:
            step: Current step index
            exchange_step: True if a replica exchange happens at this step

        Returns:
            Atom ids (A, B, then active bridging atoms) whose positions
            must be passed to calculate()
        """
        if self.neighbor_list is None:
            self._requested = list(self.full_list)
            return self.requested_atoms

        fresh = self.neighbor_list.prepare(step, exchange_step)
        self._requested = self.full_list[: self.b_start] + self.neighbor_list.active_bridging()
        if self.debug:
            state = "full list" if fresh else "reduced list"
            print(f"[DEBUG] bridge step {step}: {state} with {len(self._requested) - self.b_start} bridging atoms")
        return self.requested_atoms

    def calculate(self, positions: torch.Tensor, box: BoxLike = None) -> BridgeResult:
        """
        Compute the CV from positions of the requested atoms.

        Args:
            positions: [len(requested_atoms), 3] in the order given by prepare()
            box: Periodic cell (None, 3 lengths, 3x3 matrix or PeriodicBox)

        Returns:
            BridgeResult whose derivatives follow the same order as positions
        """
        positions = torch.as_tensor(positions)
        if positions.shape != (len(self._requested), 3):
            raise ValueError(
                f"Expected positions of shape ({len(self._requested)}, 3), got {tuple(positions.shape)}"
            )
        box = PeriodicBox.from_spec(box)

        if self.neighbor_list is not None and self.neighbor_list.fresh:
            reduced = self.neighbor_list.update(positions, box)
            if self.debug:
                print(f"[DEBUG] neighbor list rebuilt: {len(reduced)} of {len(self.bridging_atoms)} bridging atoms kept")

        result = bridge_accumulate(
            positions,
            len(self.group_a),
            len(self.group_b),
            self.switch_a,
            self.switch_b,
            box,
        )
        result.atoms = self.requested_atoms
        return result

    def evaluate(
        self,
        coords: torch.Tensor,
        step: int = 0,
        box: BoxLike = None,
        exchange_step: bool = False,
    ) -> BridgeResult:
        """
        Prepare and calculate in one go from system-wide coordinates.

        Args:
            coords: [N_atoms, 3] coordinates indexed by atom id
            step: Current step index
            box: Periodic cell
            exchange_step: True if a replica exchange happens at this step
        """
        atoms = self.prepare(step, exchange_step)
        coords = torch.as_tensor(coords)
        if max(self.full_list) >= coords.shape[0]:
            raise ValueError(
                f"Bridge CV refers to atom {max(self.full_list)} but only {coords.shape[0]} atoms were given"
            )
        index = torch.as_tensor(atoms, dtype=torch.long, device=coords.device)
        return self.calculate(coords.index_select(0, index), box)

    def __call__(
        self,
        coords: torch.Tensor,
        feats: Optional[Dict[str, Any]] = None,
        step: int = 0,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        CV-function interface: (coords, feats, step) -> (value, gradient).

        Args:
            coords: [N_atoms, 3] system coordinates
            feats: Optional dict with 'box' and 'exchange_step'
            step: Current step index

        Returns:
            value: 0-d tensor
            gradient: [N_atoms, 3] dCV/dr over the whole system
        """
        feats = feats or {}
        result = self.evaluate(
            coords,
            step=step,
            box=feats.get("box"),
            exchange_step=bool(feats.get("exchange_step", False)),
        )
        return result.value, result.scatter(torch.as_tensor(coords).shape[0])
