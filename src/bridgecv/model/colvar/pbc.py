"""Minimum-image displacements in a periodic simulation cell."""

import itertools
from typing import Optional, Sequence, Union

import torch

BoxLike = Union[None, Sequence[float], Sequence[Sequence[float]], torch.Tensor, "PeriodicBox"]


class PeriodicBox:
    """
    Periodic cell used to compute minimum-image displacement vectors.

    The cell is stored as a 3x3 matrix whose rows are the lattice vectors.
    A box without a cell is non-periodic and returns plain differences.
    """

    def __init__(self, cell: Optional[torch.Tensor] = None):
        if cell is not None:
            cell = torch.as_tensor(cell, dtype=torch.float64)
            if cell.shape != (3, 3):
                raise ValueError(f"Periodic cell must be a 3x3 matrix, got shape {tuple(cell.shape)}")
            volume = torch.linalg.det(cell).item()
            if volume <= 0:
                raise ValueError(f"Periodic cell must have positive volume, got {volume}")
            self._inverse = torch.linalg.inv(cell)
            self._orthorhombic = bool(torch.count_nonzero(cell - torch.diag(cell.diagonal())) == 0)
            # Neighbouring lattice shifts, zero shift first so ties keep the rounded image
            shifts = sorted(itertools.product((-1, 0, 1), repeat=3), key=lambda n: n != (0, 0, 0))
            self._images = torch.tensor(shifts, dtype=torch.float64) @ cell
        else:
            self._inverse = None
            self._orthorhombic = True
            self._images = None
        self.cell = cell

    @classmethod
    def from_spec(cls, spec: BoxLike) -> "PeriodicBox":
        """
        Build a box from None, 3 edge lengths, 9 numbers or a 3x3 matrix.
        """
        if isinstance(spec, PeriodicBox):
            return spec
        if spec is None:
            return cls(None)
        values = torch.as_tensor(spec, dtype=torch.float64)
        if values.numel() == 3:
            lengths = values.reshape(3)
            if (lengths <= 0).any():
                raise ValueError(f"Box lengths must be positive, got {lengths.tolist()}")
            return cls(torch.diag(lengths))
        if values.numel() == 9:
            return cls(values.reshape(3, 3))
        raise ValueError(f"Cannot build a periodic box from {values.numel()} numbers; use 3 lengths or a 3x3 matrix")

    @property
    def periodic(self) -> bool:
        return self.cell is not None

    def scaled(self, factor: float) -> "PeriodicBox":
        """Return a box with every lattice vector multiplied by factor."""
        if self.cell is None:
            return PeriodicBox(None)
        return PeriodicBox(self.cell * factor)

    def displacement(self, a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
        """
        Minimum-image vector pointing from a to b (b - a), broadcasting over leading dims.
        """
        delta = b - a
        if self.cell is None:
            return delta
        cell = self.cell.to(device=delta.device, dtype=delta.dtype)
        inverse = self._inverse.to(device=delta.device, dtype=delta.dtype)
        frac = delta @ inverse
        frac = frac - torch.round(frac)
        reduced = frac @ cell
        if self._orthorhombic:
            return reduced

        # Rounding alone can miss a shorter image in skewed cells
        images = self._images.to(device=delta.device, dtype=delta.dtype)
        candidates = reduced.unsqueeze(-2) + images  # [..., 27, 3]
        best = (candidates * candidates).sum(dim=-1).argmin(dim=-1)
        index = best[..., None, None].expand(*best.shape, 1, 3)
        return torch.gather(candidates, -2, index).squeeze(-2)

    def __repr__(self) -> str:
        if self.cell is None:
            return "PeriodicBox(None)"
        return f"PeriodicBox({self.cell.tolist()})"
