from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import torch
from torch import Tensor

from bridgecv.model.colvar.bridge import BridgeResult


class ColvarWriter:
    """Writer for CV values in a PLUMED-style COLVAR table."""

    def __init__(self, path: str, names: List[str]) -> None:
        """Initialize the writer.

        Parameters
        ----------
        path : str
            The file to write.
        names : List[str]
            The column names, one per CV.

        """
        if not names:
            msg = "ColvarWriter needs at least one CV name"
            raise ValueError(msg)
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.names = names
        self._handle = self.path.open("w")
        self._handle.write("#! FIELDS time " + " ".join(names) + "\n")
        self.rows = 0

    def write(self, step: int, values: List[float]) -> None:
        """Append one row."""
        if len(values) != len(self.names):
            msg = f"Expected {len(self.names)} values, got {len(values)}"
            raise ValueError(msg)
        fields = " ".join(f"{v:.10f}" for v in values)
        self._handle.write(f" {step} {fields}\n")
        self.rows += 1

    def close(self) -> None:
        if not self._handle.closed:
            self._handle.close()

    def __enter__(self) -> "ColvarWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class DerivativeWriter:
    """Collects per-step derivatives and virials and saves them as .npz."""

    def __init__(self, path: str) -> None:
        """Initialize the writer.

        Parameters
        ----------
        path : str
            The .npz file to write on save().

        """
        self.path = Path(path)
        self.steps: List[int] = []
        self.values: List[float] = []
        self.virials: List[np.ndarray] = []
        self._derivatives: Dict[str, np.ndarray] = {}
        self._atoms: Dict[str, np.ndarray] = {}

    def add(self, step: int, result: BridgeResult) -> None:
        """Record one evaluation.

        Parameters
        ----------
        step : int
            The step index.
        result : BridgeResult
            The evaluation to store. Derivatives keep the order of the
            requested atom list, which may change between steps.

        """
        self.steps.append(step)
        self.values.append(float(result.value))
        self.virials.append(_to_numpy(result.virial))
        self._derivatives[f"derivatives_{step}"] = _to_numpy(result.derivatives)
        self._atoms[f"atoms_{step}"] = np.asarray(result.atoms, dtype=np.int64)

    def save(self) -> Optional[Path]:
        """Write everything collected so far. Returns None when empty."""
        if not self.steps:
            return None
        self.path.parent.mkdir(parents=True, exist_ok=True)
        np.savez_compressed(
            self.path,
            steps=np.asarray(self.steps, dtype=np.int64),
            values=np.asarray(self.values, dtype=np.float64),
            virials=np.stack(self.virials),
            **self._derivatives,
            **self._atoms,
        )
        return self.path


def _to_numpy(tensor: Tensor) -> np.ndarray:
    return tensor.detach().cpu().to(torch.float64).numpy()
