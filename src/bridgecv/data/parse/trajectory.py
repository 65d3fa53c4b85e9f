"""Readers for coordinate trajectories (.xyz and .pdb)."""

import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import torch


@dataclass
class Topology:
    """Per-atom identifiers read from a structure file."""

    chain_ids: List[str]
    res_ids: List[int]
    atom_names: List[str]
    elements: List[str] = field(default_factory=list)

    @property
    def n_atoms(self) -> int:
        return len(self.chain_ids)


@dataclass
class Trajectory:
    """Frames of coordinates with optional cells and topology."""

    frames: torch.Tensor  # [n_frames, n_atoms, 3]
    boxes: List[Optional[torch.Tensor]]  # per frame, 3x3 rows = lattice vectors
    topology: Optional[Topology] = None

    @property
    def n_frames(self) -> int:
        return self.frames.shape[0]

    @property
    def n_atoms(self) -> int:
        return self.frames.shape[1]


def load_trajectory(path: Union[str, Path]) -> Trajectory:
    """
    Load a trajectory from a multi-frame XYZ or PDB file.

    Args:
        path: Path to the trajectory

    Returns:
        Trajectory with float64 coordinates
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Trajectory not found: {path}")

    ext = path.suffix.lower()
    if ext == ".xyz":
        return _load_xyz(path)
    elif ext == ".pdb":
        return _load_pdb(path)
    else:
        raise ValueError(f"Unsupported trajectory format: {ext}. Use .xyz or .pdb")


_LATTICE = re.compile(r'Lattice="([^"]+)"')


def _load_xyz(path: Path) -> Trajectory:
    """Load coordinates from a (extended) XYZ file, one block per frame."""
    with path.open("r") as f:
        lines = f.read().splitlines()

    frames = []
    boxes = []
    pos = 0
    while pos < len(lines):
        if not lines[pos].strip():
            pos += 1
            continue
        try:
            n_atoms = int(lines[pos].split()[0])
        except ValueError as e:
            raise ValueError(f"Expected atom count at line {pos + 1} of {path}") from e
        comment = lines[pos + 1] if pos + 1 < len(lines) else ""
        body = lines[pos + 2 : pos + 2 + n_atoms]
        if len(body) != n_atoms:
            raise ValueError(f"Truncated frame {len(frames)} in {path}: expected {n_atoms} atoms")

        coords = []
        for line in body:
            parts = line.split()
            try:
                coords.append([float(parts[1]), float(parts[2]), float(parts[3])])
            except (IndexError, ValueError) as e:
                raise ValueError(f"Could not read coordinates from line '{line}' in {path}") from e
        frames.append(coords)

        match = _LATTICE.search(comment)
        if match:
            values = [float(v) for v in match.group(1).split()]
            if len(values) != 9:
                raise ValueError(f"Lattice in {path} must have 9 numbers, got {len(values)}")
            boxes.append(torch.tensor(values, dtype=torch.float64).reshape(3, 3))
        else:
            boxes.append(None)
        pos += 2 + n_atoms

    if not frames:
        raise ValueError(f"No coordinates found in XYZ file: {path}")
    if len({len(f) for f in frames}) != 1:
        raise ValueError(f"All frames in {path} must have the same number of atoms")

    return Trajectory(
        frames=torch.tensor(frames, dtype=torch.float64),
        boxes=boxes,
        topology=None,
    )


def cell_from_parameters(a: float, b: float, c: float, alpha: float, beta: float, gamma: float) -> torch.Tensor:
    """
    Lattice vectors (rows) from cell lengths and angles in degrees.

    a lies along x, b in the xy plane.
    """
    cos_a, cos_b, cos_g = (math.cos(math.radians(x)) for x in (alpha, beta, gamma))
    sin_g = math.sin(math.radians(gamma))
    cx = cos_b
    cy = (cos_a - cos_b * cos_g) / sin_g
    cz = math.sqrt(max(1.0 - cx * cx - cy * cy, 0.0))
    return torch.tensor(
        [
            [a, 0.0, 0.0],
            [b * cos_g, b * sin_g, 0.0],
            [c * cx, c * cy, c * cz],
        ],
        dtype=torch.float64,
    )


def _load_pdb(path: Path) -> Trajectory:
    """Load coordinates from a PDB file; MODEL/ENDMDL blocks become frames."""
    frames = []
    boxes = []
    coords: List[List[float]] = []
    chain_ids: List[str] = []
    res_ids: List[int] = []
    atom_names: List[str] = []
    elements: List[str] = []
    topology_done = False
    cell = None

    def close_frame():
        nonlocal coords, topology_done
        if coords:
            frames.append(coords)
            boxes.append(cell)
            topology_done = True
        coords = []

    with path.open("r") as f:
        for line in f:
            if line.startswith("CRYST1"):
                try:
                    params = [float(line[6:15]), float(line[15:24]), float(line[24:33]),
                              float(line[33:40]), float(line[40:47]), float(line[47:54])]
                except ValueError as e:
                    raise ValueError(f"Could not read CRYST1 record in {path}: {line.rstrip()}") from e
                # CRYST1 1.0 1.0 1.0 is a placeholder, not a cell
                if params[0] > 1.0 and params[1] > 1.0 and params[2] > 1.0:
                    cell = cell_from_parameters(*params)
            elif line.startswith(("ATOM", "HETATM")):
                try:
                    x = float(line[30:38])
                    y = float(line[38:46])
                    z = float(line[46:54])
                except ValueError as e:
                    raise ValueError(f"Could not read coordinates in {path}: {line.rstrip()}") from e
                coords.append([x, y, z])
                if not topology_done:
                    atom_names.append(line[12:16].strip())
                    chain_ids.append(line[21:22].strip() or "A")
                    try:
                        res_ids.append(int(line[22:26]))
                    except ValueError:
                        res_ids.append(0)
                    elements.append(line[76:78].strip() if len(line) >= 78 else "")
            elif line.startswith(("ENDMDL", "END")):
                close_frame()
    close_frame()

    if not frames:
        raise ValueError(f"No coordinates found in PDB file: {path}")
    if len({len(f) for f in frames}) != 1:
        raise ValueError(f"All models in {path} must have the same number of atoms")

    topology = Topology(chain_ids=chain_ids, res_ids=res_ids, atom_names=atom_names, elements=elements)
    return Trajectory(
        frames=torch.tensor(frames, dtype=torch.float64),
        boxes=boxes,
        topology=topology,
    )
