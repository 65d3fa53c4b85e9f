from __future__ import annotations

import numpy as np
import pytest
import torch

from bridgecv.data.write.writer import ColvarWriter, DerivativeWriter
from bridgecv.model.colvar.bridge import BridgeResult


def test_colvar_writer(tmp_path):
    path = tmp_path / "out" / "COLVAR"
    with ColvarWriter(path, ["nbridge"]) as writer:
        writer.write(0, [1.5])
        writer.write(10, [0.25])
        assert writer.rows == 2

    lines = path.read_text().splitlines()
    assert lines[0] == "#! FIELDS time nbridge"
    assert lines[1] == " 0 1.5000000000"
    assert lines[2] == " 10 0.2500000000"


def test_colvar_writer_checks_columns(tmp_path):
    with pytest.raises(ValueError):
        ColvarWriter(tmp_path / "COLVAR", [])
    with ColvarWriter(tmp_path / "COLVAR", ["a", "b"]) as writer:
        with pytest.raises(ValueError, match="Expected 2 values"):
            writer.write(0, [1.0])


def test_derivative_writer(tmp_path):
    writer = DerivativeWriter(tmp_path / "deriv.npz")
    assert writer.save() is None

    for step, atoms in ((0, [0, 1, 2, 3]), (5, [0, 1, 3])):
        result = BridgeResult(
            value=torch.tensor(float(step)),
            derivatives=torch.ones(len(atoms), 3, dtype=torch.float64) * step,
            virial=torch.eye(3, dtype=torch.float64),
            atoms=atoms,
        )
        writer.add(step, result)

    path = writer.save()
    data = np.load(path)
    assert data["steps"].tolist() == [0, 5]
    assert data["values"].tolist() == [0.0, 5.0]
    assert data["virials"].shape == (2, 3, 3)
    assert data["derivatives_5"].shape == (3, 3)
    assert data["atoms_5"].tolist() == [0, 1, 3]
