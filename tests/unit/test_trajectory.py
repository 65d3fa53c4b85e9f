from __future__ import annotations

import pytest
import torch

from bridgecv.data.parse.trajectory import cell_from_parameters, load_trajectory

PDB = """\
CRYST1   20.000   20.000   20.000  90.00  90.00  90.00 P 1           1
MODEL        1
ATOM      1  N   ALA A   1       0.000   0.000   0.000  1.00  0.00           N
ATOM      2  CA  ALA A   1       1.000   0.000   0.000  1.00  0.00           C
HETATM    3  OW  HOH B   5       0.500   0.500   0.000  1.00  0.00           O
ENDMDL
MODEL        2
ATOM      1  N   ALA A   1       0.100   0.000   0.000  1.00  0.00           N
ATOM      2  CA  ALA A   1       1.100   0.000   0.000  1.00  0.00           C
HETATM    3  OW  HOH B   5       0.600   0.500   0.000  1.00  0.00           O
ENDMDL
END
"""


def test_load_xyz(xyz_trajectory):
    traj = load_trajectory(xyz_trajectory)
    assert traj.n_frames == 4
    assert traj.n_atoms == 4
    assert traj.frames.dtype == torch.float64
    assert traj.frames[3, 2, 0].item() == pytest.approx(0.53)
    assert traj.topology is None
    assert torch.allclose(traj.boxes[0], torch.eye(3, dtype=torch.float64) * 5.0)


def test_load_xyz_without_lattice(tmp_path):
    path = tmp_path / "plain.xyz"
    path.write_text("2\nplain frame\nC 0 0 0\nC 1 1 1\n")
    traj = load_trajectory(path)
    assert traj.boxes == [None]
    assert traj.frames.shape == (1, 2, 3)


@pytest.mark.parametrize(
    "content, message",
    [
        ("", "No coordinates"),
        ("two\ncomment\nC 0 0 0\n", "Expected atom count"),
        ("3\ncomment\nC 0 0 0\n", "Truncated frame"),
        ("1\ncomment\nC 0 zero 0\n", "Could not read coordinates"),
        ('1\nLattice="1 0 0 0 1 0"\nC 0 0 0\n', "9 numbers"),
        ("1\na\nC 0 0 0\n2\nb\nC 0 0 0\nC 1 1 1\n", "same number of atoms"),
    ],
)
def test_bad_xyz(tmp_path, content, message):
    path = tmp_path / "bad.xyz"
    path.write_text(content)
    with pytest.raises(ValueError, match=message):
        load_trajectory(path)


def test_load_pdb_models_and_topology(tmp_path):
    path = tmp_path / "traj.pdb"
    path.write_text(PDB)
    traj = load_trajectory(path)

    assert traj.n_frames == 2
    assert traj.n_atoms == 3
    assert traj.frames[1, 0, 0].item() == pytest.approx(0.1)
    assert torch.allclose(traj.boxes[1], torch.eye(3, dtype=torch.float64) * 20.0, atol=1e-9)
    assert traj.topology.chain_ids == ["A", "A", "B"]
    assert traj.topology.res_ids == [1, 1, 5]
    assert traj.topology.atom_names == ["N", "CA", "OW"]
    assert traj.topology.elements == ["N", "C", "O"]


def test_pdb_placeholder_cell_is_ignored(tmp_path):
    path = tmp_path / "one.pdb"
    path.write_text(
        "CRYST1    1.000    1.000    1.000  90.00  90.00  90.00 P 1           1\n"
        "ATOM      1  N   ALA A   1       0.000   0.000   0.000  1.00  0.00           N\n"
        "END\n"
    )
    traj = load_trajectory(path)
    assert traj.boxes == [None]


def test_unsupported_and_missing_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_trajectory(tmp_path / "missing.xyz")
    path = tmp_path / "traj.dcd"
    path.write_text("")
    with pytest.raises(ValueError, match="Unsupported trajectory format"):
        load_trajectory(path)


def test_cell_from_parameters():
    cell = cell_from_parameters(3.0, 4.0, 5.0, 90.0, 90.0, 60.0)
    assert cell[0].tolist() == [3.0, 0.0, 0.0]
    assert cell[1, 0].item() == pytest.approx(2.0)
    assert cell[1, 1].item() == pytest.approx(4.0 * 3 ** 0.5 / 2)
    assert cell[2].norm().item() == pytest.approx(5.0)
    assert cell[2, 2].item() == pytest.approx(5.0)


def test_parse_errors_keep_their_cause(tmp_path):
    path = tmp_path / "bad.xyz"
    path.write_text("1\ncomment\nC 0 zero 0\n")
    with pytest.raises(ValueError) as excinfo:
        load_trajectory(path)
    assert isinstance(excinfo.value.__cause__, ValueError)
