from __future__ import annotations

import pytest
import torch

from bridgecv.model.colvar.bridge import BridgeCV
from bridgecv.model.colvar.neighbors import BridgeNeighborList
from bridgecv.model.colvar.pbc import PeriodicBox


def _system() -> torch.Tensor:
    """A at origin, B at x=1.2 and six bridging atoms, three of them in range of both."""
    return torch.tensor(
        [
            [0.0, 0.0, 0.0],  # A
            [1.2, 0.0, 0.0],  # B
            [0.6, 0.3, 0.0],
            [0.6, -0.4, 0.1],
            [5.0, 5.0, 5.0],
            [0.2, 0.0, 0.6],
            [3.0, 0.0, 0.0],
            [-0.5, 0.0, 0.0],
        ],
        dtype=torch.float64,
    )


def test_rebuild_cadence():
    nlist = BridgeNeighborList(1, 1, [2, 3], cutoff=1.0, stride=3)
    fresh = [nlist.prepare(step) for step in range(6)]
    assert fresh == [True, False, False, True, False, False]
    assert nlist.n_rebuilds == 2
    assert nlist.n_reused == 4


def test_first_call_is_always_fresh():
    nlist = BridgeNeighborList(1, 1, [2], cutoff=1.0, stride=4)
    assert nlist.prepare(7)
    assert not nlist.prepare(9)


def test_exchange_on_reused_step_raises():
    nlist = BridgeNeighborList(1, 1, [2], cutoff=1.0, stride=4)
    nlist.prepare(0)
    with pytest.raises(RuntimeError, match="Neighbor lists should be updated on exchange steps"):
        nlist.prepare(1, exchange_step=True)


def test_exchange_forces_next_step_fresh():
    nlist = BridgeNeighborList(1, 1, [2], cutoff=1.0, stride=4)
    assert nlist.prepare(0)
    assert nlist.prepare(4, exchange_step=True)
    assert nlist.prepare(5)
    assert not nlist.prepare(6)


@pytest.mark.parametrize(
    "cutoff, stride, message",
    [
        (None, 5, "NL_CUTOFF"),
        (0.0, 5, "NL_CUTOFF"),
        (-1.0, 5, "NL_CUTOFF"),
        (1.0, None, "NL_STRIDE"),
        (1.0, 0, "NL_STRIDE"),
    ],
)
def test_invalid_parameters(cutoff, stride, message):
    with pytest.raises(ValueError, match=message):
        BridgeNeighborList(1, 1, [2], cutoff=cutoff, stride=stride)


def test_update_keeps_atoms_close_to_both_groups():
    nlist = BridgeNeighborList(1, 1, list(range(2, 8)), cutoff=1.3, stride=2)
    nlist.prepare(0)
    assert nlist.active_bridging() == [2, 3, 4, 5, 6, 7]
    assert nlist.update(_system()) == [2, 3, 5]

    nlist.prepare(1)
    assert not nlist.fresh
    assert nlist.active_bridging() == [2, 3, 5]


def test_update_includes_atoms_exactly_at_cutoff():
    positions = torch.tensor(
        [[0.0, 0.0, 0.0], [2.0, 0.0, 0.0], [1.0, 0.0, 0.0]], dtype=torch.float64
    )
    nlist = BridgeNeighborList(1, 1, [2], cutoff=1.0, stride=1)
    nlist.prepare(0)
    assert nlist.update(positions) == [2]


def test_update_uses_minimum_image():
    positions = torch.tensor(
        [[0.1, 0.0, 0.0], [3.9, 0.0, 0.0], [3.95, 0.0, 0.0]], dtype=torch.float64
    )
    nlist = BridgeNeighborList(1, 1, [2], cutoff=0.5, stride=1)
    nlist.prepare(0)
    assert nlist.update(positions) == []
    nlist.prepare(1)
    assert nlist.update(positions, PeriodicBox.from_spec([4.0, 4.0, 4.0])) == [2]


def test_update_uses_nearest_image_in_skewed_cell():
    cell = torch.tensor([[1.0, 0.0, 0.0], [0.5, 3.0 ** 0.5 / 2, 0.0], [0.0, 0.0, 1.0]], dtype=torch.float64)
    bridge = 0.45 * cell[0] + 0.40 * cell[1]
    positions = torch.stack([torch.zeros(3, dtype=torch.float64), bridge + 0.1 * cell[2], bridge])
    nlist = BridgeNeighborList(1, 1, [2], cutoff=0.55, stride=1)
    nlist.prepare(0)
    assert nlist.update(positions, PeriodicBox.from_spec(cell)) == [2]


def test_rebuild_replaces_stale_entries():
    nlist = BridgeNeighborList(1, 1, list(range(2, 8)), cutoff=1.3, stride=1)
    nlist.prepare(0)
    nlist.update(_system())

    moved = _system()
    moved[2] = torch.tensor([8.0, 8.0, 8.0], dtype=torch.float64)
    nlist.prepare(1)
    assert nlist.update(moved) == [3, 5]


def test_update_requires_fresh_step():
    nlist = BridgeNeighborList(1, 1, [2], cutoff=1.0, stride=5)
    nlist.prepare(0)
    nlist.prepare(1)
    with pytest.raises(RuntimeError):
        nlist.update(torch.zeros(3, 3, dtype=torch.float64))


def test_cached_list_gives_same_results_as_full_list():
    switch = "CUBIC D_0=0.0 D_MAX=1.0"
    with_list = BridgeCV([0], [1], list(range(2, 8)), switch=switch, nlist=True, nl_cutoff=1.3, nl_stride=3)
    without_list = BridgeCV([0], [1], list(range(2, 8)), switch=switch)

    generator = torch.Generator().manual_seed(3)
    directions = torch.rand(8, 3, generator=generator, dtype=torch.float64) - 0.5
    base = _system()

    for step in range(6):
        coords = base + 0.02 * step * directions
        cached = with_list.evaluate(coords, step=step)
        full = without_list.evaluate(coords, step=step)

        if step % 3 == 0:
            assert len(cached.atoms) == 8
        else:
            assert cached.atoms == [0, 1, 2, 3, 5]
        assert cached.value.item() == pytest.approx(full.value.item(), rel=1e-12)
        assert torch.allclose(cached.scatter(8), full.scatter(8), atol=1e-12)
        assert torch.allclose(cached.virial, full.virial, atol=1e-12)
        assert cached.n_terms == full.n_terms

    assert with_list.neighbor_list.n_rebuilds == 2
    assert with_list.neighbor_list.n_reused == 4
