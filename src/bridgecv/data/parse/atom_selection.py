"""
Atom selection parser for bridge CV configuration.

Converts atom list specifications from YAML configuration into 0-based
atom indices.

Supported tokens (comma or space separated, or as YAML list items):
- 7            - atom serial number (1-based)
- 1-20         - inclusive serial range
- 1-20:2       - serial range with stride
- A            - all atoms of chain A
- A:15         - residue 15 of chain A
- A:1-20       - residues 1-20 of chain A
- A:15:CA      - atom CA of residue 15 of chain A
- A::OW        - every atom named OW in chain A
Chain based tokens need a topology (PDB input).
"""

import re
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bridgecv.data.parse.trajectory import Topology

_SERIAL = re.compile(r"^\d+$")
_SERIAL_RANGE = re.compile(r"^(\d+)-(\d+)(?::(\d+))?$")
_CHAIN_SPEC = re.compile(r"^([A-Za-z][A-Za-z0-9]*)(?::([^:]*))?(?::([A-Za-z0-9'*]+))?$")

AtomListSpec = Union[int, str, Sequence[Union[int, str]]]


def build_chain_to_atom_mapping(topology: Topology) -> Dict[str, Tuple[int, int]]:
    """
    Build a mapping from chain IDs to atom index ranges.

    Args:
        topology: Per-atom chain, residue and atom name information

    Returns:
        Dict mapping chain ID to (start_idx, end_idx). Only the first
        contiguous block of a chain is recorded.
    """
    mapping: Dict[str, Tuple[int, int]] = {}
    current_chain = None
    start_idx = 0

    for idx, cid in enumerate(topology.chain_ids):
        if cid != current_chain:
            if current_chain is not None and current_chain not in mapping:
                mapping[current_chain] = (start_idx, idx)
            current_chain = cid
            start_idx = idx

    if current_chain is not None and current_chain not in mapping:
        mapping[current_chain] = (start_idx, len(topology.chain_ids))

    return mapping


def _parse_residue_range(residue_spec: str, token: str) -> Optional[Tuple[int, int]]:
    if residue_spec == "":
        return None
    try:
        if "-" in residue_spec:
            start_res, end_res = map(int, residue_spec.split("-"))
        else:
            start_res = end_res = int(residue_spec)
    except ValueError as e:
        raise ValueError(f"Invalid residue specification in atom selection '{token}'") from e
    if start_res > end_res:
        raise ValueError(f"Empty residue range in atom selection '{token}'")
    return start_res, end_res


def _select_chain(token: str, topology: Topology) -> List[int]:
    match = _CHAIN_SPEC.match(token)
    if match is None:
        raise ValueError(f"Invalid atom selection '{token}'")
    chain_id, residue_spec, atom_name = match.groups()
    if chain_id not in build_chain_to_atom_mapping(topology):
        raise ValueError(f"Chain '{chain_id}' not found in topology")
    residues = _parse_residue_range(residue_spec or "", token)

    selected = []
    for idx in range(topology.n_atoms):
        if topology.chain_ids[idx] != chain_id:
            continue
        if residues is not None and not (residues[0] <= topology.res_ids[idx] <= residues[1]):
            continue
        if atom_name is not None and topology.atom_names[idx] != atom_name:
            continue
        selected.append(idx)

    if not selected:
        raise ValueError(f"Atom selection '{token}' does not match any atom")
    return selected


def _parse_token(token: str, topology: Optional[Topology]) -> List[int]:
    if _SERIAL.match(token):
        serial = int(token)
        if serial < 1:
            raise ValueError(f"Atom serial numbers start at 1, got '{token}'")
        return [serial - 1]

    match = _SERIAL_RANGE.match(token)
    if match is not None:
        start, end = int(match.group(1)), int(match.group(2))
        stride = int(match.group(3)) if match.group(3) else 1
        if start < 1 or end < start or stride < 1:
            raise ValueError(f"Invalid atom range '{token}'")
        return [serial - 1 for serial in range(start, end + 1, stride)]

    if _CHAIN_SPEC.match(token):
        if topology is None:
            raise ValueError(
                f"Atom selection '{token}' uses chain/residue names; a PDB input with topology is required"
            )
        return _select_chain(token, topology)

    raise ValueError(f"Invalid atom selection '{token}'")


def _tokenize(spec: AtomListSpec) -> List[str]:
    if isinstance(spec, bool):
        raise ValueError(f"Invalid atom selection {spec!r}")
    if isinstance(spec, int):
        return [str(spec)]
    if isinstance(spec, str):
        return [t for t in re.split(r"[\s,]+", spec.strip()) if t]
    if not isinstance(spec, (list, tuple)):
        raise ValueError(f"Invalid atom selection {spec!r}")
    tokens: List[str] = []
    for item in spec:
        tokens.extend(_tokenize(item))
    return tokens


def parse_atom_list(
    spec: Any,
    n_atoms: Optional[int] = None,
    topology: Optional[Topology] = None,
) -> List[int]:
    """
    Parse an atom list specification into 0-based atom indices.

    Args:
        spec: int, string or list of tokens (see module docstring)
        n_atoms: Number of atoms in the system, used for range checking
        topology: Topology for chain-based selections

    Returns:
        Atom indices in the order given, duplicates removed

    Raises:
        ValueError: If the specification is empty, malformed or out of range
    """
    if spec is None:
        raise ValueError("Atom selection is missing")

    tokens = _tokenize(spec)
    if not tokens:
        raise ValueError("Atom selection is empty")

    if n_atoms is None and topology is not None:
        n_atoms = topology.n_atoms

    indices: List[int] = []
    seen = set()
    for token in tokens:
        for idx in _parse_token(token, topology):
            if n_atoms is not None and idx >= n_atoms:
                raise ValueError(f"Atom selection '{token}' refers to atom {idx + 1} but the system has {n_atoms} atoms")
            if idx not in seen:
                seen.add(idx)
                indices.append(idx)
    return indices


def validate_group_list(groups: Any) -> bool:
    """
    Check that an atom list specification can be tokenized into known token forms.

    Args:
        groups: Atom list specification

    Returns:
        True if every token has a valid form, False otherwise
    """
    try:
        tokens = _tokenize(groups)
    except (TypeError, ValueError):
        return False
    if not tokens:
        return False
    return all(
        _SERIAL.match(t) or _SERIAL_RANGE.match(t) or _CHAIN_SPEC.match(t)
        for t in tokens
    )
