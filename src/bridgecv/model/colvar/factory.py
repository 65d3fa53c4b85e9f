"""
Factory for creating collective variables from configuration.

CV types are looked up in CV_REGISTRY. New types are added with
register_cv() from program start-up rather than at import time of the
module that defines them.
"""

from typing import Any, Callable, Dict, Optional

from bridgecv.data.parse.atom_selection import parse_atom_list
from bridgecv.data.parse.config import CVConfig
from bridgecv.data.parse.trajectory import Topology
from bridgecv.model.colvar.bridge import BridgeCV

CV_REGISTRY: Dict[str, Callable[..., Any]] = {
    "bridge": BridgeCV,
}


def register_cv(name: str, constructor: Callable[..., Any]) -> None:
    """
    Register a CV constructor under a type name.

    Args:
        name: Value of `type` in the configuration
        constructor: Callable returning a CV object
    """
    if name in CV_REGISTRY and CV_REGISTRY[name] is not constructor:
        raise ValueError(f"CV type '{name}' is already registered")
    CV_REGISTRY[name] = constructor


def create_cv_function(cv_type: str, **kwargs) -> Any:
    """
    Create a CV object.

    Args:
        cv_type: Type of CV (see CV_REGISTRY for supported types)
        **kwargs: Constructor arguments of the CV type

    Returns:
        CV object, callable as cv(coords, feats, step) -> (cv_value, cv_gradient)
    """
    if cv_type not in CV_REGISTRY:
        raise ValueError(f"Unknown CV type: {cv_type}. Available CVs: {list(CV_REGISTRY.keys())}")
    return CV_REGISTRY[cv_type](**kwargs)


def create_cv_from_config(
    config: CVConfig,
    topology: Optional[Topology] = None,
    n_atoms: Optional[int] = None,
    debug: bool = False,
) -> Any:
    """
    Create a CV from its parsed configuration section.

    Args:
        config: Parsed `cv` section
        topology: Optional topology for chain/residue/atom-name selections
        n_atoms: Optional number of atoms in the system, used to range-check selections
        debug: Print debug information

    Returns:
        CV object
    """
    if debug:
        print(f"[DEBUG] Resolving atom selections for CV '{config.name}' ({config.cv_type}):")

    group_a = parse_atom_list(config.group_a, n_atoms=n_atoms, topology=topology)
    group_b = parse_atom_list(config.group_b, n_atoms=n_atoms, topology=topology)
    bridging = parse_atom_list(config.bridging_atoms, n_atoms=n_atoms, topology=topology)

    if debug:
        print(f"  group_a '{config.group_a}' -> {len(group_a)} atoms")
        print(f"  group_b '{config.group_b}' -> {len(group_b)} atoms")
        print(f"  bridging_atoms '{config.bridging_atoms}' -> {len(bridging)} atoms")

    return create_cv_function(
        config.cv_type,
        group_a=group_a,
        group_b=group_b,
        bridging_atoms=bridging,
        switch=config.switch,
        switch_a=config.switch_a,
        switch_b=config.switch_b,
        nlist=config.nlist,
        nl_cutoff=config.nl_cutoff,
        nl_stride=config.nl_stride,
        debug=debug,
    )
