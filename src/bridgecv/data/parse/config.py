"""
YAML configuration for bridge CV runs.

Example:

    cv:
      type: bridge
      name: bridge
      group_a: "1-4"
      group_b: "5-8"
      bridging_atoms: "9-200"
      switch: "RATIONAL R_0=0.35 NN=6 MM=12"
      nlist: true
      nl_cutoff: 1.2
      nl_stride: 10
    system:
      box: [3.0, 3.0, 3.0]
      exchange_stride: 0
    output:
      colvar: COLVAR
      derivatives: derivatives.npz
      stride: 1
    debug: false

PLUMED-style upper-case keywords (GROUPA, GROUPB, BRIDGING_ATOMS, SWITCH,
SWITCHA, SWITCHB, NLIST, NL_CUTOFF, NL_STRIDE) are accepted in the `cv`
section as aliases.
"""

import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from bridgecv.data.parse.atom_selection import validate_group_list

# Accepted spellings for cv section keys
_CV_KEY_ALIASES = {
    "type": "cv_type",
    "cv_type": "cv_type",
    "name": "name",
    "group_a": "group_a",
    "groupa": "group_a",
    "group_b": "group_b",
    "groupb": "group_b",
    "bridging_atoms": "bridging_atoms",
    "switch": "switch",
    "switch_a": "switch_a",
    "switcha": "switch_a",
    "switch_b": "switch_b",
    "switchb": "switch_b",
    "nlist": "nlist",
    "nl_cutoff": "nl_cutoff",
    "nl_stride": "nl_stride",
}

VALID_CV_TYPES = {"bridge"}


@dataclass
class CVConfig:
    """Collective variable section."""

    group_a: Any
    group_b: Any
    bridging_atoms: Any
    cv_type: str = "bridge"
    name: str = "bridge"
    switch: Optional[Union[str, Dict[str, Any]]] = None
    switch_a: Optional[Union[str, Dict[str, Any]]] = None
    switch_b: Optional[Union[str, Dict[str, Any]]] = None
    nlist: bool = False
    nl_cutoff: Optional[float] = None
    nl_stride: Optional[int] = None


@dataclass
class SystemConfig:
    """System section: periodic cell and replica exchange cadence."""

    box: Optional[List[Any]] = None
    exchange_stride: int = 0


@dataclass
class OutputConfig:
    """Output section."""

    colvar: str = "COLVAR"
    derivatives: Optional[str] = None
    stride: int = 1


@dataclass
class RunConfig:
    """Parsed configuration file."""

    cv: CVConfig
    system: SystemConfig = field(default_factory=SystemConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    debug: bool = False


def _to_float(value: Any, key: str) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"'{key}' must be a number, got {value!r}") from e


def _to_int(value: Any, key: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"'{key}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"'{key}' must be an integer, got {value!r}") from e


def _parse_cv_section(section: Any) -> CVConfig:
    if not isinstance(section, dict):
        raise ValueError("The 'cv' section must be a mapping")

    entries: Dict[str, Any] = {}
    for key, value in section.items():
        normalized = _CV_KEY_ALIASES.get(str(key).lower())
        if normalized is None:
            warnings.warn(f"Unknown key '{key}' in cv section, ignoring.")
            continue
        entries[normalized] = value

    cv_type = str(entries.get("cv_type", "bridge"))
    if cv_type not in VALID_CV_TYPES:
        raise ValueError(f"Unknown cv type '{cv_type}'. Valid types: {sorted(VALID_CV_TYPES)}")

    for key in ("group_a", "group_b", "bridging_atoms"):
        if entries.get(key) is None:
            raise ValueError(f"Missing required atom list '{key}' in cv section")
        if not validate_group_list(entries[key]):
            raise ValueError(f"Invalid atom list for '{key}': {entries[key]!r}")

    return CVConfig(
        group_a=entries["group_a"],
        group_b=entries["group_b"],
        bridging_atoms=entries["bridging_atoms"],
        cv_type=cv_type,
        name=str(entries.get("name", cv_type)),
        switch=entries.get("switch"),
        switch_a=entries.get("switch_a"),
        switch_b=entries.get("switch_b"),
        nlist=bool(entries.get("nlist", False)),
        nl_cutoff=_to_float(entries.get("nl_cutoff"), "nl_cutoff"),
        nl_stride=_to_int(entries.get("nl_stride"), "nl_stride"),
    )


def _parse_system_section(section: Any) -> SystemConfig:
    if section is None:
        return SystemConfig()
    if not isinstance(section, dict):
        raise ValueError("The 'system' section must be a mapping")
    exchange_stride = _to_int(section.get("exchange_stride", 0), "exchange_stride") or 0
    if exchange_stride < 0:
        raise ValueError(f"'exchange_stride' cannot be negative, got {exchange_stride}")
    return SystemConfig(box=section.get("box"), exchange_stride=exchange_stride)


def _parse_output_section(section: Any) -> OutputConfig:
    if section is None:
        return OutputConfig()
    if not isinstance(section, dict):
        raise ValueError("The 'output' section must be a mapping")
    stride = _to_int(section.get("stride", 1), "stride")
    if stride is None or stride < 1:
        raise ValueError(f"Output 'stride' must be >= 1, got {stride}")
    derivatives = section.get("derivatives")
    return OutputConfig(
        colvar=str(section.get("colvar", "COLVAR")),
        derivatives=str(derivatives) if derivatives else None,
        stride=stride,
    )


def parse_config_dict(data: Any) -> RunConfig:
    """
    Build a RunConfig from an already loaded YAML document.

    Args:
        data: Root mapping of the configuration

    Returns:
        RunConfig

    Raises:
        ValueError: If a section is missing or malformed
    """
    if not isinstance(data, dict):
        raise ValueError("Configuration must contain a mapping at the root.")
    if "cv" not in data:
        raise ValueError("Configuration is missing the 'cv' section")

    for key in data:
        if key not in ("cv", "system", "output", "debug"):
            warnings.warn(f"Unknown top-level key '{key}' in configuration, ignoring.")

    return RunConfig(
        cv=_parse_cv_section(data["cv"]),
        system=_parse_system_section(data.get("system")),
        output=_parse_output_section(data.get("output")),
        debug=bool(data.get("debug", False)),
    )


def parse_config(path: Path) -> RunConfig:
    """Parse a bridge CV YAML configuration file."""
    path = Path(path)
    with path.open("r") as file:
        data = yaml.safe_load(file)
    return parse_config_dict(data)
