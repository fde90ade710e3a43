from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from ruamel.yaml import YAML


class OptionsError(ValueError):
    pass


@dataclass
class Options:
    vendor: str = "Microchip Technology Inc."
    vendor_id: str = "Microchip"
    version: str = "1.0"
    width: int = 32
    register_size: int = 32
    register_access: str = "read-write"
    reset_value: Optional[int] = None
    region_prefixes: list[str] = field(default_factory=lambda: ["periph"])
    kseg1: bool = False
    portals: bool = True
    derive: bool = True
    derive_ignore_reset: bool = False
    derive_exact_names: bool = False


_TYPES = {
    "vendor": str,
    "vendor_id": str,
    "version": str,
    "width": int,
    "register_size": int,
    "register_access": str,
    "reset_value": (int, type(None)),
    "region_prefixes": list,
    "kseg1": bool,
    "portals": bool,
    "derive": bool,
    "derive_ignore_reset": bool,
    "derive_exact_names": bool,
}


def options_from_dict(data: dict) -> Options:
    known = {f.name for f in fields(Options)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise OptionsError(f"unknown option(s): {', '.join(unknown)}")
    for k, v in data.items():
        allowed = _TYPES[k] if isinstance(_TYPES[k], tuple) else (_TYPES[k],)
        # bool is an int subclass; keep flags and numbers apart
        if isinstance(v, bool) and bool not in allowed:
            raise OptionsError(f"option '{k}' must not be a boolean")
        if not isinstance(v, allowed):
            raise OptionsError(f"option '{k}' has the wrong type ({type(v).__name__})")
    if "region_prefixes" in data:
        data = dict(data, region_prefixes=[str(p) for p in data["region_prefixes"]])
    return Options(**data)


def load_options(path: Path) -> Options:
    """ read conversion options from a YAML mapping """
    yaml = YAML(typ="safe")
    with open(path, "r") as file:
        data = yaml.load(file)
    if data is None:
        return Options()
    if not isinstance(data, dict):
        raise OptionsError(f"{path}: expected a mapping of options")
    return options_from_dict(data)
