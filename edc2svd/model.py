"""Hardware description model shared by the parser, the mapper passes and
the emitter.

The tree is built once by the parser, mutated in place by the mapper and
only read by the emitter.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class Access(Enum):
    READ_ONLY = "read-only"
    WRITE_ONLY = "write-only"
    READ_WRITE = "read-write"
    WRITE_ONLY_SIDE_EFFECT = "write-only, volatile"
    READ_CLEAR = "read-only, cleared-on-read"
    READ_SET = "read-write, settable"

    @property
    def readable(self) -> bool:
        return self not in (Access.WRITE_ONLY, Access.WRITE_ONLY_SIDE_EFFECT)

    @property
    def writable(self) -> bool:
        return self not in (Access.READ_ONLY, Access.READ_CLEAR)


# modes with a slot of their own in the output schema
TARGET_ACCESS = (Access.READ_ONLY, Access.WRITE_ONLY, Access.READ_WRITE)

# source access -> (target access, note kept in the description)
ACCESS_TRANSLATION = {
    Access.READ_ONLY: (Access.READ_ONLY, None),
    Access.WRITE_ONLY: (Access.WRITE_ONLY, None),
    Access.READ_WRITE: (Access.READ_WRITE, None),
    Access.WRITE_ONLY_SIDE_EFFECT: (Access.WRITE_ONLY, "write has side effects"),
    Access.READ_CLEAR: (Access.READ_WRITE, "cleared on read"),
    Access.READ_SET: (Access.READ_WRITE, "writes can only set bits"),
}


def _modes(bit_modes) -> tuple:
    return tuple(sorted(m.value for m in bit_modes))


@dataclass
class EnumeratedValue:
    name: str
    value: int
    description: Optional[str] = None


@dataclass
class Field:
    name: str
    bit_offset: int
    bit_width: int
    description: Optional[str] = None
    access: Optional[Access] = None
    enumerated_values: list[EnumeratedValue] = field(default_factory=list)
    # name of a symbolic-constant table, resolved by the mapper
    enum_ref: Optional[str] = None
    # source modes of single bits that a mixed access does not show
    bit_modes: frozenset = frozenset()

    @property
    def msb(self) -> int:
        return self.bit_offset + self.bit_width - 1

    def layout(self, rename=None) -> tuple:
        return (
            rename(self.name) if rename else self.name,
            self.bit_offset,
            self.bit_width,
            self.access,
            _modes(self.bit_modes),
            self.enum_ref,
            tuple((e.name, e.value) for e in self.enumerated_values),
        )


@dataclass
class Register:
    name: str
    address_offset: int
    size: Optional[int] = None  # bits
    description: Optional[str] = None
    access: Optional[Access] = None
    reset_value: Optional[int] = None
    reset_mask: Optional[int] = None
    fields: list[Field] = field(default_factory=list)
    bit_modes: frozenset = frozenset()

    def layout(self, with_reset: bool = True, rename=None) -> tuple:
        """Structural signature used to find peripherals sharing a layout.

        rename, when given, maps register and field names before comparison.
        """
        reset = (self.reset_value, self.reset_mask) if with_reset else None
        return (
            "register",
            rename(self.name) if rename else self.name,
            self.address_offset,
            self.size,
            self.access,
            _modes(self.bit_modes),
            reset,
            tuple(f.layout(rename) for f in self.fields),
        )


@dataclass
class Cluster:
    name: str
    address_offset: int
    description: Optional[str] = None
    registers: list[Register] = field(default_factory=list)

    def layout(self, with_reset: bool = True, rename=None) -> tuple:
        return (
            "cluster",
            rename(self.name) if rename else self.name,
            self.address_offset,
            tuple(r.layout(with_reset, rename) for r in self.registers),
        )


Member = Union[Register, Cluster]


@dataclass
class Peripheral:
    name: str
    base_address: int
    description: Optional[str] = None
    derived_from: Optional[str] = None
    # peripheral-level defaults for its registers
    size: Optional[int] = None
    access: Optional[Access] = None
    reset_value: Optional[int] = None
    registers: list[Member] = field(default_factory=list)
    bit_modes: frozenset = frozenset()

    def layout(self, with_reset: bool = True, rename=None) -> tuple:
        return tuple(m.layout(with_reset, rename) for m in self.registers)

    def iter_registers(self):
        """Yield (register, absolute offset within the peripheral)."""
        for m in self.registers:
            if isinstance(m, Cluster):
                for r in m.registers:
                    yield r, m.address_offset + r.address_offset
            else:
                yield m, m.address_offset


@dataclass
class Device:
    name: str
    description: Optional[str] = None
    width: int = 32
    size: int = 32
    access: Access = Access.READ_WRITE
    reset_value: Optional[int] = None
    peripherals: list[Peripheral] = field(default_factory=list)
    # symbolic-constant tables keyed by table name; emptied once inlined
    symbol_tables: dict[str, list[EnumeratedValue]] = field(default_factory=dict)
