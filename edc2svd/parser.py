"""Read an EDC (.PIC) register description into the hardware model."""
from __future__ import annotations

import dataclasses
import re
from collections import namedtuple
from typing import Optional, Union
from xml.etree import ElementTree

from edc2svd.errors import MalformedSource, MissingRequiredAttribute
from edc2svd.logger import get_logger
from edc2svd.model import (ACCESS_TRANSLATION, TARGET_ACCESS, Access,
                           Cluster, Device, EnumeratedValue, Field,
                           Peripheral, Register)
from edc2svd.options import Options, OptionsError

log = get_logger(__name__)

# PIC32 physical addresses are visible through the uncached KSEG1 segment
KSEG1 = 0xA000_0000

ACCESS_TYPES = {
    "read-write": Access.READ_WRITE,
    "read-only": Access.READ_ONLY,
    "write-only": Access.WRITE_ONLY,
    "write-only, volatile": Access.WRITE_ONLY_SIDE_EFFECT,
    "read-only, cleared-on-read": Access.READ_CLEAR,
    "read-write, settable": Access.READ_SET,
}

# one character per bit, MSB first
ACCESS_BITS = {
    "n": Access.READ_WRITE,
    "r": Access.READ_ONLY,
    "w": Access.WRITE_ONLY,
    "c": Access.READ_CLEAR,
    "s": Access.READ_SET,
}
UNIMPLEMENTED_BITS = "-xu"
_ACCESS_BIT_STRING = re.compile(r"^[nrwcsxu\-]+$")

PORTALS = {
    "CLR SET INV": ("CLR", "SET", "INV"),
    "CLR - -": ("CLR",),
    "- - -": (),
}
PORTAL_OFFSETS = {"CLR": 0x4, "SET": 0x8, "INV": 0xC}
PORTAL_DESCRIPTIONS = {
    "CLR": "Write 1 to clear bits in {}",
    "SET": "Write 1 to set bits in {}",
    "INV": "Write 1 to invert bits in {}",
}

# registers that only name the module they were generated from
MODSRC_PERIPHERALS = {
    "DOS-01618_RPINRx.Module": "PPS",
    "DOS-01618_RPORx.Module": "PPS",
    "DOS-01423_RPINRx.Module": "PPS",
    "DOS-01423_RPORx.Module": "PPS",
    "DOS-01475_lpwr_deep_sleep_ctrl_v2.Module": "DSCTRL",
}

_RESET_BIT_STRING = re.compile(r"^[01\-xu]+$")
_WHEN_VALUE = re.compile(r"==\s*([0-9A-Za-z#]+)\s*\)?\s*$")

_Defaults = namedtuple("_Defaults", ["size", "access", "bit_modes", "reset_value"])
AccessSpec = Union[Access, str, None]


def _local(name: str) -> str:
    return name.rsplit("}", 1)[-1]


def _attrs(elem: ElementTree.Element) -> dict:
    return {_local(k): v for k, v in elem.attrib.items()}


def _children(elem: ElementTree.Element, tag: str) -> list:
    return [c for c in elem if _local(c.tag) == tag]


def _child(elem: ElementTree.Element, tag: str) -> Optional[ElementTree.Element]:
    found = _children(elem, tag)
    return found[0] if found else None


def parse_int(text: str, path: str = "/", attribute: str = "value") -> int:
    """Parse an EDC numeric literal: 0x hex, 0b or # binary, else decimal."""
    s = text.strip().lower()
    try:
        if s.startswith("0x"):
            value = int(s[2:], 16)
        elif s.startswith("0b"):
            value = int(s[2:], 2)
        elif s.startswith("#"):
            value = int(s[1:], 2)
        else:
            value = int(s, 10)
    except ValueError:
        raise MalformedSource(path, f"cannot read {attribute}='{text}' as a number") from None
    if value < 0:
        raise MalformedSource(path, f"{attribute}='{text}' is negative")
    return value


def parse_reset(text: str, path: str = "/", size: Optional[int] = None):
    """Return (value, mask) for an mclr attribute.

    Bit strings map unimplemented (-), undefined (x) and unchanged (u) bits
    to 0 and leave them out of the mask. A bit string shorter than size is
    padded on the left with defined 0 bits. Other literals have no mask (None).
    """
    s = text.strip().lower()
    if not s.startswith(("0x", "0b", "#")) and _RESET_BIT_STRING.match(s):
        if size is not None:
            s = s.rjust(size, "0")
        value = int(re.sub(r"[-xu]", "0", s), 2)
        mask = int(re.sub(r"[-xu]", "0", re.sub(r"[01]", "1", s)), 2)
        return value, mask
    return parse_int(text, path, "mclr"), None


def parse_access(text: str, path: str = "/") -> Union[Access, str]:
    """Return an Access for word tokens, or the per-bit string LSB first."""
    word = re.sub(r"\s*,\s*", ", ", " ".join(text.lower().split()))
    if word in ACCESS_TYPES:
        return ACCESS_TYPES[word]
    bits = text.strip().lower()
    if _ACCESS_BIT_STRING.match(bits):
        return bits[::-1]
    raise MalformedSource(path, f"unknown access token '{text}'")


def combine_access(modes):
    """Return (access, bit_modes) for bits with the given modes.

    Mixed bits get the output mode covering all of them. The source modes
    that output mode cannot express are returned in bit_modes so the mapper
    can still describe them.
    """
    modes = set(modes)
    if not modes:
        return None, frozenset()
    if len(modes) == 1:
        return modes.pop(), frozenset()
    targets = {ACCESS_TRANSLATION[m][0] for m in modes}
    readable = any(t.readable for t in targets)
    writable = any(t.writable for t in targets)
    if readable and writable:
        access = Access.READ_WRITE
    else:
        access = Access.READ_ONLY if readable else Access.WRITE_ONLY
    return access, frozenset(m for m in modes if m not in TARGET_ACCESS)


def access_over(spec: AccessSpec, lo: int, hi: int):
    """(access, bit_modes) of bits lo..hi-1 under an access spec."""
    if spec is None or isinstance(spec, Access):
        return spec, frozenset()
    return combine_access(ACCESS_BITS[c] for c in spec[lo:hi] if c not in UNIMPLEMENTED_BITS)


def _peripheral_name(attrs: dict, path: str) -> str:
    cperi = (attrs.get("baseofperipheral")
             or attrs.get("memberofperipheral")
             or attrs.get("grp")
             or MODSRC_PERIPHERALS.get(attrs.get("_modsrc", "")))
    words = cperi.split() if cperi else []
    if not words:
        raise MalformedSource(path, "cannot tell which peripheral this register belongs to")
    return words[0]


class EdcParser:
    """Parser state for a single document."""

    def __init__(self, options: Optional[Options] = None):
        self.options = options or Options()
        self.device: Optional[Device] = None
        self.peripherals: dict[str, Peripheral] = {}

    def parse(self, root: ElementTree.Element) -> Device:
        if _local(root.tag) != "PIC":
            raise MalformedSource("/", f"expected a PIC root element, found '{_local(root.tag)}'")
        path = "/PIC"
        attrs = _attrs(root)
        name = attrs.get("name")
        if not name:
            raise MalformedSource(path, "device has no name")

        opts = self.options
        access = ACCESS_TYPES.get(opts.register_access)
        if access is None:
            raise OptionsError(f"unknown register access '{opts.register_access}'")
        self.device = Device(
            name=name,
            description=attrs.get("desc") or f"{name} peripheral registers, converted from EDC",
            width=opts.width,
            size=opts.register_size,
            access=access,
            reset_value=opts.reset_value,
        )

        # load all of the value tables first
        for table in root.iter():
            if _local(table.tag) == "ValueTable":
                self._value_table(table)

        phys = _child(root, "PhysicalSpace")
        if phys is None:
            raise MalformedSource(path, "PhysicalSpace element missing")
        prefixes = tuple(opts.region_prefixes)
        for i, sector in enumerate(_children(phys, "SFRDataSector"), 1):
            regionid = _attrs(sector).get("regionid", "")
            if not regionid.startswith(prefixes):
                log.debug("skipping data sector %s", regionid)
                continue
            self._sector(sector, f"{path}/PhysicalSpace/SFRDataSector[{i}]")

        for p in self.peripherals.values():
            p.base_address = min(m.address_offset for m in p.registers)
            for m in p.registers:
                m.address_offset -= p.base_address
            log.info("%s base_addr = %x", p.name, p.base_address)
        self.device.peripherals = list(self.peripherals.values())
        return self.device

    def _value_table(self, table: ElementTree.Element):
        tname = _attrs(table).get("name")
        if not tname:
            raise MalformedSource("/PIC//ValueTable", "value table has no name")
        if tname in self.device.symbol_tables:
            # assume tables with the same name are the same
            log.debug("value table %s defined again, keeping the first", tname)
            return
        path = f"/PIC//ValueTable[@name='{tname}']"
        values = []
        for v in _children(table, "Value"):
            va = _attrs(v)
            vname = va.get("cname") or va.get("name")
            if not vname:
                raise MalformedSource(f"{path}/Value", "value has no name")
            if "value" not in va:
                raise MissingRequiredAttribute(f"{path}/Value[@cname='{vname}']", "value")
            values.append(EnumeratedValue(vname, parse_int(va["value"], path, "value"), va.get("desc")))
        self.device.symbol_tables[tname] = values

    def _sector(self, sector: ElementTree.Element, path: str):
        sattrs = _attrs(sector)
        size = parse_int(sattrs["nzwidth"], path, "nzwidth") if "nzwidth" in sattrs else None
        width = size or self.device.size
        access, bit_modes = None, frozenset()
        if "access" in sattrs:
            access, bit_modes = access_over(parse_access(sattrs["access"], path), 0, width)
        reset = parse_reset(sattrs["mclr"], path, width)[0] if "mclr" in sattrs else None
        defaults = _Defaults(size, access, bit_modes, reset)

        for child in sector:
            tag = _local(child.tag)
            if tag == "SFRDef":
                attrs = _attrs(child)
                rpath = f"{path}/SFRDef[@cname='{attrs.get('cname') or attrs.get('name')}']"
                peripheral = self._peripheral(attrs, rpath, defaults)
                peripheral.registers.extend(self._register(child, path, peripheral))
            elif tag == "JoinedSFRDef":
                self._cluster(child, path, defaults)
            else:
                log.debug("skipping %s in %s", tag, path)

    def _peripheral(self, attrs: dict, path: str, defaults: _Defaults) -> Peripheral:
        pname = _peripheral_name(attrs, path)
        p = self.peripherals.get(pname)
        if p is None:
            p = Peripheral(
                name=pname,
                base_address=0,
                description=f"{pname} peripheral",
                size=defaults.size,
                access=defaults.access,
                reset_value=defaults.reset_value,
                bit_modes=defaults.bit_modes,
            )
            self.peripherals[pname] = p
        return p

    def _address(self, attrs: dict, path: str) -> int:
        if "_addr" not in attrs:
            raise MissingRequiredAttribute(path, "_addr")
        addr = parse_int(attrs["_addr"], path, "_addr")
        if self.options.kseg1:
            addr |= KSEG1
        return addr

    def _cluster(self, elem: ElementTree.Element, parent: str, defaults: _Defaults):
        attrs = _attrs(elem)
        name = attrs.get("cname") or attrs.get("name")
        if not name:
            raise MalformedSource(f"{parent}/JoinedSFRDef", "joined register has no name")
        path = f"{parent}/JoinedSFRDef[@cname='{name}']"
        addr = self._address(attrs, path)
        members = _children(elem, "SFRDef")
        if not members:
            raise MalformedSource(path, "joined register has no member registers")

        # the joined element may name its peripheral, else its first member does
        peripheral = self._peripheral({**_attrs(members[0]), **attrs}, path, defaults)
        cluster = Cluster(name=name, address_offset=addr, description=attrs.get("desc") or f"{name} registers")
        for m in members:
            for r in self._register(m, path, peripheral):
                if r.address_offset < addr:
                    raise MalformedSource(path, f"{r.name} lies below the joined register address")
                r.address_offset -= addr
                cluster.registers.append(r)
        peripheral.registers.append(cluster)

    def _register(self, elem: ElementTree.Element, parent: str, peripheral: Peripheral) -> list:
        """Return the register and its portal registers, at absolute addresses."""
        attrs = _attrs(elem)
        name = attrs.get("cname") or attrs.get("name")
        if not name:
            raise MalformedSource(f"{parent}/SFRDef", "register has no name")
        path = f"{parent}/SFRDef[@cname='{name}']"
        if attrs.get("name") and attrs["name"] != name:
            log.warning("cname = %s but name = %s", name, attrs["name"])

        addr = self._address(attrs, path)
        device = self.device
        if "nzwidth" in attrs:
            size = parse_int(attrs["nzwidth"], path, "nzwidth")
        else:
            size = peripheral.size or device.size
        if size == 0:
            raise MalformedSource(path, "register has zero width")

        spec = parse_access(attrs["access"], path) if "access" in attrs else None
        access, bit_modes = access_over(spec, 0, size)
        if access is None and peripheral.access is not None:
            access, bit_modes = peripheral.access, peripheral.bit_modes
        elif access is None:
            access = device.access

        reset_mask = None
        if "mclr" in attrs:
            reset_value, reset_mask = parse_reset(attrs["mclr"], path, size)
            if reset_value >> size:
                raise MalformedSource(path, f"reset value {attrs['mclr']} does not fit {size} bits")
            if reset_mask is not None:
                reset_mask &= (1 << size) - 1
        elif peripheral.reset_value is not None:
            reset_value = peripheral.reset_value
        else:
            reset_value = device.reset_value

        fields = []
        modelist = _child(elem, "SFRModeList")
        mode = _child(modelist, "SFRMode") if modelist is not None else None
        if mode is not None:
            fields = self._fields(mode, f"{path}/SFRModeList/SFRMode", size, spec)

        log.info("\t%s: %x, reset = %s (%s)", name, addr, reset_value, attrs.get("portals", "- - -"))
        reg = Register(
            name=name,
            address_offset=addr,
            size=size,
            description=attrs.get("desc") or f"{name} register",
            access=access,
            reset_value=reset_value,
            reset_mask=reset_mask,
            fields=fields,
            bit_modes=bit_modes,
        )
        registers = [reg]

        portals = " ".join(attrs.get("portals", "- - -").split())
        if portals not in PORTALS:
            raise MalformedSource(path, f"unexpected portals attribute: {portals}")
        if self.options.portals:
            for suffix in PORTALS[portals]:
                # reading a portal is undefined, so its reset value is 0
                registers.append(Register(
                    name=f"{name}{suffix}",
                    address_offset=addr + PORTAL_OFFSETS[suffix],
                    size=size,
                    description=PORTAL_DESCRIPTIONS[suffix].format(name),
                    access=Access.WRITE_ONLY_SIDE_EFFECT,
                    reset_value=0,
                    fields=[dataclasses.replace(f, access=None, bit_modes=frozenset(),
                                                enumerated_values=[], enum_ref=None)
                            for f in fields],
                ))
        return registers

    def _fields(self, mode: ElementTree.Element, path: str, size: int, spec: AccessSpec) -> list:
        fields = []
        bitpos = 0
        for elem in mode:
            tag = _local(elem.tag)
            attrs = _attrs(elem)
            if tag == "SFRFieldDef":
                fname = attrs.get("cname") or attrs.get("name")
                if not fname:
                    raise MalformedSource(f"{path}/SFRFieldDef", "field has no name")
                fpath = f"{path}/SFRFieldDef[@cname='{fname}']"
                if attrs.get("name") and attrs["name"] != fname:
                    log.warning("cname = %s but name = %s", fname, attrs["name"])
                if "nzwidth" not in attrs:
                    raise MissingRequiredAttribute(fpath, "nzwidth")
                width = parse_int(attrs["nzwidth"], fpath, "nzwidth")
                if width == 0:
                    raise MalformedSource(fpath, "field has zero width")
                if bitpos + width > size:
                    raise MalformedSource(
                        fpath, f"field [{bitpos + width - 1}:{bitpos}] exceeds the {size}-bit register")

                if "access" in attrs:
                    access, bit_modes = access_over(parse_access(attrs["access"], fpath), 0, width)
                elif isinstance(spec, str):
                    access, bit_modes = access_over(spec, bitpos, bitpos + width)
                else:
                    access, bit_modes = None, frozenset()

                enum_ref = attrs.get("valuetable")
                if enum_ref and enum_ref not in self.device.symbol_tables:
                    raise MalformedSource(fpath, f"unknown value table '{enum_ref}'")
                values = [self._semantic(s, fpath) for s in _children(elem, "SFRFieldSemantic")]

                log.info("\t\t[%d:%d]\t%s", bitpos + width - 1, bitpos, fname)
                fields.append(Field(
                    name=fname,
                    bit_offset=bitpos,
                    bit_width=width,
                    description=attrs.get("desc"),
                    access=access,
                    enumerated_values=values,
                    enum_ref=enum_ref or None,
                    bit_modes=bit_modes,
                ))
                bitpos += width
            elif tag == "AdjustPoint":
                if "offset" not in attrs:
                    raise MissingRequiredAttribute(f"{path}/AdjustPoint", "offset")
                bitpos += parse_int(attrs["offset"], f"{path}/AdjustPoint", "offset")
            else:
                raise MalformedSource(f"{path}/{tag}", f"unexpected element {tag} in field definition")
        return fields

    def _semantic(self, elem: ElementTree.Element, parent: str) -> EnumeratedValue:
        attrs = _attrs(elem)
        name = attrs.get("cname") or attrs.get("name")
        if not name:
            raise MalformedSource(f"{parent}/SFRFieldSemantic", "field semantic has no name")
        path = f"{parent}/SFRFieldSemantic[@cname='{name}']"
        if "value" in attrs:
            value = parse_int(attrs["value"], path, "value")
        else:
            m = _WHEN_VALUE.search(attrs.get("when", ""))
            if not m:
                raise MissingRequiredAttribute(path, "value")
            value = parse_int(m.group(1), path, "when")
        return EnumeratedValue(name, value, attrs.get("desc"))


def parse(source: bytes, options: Optional[Options] = None) -> Device:
    """ read an EDC document and return it as a hardware model """
    try:
        root = ElementTree.fromstring(source)
    except ElementTree.ParseError as e:
        raise MalformedSource("/", f"not a well-formed document ({e})") from None
    return EdcParser(options).parse(root)
