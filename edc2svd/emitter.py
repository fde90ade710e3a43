"""Write a mapped hardware model as a CMSIS-SVD document."""
from __future__ import annotations

from xml.etree import ElementTree

import ranges

from edc2svd.errors import UnrepresentableModel
from edc2svd.logger import get_logger
from edc2svd.model import TARGET_ACCESS, Cluster, Device, Peripheral, Register
from edc2svd.names import IDENTIFIER
from edc2svd.options import Options

log = get_logger(__name__)

XS_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"
SCHEMA_LOCATION = "https://raw.githubusercontent.com/ARM-software/CMSIS_5/develop/CMSIS/Utilities/CMSIS-SVD.xsd"


def hex32(value: int) -> str:
    return f"0x{value:08X}"


def _text(parent: ElementTree.Element, tag: str, text) -> ElementTree.Element:
    e = ElementTree.SubElement(parent, tag)
    e.text = str(text)
    return e


def _check_names(items: list, scope: str):
    seen = set()
    for item in items:
        if not IDENTIFIER.match(item.name):
            raise UnrepresentableModel(scope, f"'{item.name}' is not a valid identifier")
        key = item.name.casefold()
        if key in seen:
            raise UnrepresentableModel(scope, f"'{item.name}' is not unique")
        seen.add(key)


def _check_access(access, path: str):
    if access not in TARGET_ACCESS:
        raise UnrepresentableModel(path, f"access {access} has no SVD equivalent")


def check_register(reg: Register, path: str):
    """Re-verify the register invariants the mapper is meant to establish."""
    if not reg.size:
        raise UnrepresentableModel(path, "register has no size")
    _check_access(reg.access, path)
    if reg.reset_value is None:
        raise UnrepresentableModel(path, "register has no reset value")
    if reg.reset_value >> reg.size or (reg.reset_mask or 0) >> reg.size:
        raise UnrepresentableModel(path, f"reset value does not fit {reg.size} bits")
    _check_names(reg.fields, path)
    taken = []
    for f in reg.fields:
        fpath = f"{path}.{f.name}"
        _check_access(f.access, fpath)
        if f.bit_width < 1 or f.bit_offset + f.bit_width > reg.size:
            raise UnrepresentableModel(fpath, f"bits [{f.msb}:{f.bit_offset}] lie outside the register")
        bits = ranges.Range(f.bit_offset, f.bit_offset + f.bit_width)
        for other, other_bits in taken:
            if not bits.isdisjoint(other_bits):
                raise UnrepresentableModel(fpath, f"overlaps field {other}")
        taken.append((f.name, bits))
        _check_names(f.enumerated_values, fpath)
        for e in f.enumerated_values:
            if e.value >> f.bit_width:
                raise UnrepresentableModel(fpath, f"value {e.name} = {e.value} does not fit the field")


def check_device(device: Device):
    if not IDENTIFIER.match(device.name):
        raise UnrepresentableModel("/", f"'{device.name}' is not a valid identifier")
    _check_access(device.access, device.name)
    _check_names(device.peripherals, device.name)
    bases = {}
    expanded = set()
    for p in device.peripherals:
        path = f"{device.name}.{p.name}"
        if p.derived_from:
            if p.derived_from not in expanded:
                raise UnrepresentableModel(path, f"derives from unknown peripheral {p.derived_from}")
        else:
            expanded.add(p.name)
        other = bases.get(p.base_address)
        if other is not None and p.derived_from != other.name and other.derived_from != p.name:
            raise UnrepresentableModel(path, f"shares base address {hex32(p.base_address)} with {other.name}")
        bases.setdefault(p.base_address, p)
        _check_names(p.registers, path)
        for m in p.registers:
            if isinstance(m, Cluster):
                _check_names(m.registers, f"{path}.{m.name}")
                for r in m.registers:
                    check_register(r, f"{path}.{m.name}.{r.name}")
            else:
                check_register(m, f"{path}.{m.name}")


def _register(parent: ElementTree.Element, reg: Register):
    r = ElementTree.SubElement(parent, "register")
    _text(r, "name", reg.name)
    _text(r, "description", reg.description or reg.name)
    _text(r, "addressOffset", hex32(reg.address_offset))
    _text(r, "size", reg.size)
    _text(r, "access", reg.access.value)
    _text(r, "resetValue", hex32(reg.reset_value))
    _text(r, "resetMask", hex32(reg.reset_mask))
    if not reg.fields:
        return
    fields = ElementTree.SubElement(r, "fields")
    for f in reg.fields:
        fe = ElementTree.SubElement(fields, "field")
        _text(fe, "name", f.name)
        if f.description:
            _text(fe, "description", f.description)
        _text(fe, "bitOffset", f.bit_offset)
        _text(fe, "bitWidth", f.bit_width)
        _text(fe, "access", f.access.value)
        if f.enumerated_values:
            ev = ElementTree.SubElement(fe, "enumeratedValues")
            for e in f.enumerated_values:
                ee = ElementTree.SubElement(ev, "enumeratedValue")
                _text(ee, "name", e.name)
                if e.description:
                    _text(ee, "description", e.description)
                _text(ee, "value", e.value)


def address_blocks(p: Peripheral) -> ranges.RangeSet:
    blocks = ranges.RangeSet()
    for reg, offset in p.iter_registers():
        blocks.add(ranges.Range(offset, offset + max(reg.size // 8, 1)))
    return blocks


def _peripheral(parent: ElementTree.Element, p: Peripheral):
    pe = ElementTree.SubElement(parent, "peripheral")
    if p.derived_from:
        pe.set("derivedFrom", p.derived_from)
    _text(pe, "name", p.name)
    if p.description:
        _text(pe, "description", p.description)
    _text(pe, "baseAddress", hex32(p.base_address))
    if p.derived_from:
        return
    for block in address_blocks(p).ranges():
        ab = ElementTree.SubElement(pe, "addressBlock")
        _text(ab, "offset", hex32(block.start))
        _text(ab, "size", hex32(block.end - block.start))
        _text(ab, "usage", "registers")
    registers = ElementTree.SubElement(pe, "registers")
    for m in p.registers:
        if isinstance(m, Cluster):
            c = ElementTree.SubElement(registers, "cluster")
            _text(c, "name", m.name)
            _text(c, "description", m.description or m.name)
            _text(c, "addressOffset", hex32(m.address_offset))
            for r in m.registers:
                _register(c, r)
        else:
            _register(registers, m)


def emit(device: Device, options: Options = None) -> bytes:
    """ serialize a mapped device into SVD bytes """
    options = options or Options()
    check_device(device)

    root = ElementTree.Element("device")
    root.set("xmlns:xs", XS_NAMESPACE)
    root.set("schemaVersion", "1.3")
    root.set("xs:noNamespaceSchemaLocation", SCHEMA_LOCATION)
    _text(root, "vendor", options.vendor)
    _text(root, "vendorID", options.vendor_id)
    _text(root, "name", device.name)
    _text(root, "version", options.version)
    _text(root, "description", device.description or device.name)
    _text(root, "addressUnitBits", 8)
    _text(root, "width", device.width)
    _text(root, "size", device.size)
    _text(root, "access", device.access.value)
    _text(root, "resetValue", hex32(device.reset_value or 0))
    _text(root, "resetMask", hex32((1 << device.size) - 1))
    peripherals = ElementTree.SubElement(root, "peripherals")
    for p in device.peripherals:
        _peripheral(peripherals, p)

    ElementTree.indent(root, space="  ")
    body = ElementTree.tostring(root, encoding="unicode")
    log.info("emitted %d peripherals", len(device.peripherals))
    return ('<?xml version="1.0" encoding="UTF-8"?>\n' + body + "\n").encode("utf-8")
