"""Transformation passes from the parsed model to one the SVD emitter can
write out. The passes run in a fixed order and mutate the device in place.
"""
from __future__ import annotations

import re
from typing import Optional

from edc2svd.logger import get_logger
from edc2svd.model import (ACCESS_TRANSLATION, Access, Cluster, Device,
                           EnumeratedValue, Field, Peripheral, Register)
from edc2svd.names import NameRegistry, sanitize
from edc2svd.options import Options

log = get_logger(__name__)

_INSTANCE = re.compile(r"(\d+)$")


def annotate(description: Optional[str], note: Optional[str]) -> Optional[str]:
    if not note:
        return description
    return f"{description} [{note}]" if description else f"[{note}]"


def _content(member) -> tuple:
    if isinstance(member, Cluster):
        return ("cluster", member.address_offset, tuple(_content(r) for r in member.registers))
    return ("register", member.address_offset, member.size,
            tuple((f.bit_offset, f.bit_width) for f in member.fields))


def _claim_all(items: list, scope: str, content) -> list:
    """Rename items within one scope, dropping exact duplicates."""
    registry = NameRegistry(scope)
    kept = []
    for item in items:
        name = registry.claim(item.name, content(item))
        if name is None:
            log.info("%s: dropping duplicate %s", scope, item.name)
            continue
        item.name = name
        kept.append(item)
    return kept


def _sanitize_fields(register: Register, scope: str):
    register.fields = _claim_all(register.fields, scope, lambda f: (f.bit_offset, f.bit_width))
    for f in register.fields:
        f.enumerated_values = _claim_all(f.enumerated_values, f"{scope}.{f.name}", lambda e: e.value)


def sanitize_names(device: Device, options: Options):
    device.name = sanitize(device.name)
    device.peripherals = _claim_all(
        device.peripherals, device.name,
        lambda p: (p.base_address, tuple(_content(m) for m in p.registers)))
    for p in device.peripherals:
        pscope = f"{device.name}.{p.name}"
        p.registers = _claim_all(p.registers, pscope, _content)
        for m in p.registers:
            mscope = f"{pscope}.{m.name}"
            if isinstance(m, Cluster):
                m.registers = _claim_all(m.registers, mscope, _content)
                for r in m.registers:
                    _sanitize_fields(r, f"{mscope}.{r.name}")
            else:
                _sanitize_fields(m, mscope)


def instance_rename(peripheral: Peripheral):
    """Return a function that replaces the peripheral's instance number in a
    register or field name with '#', so that U1MODE in UART1 and U2MODE in
    UART2 compare equal. Peripherals without a trailing number get None.
    """
    m = _INSTANCE.search(peripheral.name)
    if not m:
        return None
    number = re.compile(rf"(?<!\d){m.group(1)}(?!\d)")
    return lambda name: number.sub("#", name)


def detect_derivation(device: Device, options: Options):
    if not options.derive:
        return
    with_reset = not options.derive_ignore_reset
    seen = {}
    for p in device.peripherals:
        if p.derived_from or not p.registers:
            continue
        rename = None if options.derive_exact_names else instance_rename(p)
        key = (p.size, p.access, p.layout(with_reset, rename))
        base = seen.get(key)
        if base is None:
            seen[key] = p
            continue
        log.info("%s has the register layout of %s, deriving", p.name, base.name)
        p.derived_from = base.name
        p.registers = []


def _translate(access: Access, bit_modes=frozenset()):
    target, note = ACCESS_TRANSLATION[access]
    notes = [note] if note else []
    # table order keeps the notes deterministic
    for mode, (_, extra) in ACCESS_TRANSLATION.items():
        if mode in bit_modes and extra and extra not in notes:
            notes.append(extra)
    return target, "; ".join(notes) or None


def translate_access(device: Device, options: Options):
    device_access = device.access
    device.access = _translate(device.access)[0]
    for p in device.peripherals:
        if p.access is not None:
            peripheral = (p.access, p.bit_modes)
            p.access = _translate(p.access)[0]
        else:
            peripheral = (device_access, frozenset())
        p.bit_modes = frozenset()
        for r, _ in p.iter_registers():
            source = (r.access, r.bit_modes) if r.access else peripheral
            for f in r.fields:
                if f.access is None:
                    f.access, note = _translate(source[0])
                else:
                    f.access, note = _translate(f.access, f.bit_modes)
                f.description = annotate(f.description, note)
                f.bit_modes = frozenset()
            r.access, note = _translate(*source)
            r.description = annotate(r.description, note)
            r.bit_modes = frozenset()


def _extract_values(field: Field, tables: dict, scope: str):
    registry = NameRegistry(scope)
    values = []
    candidates = list(field.enumerated_values)
    if field.enum_ref:
        # copies, so that no two fields share value objects
        candidates += [EnumeratedValue(e.name, e.value, e.description) for e in tables[field.enum_ref]]
    for e in candidates:
        if e.value >> field.bit_width:
            log.warning("%s: value %s = %d does not fit %d bit(s), dropped",
                        scope, e.name, e.value, field.bit_width)
            continue
        name = registry.claim(e.name, e.value)
        if name is None:
            continue
        e.name = name
        values.append(e)
    field.enumerated_values = values
    field.enum_ref = None


def extract_enumerations(device: Device, options: Options):
    tables = device.symbol_tables
    for p in device.peripherals:
        for r, _ in p.iter_registers():
            for f in r.fields:
                _extract_values(f, tables, f"{device.name}.{p.name}.{r.name}.{f.name}")
    device.symbol_tables = {}


def propagate_reset(device: Device, options: Options):
    if device.reset_value is None:
        device.reset_value = 0
    for p in device.peripherals:
        for r, _ in p.iter_registers():
            if r.size is None:
                r.size = p.size or device.size
            if r.reset_value is None:
                r.reset_value = p.reset_value if p.reset_value is not None else device.reset_value
            if r.reset_mask is None:
                r.reset_mask = (1 << r.size) - 1


PASSES = (
    sanitize_names,
    detect_derivation,
    translate_access,
    extract_enumerations,
    propagate_reset,
)


def map_device(device: Device, options: Optional[Options] = None) -> Device:
    options = options or Options()
    for p in PASSES:
        p(device, options)
    return device
