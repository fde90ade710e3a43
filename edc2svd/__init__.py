"""Convert Microchip EDC register descriptions to CMSIS-SVD."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from edc2svd.emitter import emit
from edc2svd.errors import (ConversionError, MalformedSource,
                            MissingRequiredAttribute, UnrepresentableModel,
                            UnresolvableNameCollision)
from edc2svd.logger import get_logger
from edc2svd.mapper import map_device
from edc2svd.options import Options, load_options
from edc2svd.parser import parse

__all__ = [
    "convert",
    "convert_file",
    "Options",
    "load_options",
    "ConversionError",
    "MalformedSource",
    "MissingRequiredAttribute",
    "UnresolvableNameCollision",
    "UnrepresentableModel",
]

log = get_logger(__name__)


def convert(source: bytes, options: Optional[Options] = None) -> bytes:
    options = options or Options()
    device = parse(source, options)
    map_device(device, options)
    return emit(device, options)


def convert_file(src: Path, dst: Path, options: Optional[Options] = None) -> None:
    # the whole document is converted before the destination is touched
    svd = convert(Path(src).read_bytes(), options)
    Path(dst).write_bytes(svd)
    log.info("wrote %s (%d bytes)", dst, len(svd))
