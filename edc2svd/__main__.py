from __future__ import annotations

import argparse
import pathlib
import sys

from edc2svd import ConversionError, convert_file, load_options
from edc2svd.logger import get_logger, setup_logging
from edc2svd.options import Options, OptionsError

log = get_logger("edc2svd")


def build_options(args) -> Options:
    options = load_options(args.config) if args.config else Options()
    if args.kseg1:
        options.kseg1 = True
    if args.no_portals:
        options.portals = False
    if args.no_derive:
        options.derive = False
    if args.derive_exact_names:
        options.derive_exact_names = True
    if args.derive_ignore_reset:
        options.derive_ignore_reset = True
    if args.region:
        options.region_prefixes = args.region
    return options


def main(argv=None) -> int:
    p = argparse.ArgumentParser(prog="edc2svd", description="Convert an EDC (.PIC) register description to CMSIS-SVD")
    p.add_argument("input", type=pathlib.Path, help="EDC input file")
    p.add_argument("output", type=pathlib.Path, help="SVD output file")
    p.add_argument("--config", type=pathlib.Path, help="YAML file with conversion options")
    p.add_argument("--kseg1", action="store_true", help="map register addresses into the KSEG1 segment")
    p.add_argument("--no-portals", action="store_true", help="do not emit CLR/SET/INV registers")
    p.add_argument("--no-derive", action="store_true", help="always expand every peripheral")
    p.add_argument("--derive-ignore-reset", action="store_true",
                   help="derive peripherals whose layouts differ only in reset values")
    p.add_argument("--derive-exact-names", action="store_true",
                   help="only derive peripherals whose register names match exactly")
    p.add_argument("--region", action="append", help="data sector regionid prefix (repeatable, default: periph)")
    p.add_argument("-v", "--verbose", action="store_true", help="activate verbose output")
    p.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    p.add_argument("--quiet", action="store_true", help="reduce console output")
    args = p.parse_args(argv)

    setup_logging(level=args.log_level or ("INFO" if args.verbose else "WARNING"), quiet=args.quiet)

    try:
        options = build_options(args)
    except (OSError, OptionsError) as e:
        log.error("%s", e)
        return 2
    try:
        convert_file(args.input, args.output, options)
    except ConversionError as e:
        log.error("conversion failed: %s", e)
        return 1
    except OptionsError as e:
        log.error("%s", e)
        return 2
    except OSError as e:
        log.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
