#!/usr/bin/env python3
"""
AAMP Converter
==============

Converts parameter archives between the binary AAMP form and tagged YAML.
The direction is picked from the input: files starting with "AAMP" are
decoded and written as YAML, anything else is read as YAML and written as
binary.

Default output names:
    Enemy.bxml       -> Enemy.bxml.yml
    Enemy.bxml.yml   -> Enemy.bxml
    Enemy.yml        -> Enemy.bin

Usage:
    python aamp_tool.py Enemy.bxml
    python aamp_tool.py Enemy.bxml.yml -o Enemy.bxml --check
    python aamp_tool.py Enemy.bxml --names botw_names.txt -o -
"""

import argparse
import os
import sys
from typing import Optional

from aamp_errors import AampError
from aamp_names import NameTable
from aamp_parser import is_aamp, read_aamp
from aamp_serializer import write_aamp
from aamp_types import ParameterIO, count_records
from aamp_yaml_emitter import to_yaml
from aamp_yaml_parser import from_yaml

YAML_SUFFIXES = ('.yml', '.yaml')


def default_output_path(input_path: str, to_binary: bool) -> str:
    if not to_binary:
        return input_path + '.yml'
    root, ext = os.path.splitext(input_path)
    if ext.lower() in YAML_SUFFIXES:
        if os.path.splitext(root)[1]:
            return root
        return root + '.bin'
    return input_path + '.bin'


def convert_file(input_path: str, output_path: Optional[str] = None,
                 names: Optional[NameTable] = None, verbose: bool = False,
                 check: bool = False) -> dict:
    """
    Convert one file and return a summary.

    Args:
        input_path: Binary AAMP or YAML file
        output_path: Where to write the result ('-' for stdout, None for the default name)
        names: NameTable used on both sides of the conversion
        verbose: Print decoder/encoder details
        check: Decode the produced output again and compare it to the input tree

    Returns:
        dict with format, output, sizes, record counts and the check result
    """
    if names is None:
        names = NameTable()

    with open(input_path, 'rb') as f:
        data = f.read()

    to_binary = not is_aamp(data)
    if output_path is None:
        output_path = default_output_path(input_path, to_binary)

    if to_binary:
        pio = from_yaml(data, names)
        output = write_aamp(pio, verbose=verbose)
    else:
        pio = read_aamp(data, names, verbose=verbose)
        output = to_yaml(pio, names).encode('utf-8')

    results = {
        'format': 'YAML -> AAMP' if to_binary else 'AAMP -> YAML',
        'output': output_path,
        'input_size': len(data),
        'output_size': len(output),
        'records': count_records([pio.param_root]),
        'check': None,
    }

    if check:
        results['check'] = _round_trip_matches(pio, output, to_binary)

    if output_path == '-':
        sys.stdout.buffer.write(output)
        sys.stdout.buffer.flush()
    else:
        with open(output_path, 'wb') as f:
            f.write(output)

    return results


def _round_trip_matches(pio: ParameterIO, output: bytes, to_binary: bool) -> bool:
    # Fresh table so the check does not depend on names learned above
    if to_binary:
        again = read_aamp(output, NameTable())
    else:
        again = from_yaml(output.decode('utf-8'), NameTable())
    return again == pio


# =============================================================================
# MAIN
# =============================================================================

def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Convert parameter archives (AAMP) between binary and YAML',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python aamp_tool.py Enemy.bxml
  python aamp_tool.py Enemy.bxml.yml -o Enemy.bxml --check
  python aamp_tool.py Enemy.bxml --names names.txt -o -
        """
    )

    parser.add_argument('input', help='Binary AAMP or YAML file')
    parser.add_argument('-o', '--output', help="Output file ('-' for stdout)")
    parser.add_argument('-n', '--names', action='append', default=[],
                        help='Extra name dictionary, one name per line (repeatable)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Print decoder/encoder details')
    parser.add_argument('--check', action='store_true',
                        help='Decode the output again and compare it to the input')

    args = parser.parse_args(argv)
    quiet = args.output == '-'

    if not quiet:
        print("=" * 70)
        print("AAMP Parameter Archive Converter")
        print("=" * 70)

    names = NameTable()
    try:
        for path in args.names:
            count = names.load_file(path)
            if args.verbose and not quiet:
                print(f"Loaded {count} names from {path}")
        results = convert_file(args.input, args.output, names,
                               verbose=args.verbose and not quiet, check=args.check)
    except (OSError, AampError) as e:
        print(f"\nERROR: {e}", file=sys.stderr if quiet else sys.stdout)
        return 1

    if results['check'] is False:
        print("\nCHECK FAILED: Output does not decode to the input document",
              file=sys.stderr if quiet else sys.stdout)
        return 1

    if quiet:
        return 0

    lists, objects, params = results['records']
    print(f"\nInput:  {args.input}")
    print(f"Format: {results['format']}")
    print(f"Output: {results['output']}")
    print(f"Size:   {results['input_size']} -> {results['output_size']} bytes")
    print(f"  Lists:   {lists}")
    print(f"  Objects: {objects}")
    print(f"  Params:  {params}")
    if results['check']:
        print("\nCHECK PASSED: Output decodes to the input document")
    print("\nDone!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
