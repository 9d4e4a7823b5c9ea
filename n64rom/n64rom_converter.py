#!/usr/bin/env python3
"""
N64 ROM Byte Order Converter (n64rom_converter.py)

Identifies and converts Nintendo 64 cartridge dumps between the three byte
orderings produced by different dumping hardware over the years:

    .z64  big-endian     (native cartridge order)
    .v64  byte-swapped   (Doctor V64, 16-bit halves swapped)
    .n64  little-endian  (each 32-bit word reversed)

The ordering is detected from the first word of the ROM header, which always
holds the PI domain configuration 0x80371240.
"""

import argparse
import sys
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

__version__ = '0.1.0'

# Header magic as it appears on disk in each ordering
BIG_ENDIAN_MAGIC = b'\x80\x37\x12\x40'
BYTE_SWAPPED_MAGIC = b'\x37\x80\x40\x12'
LITTLE_ENDIAN_MAGIC = b'\x40\x12\x37\x80'

WORD_SIZE = 4
IDENTITY = (0, 1, 2, 3)


class RomOrdering(Enum):
    """
    Byte ordering of a ROM dump.

    Each ordering is described by the position, within every 4-byte word, of
    the big-endian bytes: word[i] == big_endian_word[permutation[i]].
    """

    BIG_ENDIAN = ('big-endian', 'BigEndian', '.z64', BIG_ENDIAN_MAGIC, (0, 1, 2, 3))
    BYTE_SWAPPED = ('byte-swap', 'ByteSwap', '.v64', BYTE_SWAPPED_MAGIC, (1, 0, 3, 2))
    LITTLE_ENDIAN = ('little-endian', 'LittleEndian', '.n64', LITTLE_ENDIAN_MAGIC, (3, 2, 1, 0))

    def __init__(self, cli_name: str, label: str, extension: str,
                 magic: bytes, permutation: Tuple[int, int, int, int]):
        self.cli_name = cli_name
        self.label = label
        self.extension = extension
        self.magic = magic
        self.permutation = permutation

    def __str__(self) -> str:
        return f"{self.label} ({self.extension})"


def _invert(permutation: Tuple[int, ...]) -> Tuple[int, ...]:
    inverse = [0] * len(permutation)
    for i, j in enumerate(permutation):
        inverse[j] = i
    return tuple(inverse)


def _build_permutations() -> Dict[Tuple[RomOrdering, RomOrdering], Tuple[int, ...]]:
    """
    Precompute the per-word permutation for every (source, target) pair.

    Converting means undoing the source permutation to get back to big-endian
    and then applying the target one, so for output position i:

        out[i] = in[inverse(source)[target[i]]]
    """
    table = {}
    for source in RomOrdering:
        undo = _invert(source.permutation)
        for target in RomOrdering:
            table[(source, target)] = tuple(undo[k] for k in target.permutation)
    return table


# (source, target) -> source byte index for each output byte of a word
PERMUTATIONS = _build_permutations()


def identify(data: bytes) -> Optional[RomOrdering]:
    """
    Identify the byte ordering of a ROM from its header magic.

    Returns None when the buffer is shorter than one word or the first word
    matches none of the known orderings.
    """
    header = bytes(data[:WORD_SIZE])
    for ordering in RomOrdering:
        if header == ordering.magic:
            return ordering
    return None


def convert(data: bytes, source: RomOrdering, target: RomOrdering) -> bytearray:
    """
    Reorder the bytes of every 32-bit word from one ordering to another.

    The input is never modified; a new buffer of the same length is returned.
    A trailing partial word (length not a multiple of 4) is copied through
    unchanged.

    Example, big-endian to byte-swapped:
      Input:  [80][37][12][40] [00][00][00][0F]
      Output: [37][80][40][12] [00][00][0F][00]
    """
    permutation = PERMUTATIONS[(source, target)]
    out = bytearray(data)

    if permutation == IDENTITY:
        return out

    # Rearrange one byte lane at a time over all complete words
    aligned = len(data) - len(data) % WORD_SIZE
    for lane, src_lane in enumerate(permutation):
        out[lane:aligned:WORD_SIZE] = data[src_lane:aligned:WORD_SIZE]

    return out


def ordering_from_extension(path: Union[str, Path]) -> Optional[RomOrdering]:
    """Guess the ordering from a file name or bare extension (case insensitive)."""
    name = str(path)
    # Path('.z64').suffix is empty, so a bare extension is compared as is
    suffix = (Path(name).suffix or name).lower()
    for ordering in RomOrdering:
        if suffix == ordering.extension:
            return ordering
    return None


def ordering_from_name(name: str) -> RomOrdering:
    """Parse a command line ordering name such as 'byte-swap' or 'v64'."""
    key = name.strip().lower()
    for ordering in RomOrdering:
        if key in (ordering.cli_name, ordering.extension[1:]):
            return ordering
    raise ValueError(f"Unknown ROM ordering: {name}")


def resolve_target(explicit: Optional[RomOrdering],
                   destination: Optional[Path]) -> RomOrdering:
    """Explicit option first, then the destination extension, then big-endian."""
    if explicit is not None:
        return explicit
    if destination is not None:
        guessed = ordering_from_extension(destination)
        if guessed is not None:
            return guessed
    return RomOrdering.BIG_ENDIAN


def default_output_path(input_path: Path, target: RomOrdering) -> Path:
    """
    Derive the output name from the input name.

    A three letter extension (e.g. '.v64', '.rom') is replaced by the target's
    extension, anything else gets the extension appended.
    """
    name = input_path.name
    if len(name) >= 4 and name[-4] == '.':
        name = name[:-4]
    return input_path.with_name(name + target.extension)


def write_rom(path: Path, data: bytes, force: bool = False):
    """Write the converted ROM, refusing to replace an existing file unless forced."""
    with open(path, 'wb' if force else 'xb') as f:
        f.write(bytes(data))


def _romtype(value: str) -> RomOrdering:
    try:
        return ordering_from_name(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='n64rom',
        description='Identify and convert N64 ROMs between .z64, .v64 and .n64 byte orders',
        epilog='Example: %(prog)s -r byte-swap "Super Mario 64 (USA).z64"'
    )
    parser.add_argument('filename', type=Path, help='Input filename')
    parser.add_argument('destination_filename', type=Path, nargs='?',
                        help='Output filename (default: input name with the target extension)')
    parser.add_argument('-r', '--romtype', type=_romtype,
                        metavar='{big-endian,byte-swap,little-endian}',
                        help='Output type (default: from output extension, else big-endian)')
    parser.add_argument('-i', '--identify', action='store_true',
                        help='Identify rom type (and exit)')
    parser.add_argument('-f', '--force', action='store_true',
                        help='Force overwrite output file')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    input_path = args.filename

    try:
        data = input_path.read_bytes()
    except OSError:
        print(f"Unable to open file: {input_path}")
        return 1

    if len(data) < WORD_SIZE:
        print(f"Error reading file: {input_path}")
        return 1

    source = identify(data)
    if source is None:
        print(f"File {input_path} not recognized!")
        return 1

    if args.identify:
        print(f"File {input_path} is {source}")
        return 0

    target = resolve_target(args.romtype, args.destination_filename)
    if source == target:
        print(f"File is already {target}!")
        return 0

    output_path = args.destination_filename or default_output_path(input_path, target)
    if output_path.resolve() == input_path.resolve():
        print(f"Input and Output filenames are identical {output_path}, "
              f"consider renaming input file")
        return 1

    print(f"Converting: {input_path}")
    print(f"Output: {output_path}")

    converted = convert(data, source, target)

    try:
        write_rom(output_path, converted, force=args.force)
    except OSError as e:
        print(f"Unable to open file {output_path} for output. Error {e}")
        return 1

    remainder = len(data) % WORD_SIZE
    if remainder:
        print(f"Warning: {remainder} trailing byte(s) past the last full word copied unchanged")

    print(f"\nConversion complete!")
    print(f"  Source: {source}")
    print(f"  Target: {target}")
    print(f"  Size:   {len(converted):,} bytes ({len(converted) / 1024 / 1024:.1f} MB)")
    return 0


if __name__ == '__main__':
    sys.exit(main())
