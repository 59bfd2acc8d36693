"""Fixed-width block file naming.

Block numbers are written as zero-padded decimal strings of a fixed width,
so comparing two names as strings gives the same answer as comparing the
numbers. Anything that does not fit the width is rejected instead of being
silently misordered.
"""

from __future__ import annotations

import os

from blockship.constants import BLOCK_NUMBER_WIDTH, TEMP_FILE_MARKER


def encode_block_number(number: int, width: int = BLOCK_NUMBER_WIDTH) -> str:
    """Encode *number* as a zero-padded block name.

    Raises:
        ValueError: If *number* is negative or needs more than *width* digits.
    """
    if number < 0:
        raise ValueError(f"Block number must be non-negative, got {number}")
    name = str(number).zfill(width)
    if len(name) > width:
        raise ValueError(f"Block number {number} does not fit in {width} digits")
    return name


def is_block_name(name: str, width: int = BLOCK_NUMBER_WIDTH) -> bool:
    """True if *name* is exactly *width* ASCII decimal digits."""
    return len(name) == width and name.isascii() and name.isdigit()


def parse_block_number(name: str, width: int = BLOCK_NUMBER_WIDTH) -> int:
    """Decode a block name (basename or full path) back to its number.

    Raises:
        ValueError: If the basename is not a valid block name.
    """
    base = os.path.basename(name)
    if not is_block_name(base, width):
        raise ValueError(f"Not a {width}-digit block name: {base!r}")
    return int(base)


def is_temp_file(path: str, marker: str = TEMP_FILE_MARKER) -> bool:
    """True if the basename of *path* carries the producer's temp marker."""
    return bool(marker) and marker in os.path.basename(path)
