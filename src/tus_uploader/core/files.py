"""Local file helpers: bounded byte copies and file splitting."""

import logging
import os
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Tuple, Union

from .exceptions import NetworkError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 2 * 1024 * 1024


def copy_range(
    reader: BinaryIO,
    write: Callable[[bytes], Optional[int]],
    length: Optional[int] = None,
    block_size: int = DEFAULT_BLOCK_SIZE,
) -> int:
    """Copy bytes from ``reader``'s current position into ``write``.

    Copies ``length`` bytes, or until EOF when ``length`` is None.

    Returns:
        Number of bytes copied
    """
    copied = 0
    while length is None or copied < length:
        want = block_size if length is None else min(block_size, length - copied)
        data = reader.read(want)
        if not data:
            if length is not None:
                raise EOFError(f"Source ended after {copied} of {length} bytes")
            break
        written = write(data)
        if written is not None and written != len(data):
            raise NetworkError(f"Short write: {written} of {len(data)} bytes accepted")
        copied += len(data)
    return copied


def split_file(
    input_path: Union[str, Path],
    part1_path: Union[str, Path],
    part2_path: Union[str, Path],
    split_at: int,
) -> Tuple[int, int]:
    """Split a file into two files at byte ``split_at``.

    Returns:
        Sizes of the two parts
    """
    total_size = os.path.getsize(input_path)
    if split_at <= 0 or split_at >= total_size:
        raise ValidationError(
            "split_at", split_at, f"must be between 0 and the file size ({total_size}), exclusive"
        )

    with open(input_path, "rb") as src:
        with open(part1_path, "wb") as part1:
            copy_range(src, part1.write, split_at)
        with open(part2_path, "wb") as part2:
            copy_range(src, part2.write, total_size - split_at)

    logger.info(
        f"Split {input_path} into {part1_path} ({split_at} bytes) "
        f"and {part2_path} ({total_size - split_at} bytes)"
    )
    return split_at, total_size - split_at
