"""
Debug symbol files.

A module's symbols live next to it under the same base name with a fixed
extension. Decoding the symbol file is left to the consumer; this module
locates the file, recognizes its container format and keeps its bytes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path

from spyglass.core.result import Err, Ok, Result

logger = logging.getLogger(__name__)

SYMBOL_FILE_EXTENSION = ".pdb"

# Portable PDBs are ECMA-335 metadata blobs
PORTABLE_PDB_MAGIC = b"BSJB"
MSF7_MAGIC = b"Microsoft C/C++ MSF 7.00\r\n\x1aDS\x00\x00\x00"
MSF2_MAGIC = b"Microsoft C/C++ program database 2.00\r\n\x1aJG\x00\x00"


class SymbolFormat(Enum):
    """Symbol file container formats."""
    PORTABLE = auto()
    WINDOWS = auto()


@dataclass
class SymbolData:
    """Symbol data attached to a module."""
    path: Path
    format: SymbolFormat
    raw_data: bytes = field(default=b"", repr=False)

    @property
    def size(self) -> int:
        return len(self.raw_data)


def symbol_path_for(location: str, extension: str = SYMBOL_FILE_EXTENSION) -> Path | None:
    """
    Get the candidate symbol file path for a module location.

    The extension of ``location`` is replaced, keeping the directory.

    Args:
        location: Path of the module on disk
        extension: Symbol file extension including the dot

    Returns:
        Candidate path, or None when ``location`` has no file name
    """
    if not location:
        return None
    path = Path(location)
    if not path.name:
        return None
    return path.with_name(path.stem + extension)


def detect_symbol_format(data: bytes) -> SymbolFormat | None:
    """Detect the container format of a symbol file from its header."""
    if data.startswith(PORTABLE_PDB_MAGIC):
        return SymbolFormat.PORTABLE
    if data.startswith(MSF7_MAGIC) or data.startswith(MSF2_MAGIC):
        return SymbolFormat.WINDOWS
    return None


def read_symbols(path: str | Path) -> Result[SymbolData]:
    """
    Read a symbol file.

    Args:
        path: Path to the symbol file

    Returns:
        ``Ok(SymbolData)``, or ``Err`` if the file is unreadable or not a PDB
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        return Err(f"cannot read symbol file {path}", e)

    fmt = detect_symbol_format(data)
    if fmt is None:
        return Err(f"unrecognized symbol file format: {path}")

    logger.debug(f"Read {fmt.name.lower()} symbols from {path}")
    return Ok(SymbolData(path=path, format=fmt, raw_data=data))
