"""
PE image access for Spyglass.

Opens a file (memory mapped or read fully into memory) and parses its PE
headers with LIEF. Only what the loader needs is exposed: the data
directory table, the raw file view and a way to release it.
"""

from __future__ import annotations

import logging
import mmap
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING, Union

from spyglass.core.result import Err, Ok, Result

if TYPE_CHECKING:
    import lief

logger = logging.getLogger(__name__)

# PE magic bytes
PE_MAGIC_MZ = b"MZ"
PE_SIGNATURE = b"PE\x00\x00"

# IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR and sizeof(IMAGE_COR20_HEADER)
CLR_DIRECTORY_INDEX = 14
CLR_HEADER_MIN_SIZE = 0x48

ImageSource = Union[str, Path, bytes, bytearray, memoryview]

_lief_silenced = False


@dataclass(frozen=True)
class DataDirectory:
    """An optional-header data directory entry."""
    rva: int = 0
    size: int = 0


class ImageRef(ABC):
    """An opened executable image."""

    def __init__(self, file_name: str = ""):
        self.file_name = file_name

    @abstractmethod
    def data_directory(self, index: int) -> DataDirectory:
        """Get a data directory, or an empty one when the table is shorter."""
        ...

    @property
    @abstractmethod
    def data(self) -> bytes | mmap.mmap:
        """Raw bytes of the file."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the underlying file view."""
        ...

    @property
    def size(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.file_name!r})"


class ImageParser(ABC):
    """Opens files as executable images."""

    @abstractmethod
    def open(self, source: ImageSource, mapped: bool = True) -> Result[ImageRef]:
        """
        Open and parse an image.

        Args:
            source: File path, or the file contents
            mapped: Memory map the file instead of reading it into memory

        Returns:
            ``Ok(ImageRef)`` or ``Err`` describing why the input isn't an image
        """
        ...


class LiefImage(ImageRef):
    """PE image parsed by LIEF, backed by an in-memory buffer or a memory map."""

    def __init__(
        self,
        binary: lief.PE.Binary,
        data: bytes | mmap.mmap,
        file_name: str = "",
        handle: IO[bytes] | None = None,
    ):
        super().__init__(file_name)
        self.binary = binary
        self._data = data
        self._handle = handle

    @property
    def data(self) -> bytes | mmap.mmap:
        return self._data

    @property
    def is_mapped(self) -> bool:
        return isinstance(self._data, mmap.mmap)

    def data_directory(self, index: int) -> DataDirectory:
        directories = self.binary.data_directories
        if index >= len(directories):
            return DataDirectory()
        entry = directories[index]
        return DataDirectory(rva=int(entry.rva), size=int(entry.size))

    def close(self) -> None:
        _release(self._data, self._handle)
        self.binary = None
        self._handle = None


class LiefImageParser(ImageParser):
    """
    PE image parser using LIEF.

    Example:
        >>> parser = LiefImageParser()
        >>> result = parser.open("notepad.exe", mapped=True)
        >>> if result.ok:
        ...     print(result.value.data_directory(CLR_DIRECTORY_INDEX))
    """

    def open(self, source: ImageSource, mapped: bool = True) -> Result[ImageRef]:
        if isinstance(source, (bytes, bytearray, memoryview)):
            return self._parse(bytes(source), file_name="", path=None, handle=None)

        path = Path(source)
        handle = None
        try:
            if mapped:
                handle = path.open("rb")
                data = mmap.mmap(handle.fileno(), 0, access=mmap.ACCESS_READ)
            else:
                data = path.read_bytes()
        except (OSError, ValueError) as e:
            # mmap refuses empty files with ValueError
            if handle is not None:
                handle.close()
            return Err(f"cannot read {path}", e)

        return self._parse(data, file_name=str(path), path=path, handle=handle)

    def _parse(
        self,
        data: bytes | mmap.mmap,
        file_name: str,
        path: Path | None,
        handle: IO[bytes] | None,
    ) -> Result[ImageRef]:
        if not looks_like_pe(data):
            _release(data, handle)
            return Err("missing MZ/PE signature")

        lief = _import_lief()

        try:
            if path is not None and handle is not None:
                binary = lief.PE.parse(str(path))
            else:
                binary = lief.PE.parse(bytes(data))
        except Exception as e:
            _release(data, handle)
            return Err("LIEF failed to parse PE headers", e)

        if binary is None:
            _release(data, handle)
            return Err("LIEF failed to parse PE headers")

        logger.debug(f"Opened PE image {file_name or '<memory>'} ({len(data)} bytes)")
        return Ok(LiefImage(binary, data, file_name=file_name, handle=handle))


def looks_like_pe(data: bytes | mmap.mmap) -> bool:
    """Check for the DOS stub magic and the PE signature it points to."""
    if len(data) < 64:
        return False
    if data[:2] != PE_MAGIC_MZ:
        return False
    pe_offset = struct.unpack_from("<I", data, 0x3C)[0]
    if pe_offset + 4 > len(data):
        return False
    return data[pe_offset:pe_offset + 4] == PE_SIGNATURE


def _import_lief():
    """
    Import LIEF with its own stderr logger switched off.

    LIEF otherwise reports every malformed section or resource tree on
    stderr. Parse failures reach callers as ``Err`` values instead.
    """
    global _lief_silenced
    import lief

    if not _lief_silenced:
        lief.logging.disable()
        _lief_silenced = True
    return lief


def _release(data: bytes | mmap.mmap, handle: IO[bytes] | None) -> None:
    if isinstance(data, mmap.mmap):
        data.close()
    if handle is not None:
        handle.close()
