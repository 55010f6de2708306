"""
Loaded file representation for Spyglass.

A LoadedFile is what the rest of the tool holds for every file the user
opened (or that was pulled in as a dependency). It has exactly one of three
backings, chosen at construction and never changed:

* UnrecognizedBacking - the file isn't a parseable PE image
* ImageBacking        - a native PE image without CLR metadata
* ModuleBacking       - a managed module

All three share the same identity, naming and annotation surface.
"""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Hashable, TypeVar, Union

from spyglass.core.annotations import AnnotationStore

if TYPE_CHECKING:
    from spyglass.loaders.image import ImageRef
    from spyglass.loaders.module import AssemblyRef, ModuleRef

logger = logging.getLogger(__name__)

V = TypeVar("V")


class FileKind(Enum):
    """Kinds of loaded file."""
    UNRECOGNIZED = auto()
    IMAGE = auto()
    MODULE = auto()


@dataclass(frozen=True)
class UnrecognizedBacking:
    """No parsed representation, only the path."""


@dataclass(frozen=True)
class ImageBacking:
    """An opened native image, owned by the file."""
    image: ImageRef


@dataclass(frozen=True)
class ModuleBacking:
    """A parsed managed module, owned by the file."""
    module: ModuleRef


Backing = Union[UnrecognizedBacking, ImageBacking, ModuleBacking]


@dataclass(frozen=True)
class FilenameKey:
    """Identifies a file by its path."""
    filename: str


@dataclass(frozen=True)
class ContentKey:
    """Identifies a file by the SHA-256 of its contents."""
    sha256: str

    @classmethod
    def from_bytes(cls, data: bytes) -> ContentKey:
        return cls(hashlib.sha256(data).hexdigest())

    @classmethod
    def from_file(cls, path: str | Path) -> ContentKey:
        return cls.from_bytes(Path(path).read_bytes())


def short_name_for(path: str, default: str = "") -> str:
    """
    Get the display name for a file path.

    Tries, in order: the file name without extension, the file name, the
    raw path (unless it names a directory), then ``default``.

    Args:
        path: File path, may be empty
        default: Name used when the path yields nothing usable

    Returns:
        Short display name
    """
    name = path.split("/")[-1].split("\\")[-1]
    stem = os.path.splitext(name)[0]
    if stem.strip():
        return stem
    if name.strip():
        return name
    if path and not path.endswith(("/", "\\")):
        return path
    return default or ""


class LoadedFile:
    """
    A file loaded into the tool.

    Build instances through :meth:`unrecognized`, :meth:`from_image` or
    :meth:`from_module` (or through the loader). Views that don't apply to
    the backing return None.

    ``file_path`` can be assigned once, and only if the file was built
    without a path. ``close()`` releases the owned image or module and must
    be called at most once.

    Example:
        >>> f = LoadedFile.unrecognized("/tmp/notes.txt")
        >>> f.kind, f.short_name
        (<FileKind.UNRECOGNIZED: 1>, 'notes')
    """

    def __init__(
        self,
        backing: Backing,
        file_path: str = "",
        *,
        key: Hashable | None = None,
        persistable: bool = True,
    ):
        self._backing = backing
        self._file_path = file_path or ""
        self._key = key
        self._persistable = persistable
        self.is_auto_loaded = False
        self.annotations = AnnotationStore()
        self._short_name = short_name_for(self._file_path, self._default_name())

    @classmethod
    def unrecognized(cls, file_path: str, **kwargs: Any) -> LoadedFile:
        return cls(UnrecognizedBacking(), file_path, **kwargs)

    @classmethod
    def from_image(cls, image: ImageRef, **kwargs: Any) -> LoadedFile:
        return cls(ImageBacking(image), image.file_name or "", **kwargs)

    @classmethod
    def from_module(cls, module: ModuleRef, **kwargs: Any) -> LoadedFile:
        module.enable_type_lookup_cache(True)
        return cls(ModuleBacking(module), module.location or "", **kwargs)

    @property
    def backing(self) -> Backing:
        return self._backing

    @property
    def kind(self) -> FileKind:
        if isinstance(self._backing, ModuleBacking):
            return FileKind.MODULE
        if isinstance(self._backing, ImageBacking):
            return FileKind.IMAGE
        return FileKind.UNRECOGNIZED

    @property
    def key(self) -> Hashable:
        """Key used to find duplicates among loaded files."""
        if self._key is not None:
            return self._key
        return FilenameKey(self._file_path)

    @property
    def module(self) -> ModuleRef | None:
        if isinstance(self._backing, ModuleBacking):
            return self._backing.module
        return None

    @property
    def assembly(self) -> AssemblyRef | None:
        """The assembly, or None if this isn't managed or is a secondary module."""
        module = self.module
        return None if module is None else module.assembly

    @property
    def image(self) -> ImageRef | None:
        if isinstance(self._backing, ImageBacking):
            return self._backing.image
        if isinstance(self._backing, ModuleBacking):
            return self._backing.module.image
        return None

    @property
    def file_path(self) -> str:
        return self._file_path

    @file_path.setter
    def file_path(self, value: str) -> None:
        assert not self._file_path, "file_path is already set"
        assert value, "file_path can't be empty"
        self._file_path = value
        self._short_name = short_name_for(value, self._default_name())

    @property
    def short_name(self) -> str:
        return self._short_name

    @property
    def persistable(self) -> bool:
        """Whether the file should be remembered across sessions."""
        return self._persistable

    def get_or_create_annotation(
        self,
        key: Any,
        value_type: type[V],
        factory: Callable[[], V] | None = None,
    ) -> V:
        return self.annotations.get_or_create(key, value_type, factory)

    def get_annotation(self, key: Any, value_type: type[V], default: V | None = None) -> V | None:
        return self.annotations.get(key, value_type, default)

    def remove_annotation(self, key: Any, value_type: type | None = None) -> None:
        self.annotations.remove(key, value_type)

    def info(self) -> dict:
        """
        Get summary information about the file.

        Returns:
            Dictionary with file metadata
        """
        module = self.module
        assembly = self.assembly
        image = self.image
        return {
            "path": self._file_path,
            "name": self._short_name,
            "kind": self.kind.name,
            "auto_loaded": self.is_auto_loaded,
            "persistable": self._persistable,
            "module": module.name if module is not None else None,
            "assembly": assembly.full_name if assembly is not None else None,
            "has_symbols": module.has_symbols if module is not None else False,
            "image_size": image.size if image is not None else 0,
        }

    def close(self) -> None:
        """Release the owned image or module."""
        if isinstance(self._backing, ModuleBacking):
            logger.debug(f"Closing module {self._file_path or self._short_name}")
            self._backing.module.close()
        elif isinstance(self._backing, ImageBacking):
            logger.debug(f"Closing image {self._file_path}")
            self._backing.image.close()

    dispose = close

    def __enter__(self) -> LoadedFile:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _default_name(self) -> str:
        module = self.module
        return module.name if module is not None else ""

    def __repr__(self) -> str:
        return f"LoadedFile({self.kind.name}, {self._file_path!r})"
