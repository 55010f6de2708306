"""
Classifies files and builds LoadedFile instances.

Loading never fails for operating conditions: a file that isn't a PE image
becomes an unrecognized file, a PE image whose metadata can't be read
becomes a native image, and missing or broken symbols are ignored.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Hashable

from spyglass.core.files import LoadedFile
from spyglass.core.result import Err
from spyglass.loaders.image import (
    CLR_DIRECTORY_INDEX,
    CLR_HEADER_MIN_SIZE,
    ImageParser,
    ImageRef,
    LiefImageParser,
)
from spyglass.loaders.module import (
    AssemblyResolver,
    DnfileModuleParser,
    ModuleParser,
    ModuleRef,
    build_module_context,
)
from spyglass.loaders.symbols import SYMBOL_FILE_EXTENSION, symbol_path_for

if TYPE_CHECKING:
    from spyglass.core.config import SpyglassConfig

logger = logging.getLogger(__name__)


def is_managed(image: ImageRef) -> bool:
    """
    Check whether an image carries a CLR header.

    The COM descriptor directory must point somewhere and be at least as
    large as an IMAGE_COR20_HEADER.
    """
    directory = image.data_directory(CLR_DIRECTORY_INDEX)
    return directory.rva != 0 and directory.size >= CLR_HEADER_MIN_SIZE


class FileLoader:
    """
    Builds LoadedFile instances from paths or parsed modules.

    Example:
        >>> loader = FileLoader()
        >>> f = loader.load_from_path("Lib.dll", use_mapped_io=True, load_symbols=True)
        >>> f.kind
        <FileKind.MODULE: 3>
    """

    def __init__(
        self,
        image_parser: ImageParser | None = None,
        module_parser: ModuleParser | None = None,
        symbol_extension: str = SYMBOL_FILE_EXTENSION,
        use_mapped_io: bool = True,
        load_symbols: bool = True,
    ):
        self.image_parser = image_parser or LiefImageParser()
        self.module_parser = module_parser or DnfileModuleParser()
        self.symbol_extension = symbol_extension
        self.use_mapped_io = use_mapped_io
        self.load_symbols = load_symbols

    @classmethod
    def from_config(cls, config: SpyglassConfig, **kwargs) -> FileLoader:
        """Create a loader using the defaults of ``config.loader``."""
        return cls(
            symbol_extension=config.loader.symbol_extension,
            use_mapped_io=config.loader.use_mapped_io,
            load_symbols=config.loader.load_symbols,
            **kwargs,
        )

    def load(
        self,
        path: str | Path,
        resolver: AssemblyResolver | None = None,
        key: Hashable | None = None,
    ) -> LoadedFile:
        """Load a file with this loader's default options."""
        return self.load_from_path(
            path,
            use_mapped_io=self.use_mapped_io,
            load_symbols=self.load_symbols,
            resolver=resolver,
            key=key,
        )

    def load_from_path(
        self,
        path: str | Path,
        use_mapped_io: bool,
        load_symbols: bool,
        resolver: AssemblyResolver | None = None,
        key: Hashable | None = None,
    ) -> LoadedFile:
        """
        Load a file from disk.

        Args:
            path: Path to the file
            use_mapped_io: Memory map the file instead of reading it
            load_symbols: Look for a symbol file next to managed modules
            resolver: Assembly resolver handed to managed modules
            key: Identity key overriding the path-based default

        Returns:
            A LoadedFile; never raises for unreadable or malformed input
        """
        path = os.fspath(path)

        opened = self.image_parser.open(path, mapped=use_mapped_io)
        if isinstance(opened, Err):
            logger.debug(f"{path}: unrecognized ({opened})")
            return LoadedFile.unrecognized(path, key=key)

        image = opened.value
        if is_managed(image):
            parsed = self.module_parser.parse(image, build_module_context(resolver))
            if not isinstance(parsed, Err):
                module = parsed.value
                logger.debug(f"{path}: managed module {module.name!r}")
                loaded = LoadedFile.from_module(module, key=key)
                if load_symbols:
                    self._load_symbols(module)
                return loaded
            logger.debug(f"{path}: CLR header present but metadata unreadable ({parsed})")
        else:
            logger.debug(f"{path}: native image")

        return LoadedFile.from_image(image, key=key)

    def load_from_module(
        self,
        module: ModuleRef,
        load_symbols: bool,
        resolver: AssemblyResolver | None = None,
        key: Hashable | None = None,
    ) -> LoadedFile:
        """
        Wrap a module the caller already parsed, e.g. one built in memory.

        The module gets a fresh context around ``resolver``. Symbols are
        looked up next to ``module.location``.
        """
        module.context = build_module_context(resolver)
        loaded = LoadedFile.from_module(module, key=key)
        if load_symbols:
            self._load_symbols(module)
        return loaded

    def _load_symbols(self, module: ModuleRef) -> None:
        location = module.location
        if not location:
            return
        # Already set when the same module instance is removed and added again
        if module.has_symbols:
            return

        candidate = symbol_path_for(location, self.symbol_extension)
        if candidate is None or not candidate.is_file():
            logger.debug(f"No symbol file for {location}")
            return

        result = module.load_symbols(candidate)
        if isinstance(result, Err):
            logger.debug(f"Ignoring symbols for {location}: {result}")


_default_loader: FileLoader | None = None


def default_loader() -> FileLoader:
    """Get the shared loader using the LIEF and dnfile parsers."""
    global _default_loader
    if _default_loader is None:
        _default_loader = FileLoader()
    return _default_loader


def load_from_path(
    path: str | Path,
    use_mapped_io: bool = True,
    load_symbols: bool = True,
    resolver: AssemblyResolver | None = None,
) -> LoadedFile:
    """Load a file from disk with the default loader."""
    return default_loader().load_from_path(path, use_mapped_io, load_symbols, resolver)


def load_from_module(
    module: ModuleRef,
    load_symbols: bool = True,
    resolver: AssemblyResolver | None = None,
) -> LoadedFile:
    """Wrap a parsed module with the default loader."""
    return default_loader().load_from_module(module, load_symbols, resolver)
