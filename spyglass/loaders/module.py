"""
Managed (.NET) module access for Spyglass.

Wraps dnfile for metadata parsing. A module parsed from an opened image
takes ownership of that image: closing the module closes the image too.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator, Protocol

from spyglass.core.result import Err, Ok, Result
from spyglass.loaders.image import ImageRef
from spyglass.loaders.symbols import SymbolData, read_symbols

if TYPE_CHECKING:
    import dnfile

logger = logging.getLogger(__name__)

# TypeDef table number, high byte of a metadata token
TYPEDEF_TABLE = 0x02


@dataclass(frozen=True)
class AssemblyRef:
    """Identity of an assembly."""
    name: str
    version: tuple[int, int, int, int] = (0, 0, 0, 0)
    culture: str = ""

    @property
    def full_name(self) -> str:
        version = ".".join(str(part) for part in self.version)
        culture = self.culture or "neutral"
        return f"{self.name}, Version={version}, Culture={culture}"


@dataclass(frozen=True)
class TypeInfo:
    """A type defined in a module."""
    namespace: str
    name: str
    token: int

    @property
    def full_name(self) -> str:
        return f"{self.namespace}.{self.name}" if self.namespace else self.name


class AssemblyResolver(Protocol):
    """Finds the manifest module of a referenced assembly."""

    def resolve(self, assembly: AssemblyRef) -> ModuleRef | None:
        ...


@dataclass
class TokenResolver:
    """
    Resolves references from one module into the assemblies defining them.

    ``project_winmd_refs`` controls whether Windows Runtime metadata
    references are projected onto their CLR equivalents. Navigation keeps
    it off so a reference leads to the type as it is written on disk.
    """
    assembly_resolver: AssemblyResolver | None = None
    project_winmd_refs: bool = False

    def resolve_assembly(self, assembly: AssemblyRef) -> ModuleRef | None:
        if self.assembly_resolver is None:
            return None
        return self.assembly_resolver.resolve(assembly)

    def resolve_type(self, assembly: AssemblyRef, namespace: str, name: str) -> TypeInfo | None:
        """Resolve a type reference through the assembly that defines it."""
        module = self.resolve_assembly(assembly)
        if module is None:
            return None
        return module.find_type(namespace, name)


@dataclass
class ModuleContext:
    """Shared state used while loading modules."""
    assembly_resolver: AssemblyResolver | None = None
    resolver: TokenResolver = field(default_factory=TokenResolver)


def build_module_context(assembly_resolver: AssemblyResolver | None) -> ModuleContext:
    """
    Create the context used for modules opened for browsing.

    WinMD projection is disabled on the token resolver; signature comparison
    done by the decompiler projects on its own.
    """
    return ModuleContext(
        assembly_resolver=assembly_resolver,
        resolver=TokenResolver(assembly_resolver, project_winmd_refs=False),
    )


class ModuleRef(ABC):
    """A parsed managed module."""

    def __init__(self, location: str = "", context: ModuleContext | None = None):
        self.location = location
        self.context = context
        self.symbols: SymbolData | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Module name from metadata."""
        ...

    @property
    @abstractmethod
    def assembly(self) -> AssemblyRef | None:
        """The assembly this module is the manifest of, if any."""
        ...

    @property
    def image(self) -> ImageRef | None:
        """The image the module was read from, None for in-memory modules."""
        return None

    @property
    def has_symbols(self) -> bool:
        return self.symbols is not None

    def load_symbols(self, path: str | Path) -> Result[SymbolData]:
        """Read a symbol file and attach it to this module."""
        result = read_symbols(path)
        if isinstance(result, Ok):
            self.symbols = result.value
        return result

    @abstractmethod
    def enable_type_lookup_cache(self, enabled: bool) -> None:
        ...

    @abstractmethod
    def find_type(self, namespace: str, name: str) -> TypeInfo | None:
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the module and the image it owns."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, location={self.location!r})"


class ModuleParser(ABC):
    """Parses managed modules out of opened images."""

    @abstractmethod
    def parse(self, image: ImageRef, context: ModuleContext) -> Result[ModuleRef]:
        """
        Parse the metadata of an image.

        On failure the image is left open and untouched; the caller decides
        what to do with it.
        """
        ...


class DnfileModule(ModuleRef):
    """
    Managed module parsed by dnfile.

    Example:
        >>> result = DnfileModuleParser().parse_bytes(data, location="Lib.dll")
        >>> module = result.value
        >>> module.find_type("System", "Object")
    """

    def __init__(
        self,
        pe: dnfile.dnPE,
        location: str = "",
        image: ImageRef | None = None,
        context: ModuleContext | None = None,
    ):
        super().__init__(location, context)
        self.pe = pe
        self._image = image
        self._cache_enabled = False
        # Built on the first cached lookup
        self._type_cache: dict[tuple[str, str], TypeInfo] | None = None

    @property
    def image(self) -> ImageRef | None:
        return self._image

    @property
    def name(self) -> str:
        rows = _rows(self.pe.net.mdtables.Module)
        if not rows:
            return ""
        return _text(rows[0].Name)

    @property
    def assembly(self) -> AssemblyRef | None:
        rows = _rows(self.pe.net.mdtables.Assembly)
        if not rows:
            return None
        row = rows[0]
        return AssemblyRef(
            name=_text(row.Name),
            version=(
                int(row.MajorVersion or 0),
                int(row.MinorVersion or 0),
                int(row.BuildNumber or 0),
                int(row.RevisionNumber or 0),
            ),
            culture=_text(row.Culture),
        )

    def enable_type_lookup_cache(self, enabled: bool) -> None:
        self._cache_enabled = enabled
        if not enabled:
            self._type_cache = None

    def find_type(self, namespace: str, name: str) -> TypeInfo | None:
        """Find a type definition; the first row wins when names repeat."""
        if not self._cache_enabled:
            for info in self._iter_types():
                if info.namespace == namespace and info.name == name:
                    return info
            return None

        if self._type_cache is None:
            self._type_cache = {}
            for info in self._iter_types():
                self._type_cache.setdefault((info.namespace, info.name), info)
        return self._type_cache.get((namespace, name))

    def _iter_types(self) -> Iterator[TypeInfo]:
        for index, row in enumerate(_rows(self.pe.net.mdtables.TypeDef), start=1):
            yield TypeInfo(
                namespace=_text(row.TypeNamespace),
                name=_text(row.TypeName),
                token=(TYPEDEF_TABLE << 24) | index,
            )

    def close(self) -> None:
        self.pe.close()
        self._type_cache = None
        if self._image is not None:
            self._image.close()


class DnfileModuleParser(ModuleParser):
    """Managed module parser using dnfile."""

    def parse(self, image: ImageRef, context: ModuleContext) -> Result[ModuleRef]:
        result = self._load(image.data)
        if isinstance(result, Err):
            return result
        return Ok(DnfileModule(
            result.value,
            location=image.file_name,
            image=image,
            context=context,
        ))

    def parse_bytes(
        self,
        data: bytes,
        location: str = "",
        context: ModuleContext | None = None,
    ) -> Result[ModuleRef]:
        """Parse a module held in memory, with no backing image."""
        result = self._load(data)
        if isinstance(result, Err):
            return result
        return Ok(DnfileModule(result.value, location=location, context=context))

    def _load(self, data: Any) -> Result[dnfile.dnPE]:
        import dnfile

        try:
            pe = dnfile.dnPE(data=data)
        except Exception as e:
            return Err("dnfile failed to parse the image", e)

        net = getattr(pe, "net", None)
        if net is None or getattr(net, "mdtables", None) is None:
            pe.close()
            return Err("no CLR metadata")
        if not _rows(net.mdtables.Module):
            pe.close()
            return Err("metadata has no Module table")

        return Ok(pe)


def _rows(table: Any) -> list:
    if table is None:
        return []
    return list(table.rows or [])


def _text(item: Any) -> str:
    """Get the string behind a dnfile heap item."""
    if item is None:
        return ""
    value = getattr(item, "value", item)
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
