"""Tests for PE image opening and symbol file helpers."""

import struct
from pathlib import Path
from types import SimpleNamespace

import pytest

from spyglass.core.result import Err
from spyglass.loaders import image as image_module
from spyglass.loaders.image import (
    CLR_DIRECTORY_INDEX,
    DataDirectory,
    LiefImage,
    LiefImageParser,
    looks_like_pe,
)
from spyglass.loaders.symbols import (
    MSF7_MAGIC,
    PORTABLE_PDB_MAGIC,
    SymbolFormat,
    detect_symbol_format,
    read_symbols,
    symbol_path_for,
)
from spyglass.tests.samples import SECTION_RVA, build_managed_pe, build_pe


def dos_stub(pe_offset=0x80, signature=b"PE\x00\x00", length=0x100):
    data = bytearray(length)
    data[:2] = b"MZ"
    struct.pack_into("<I", data, 0x3C, pe_offset)
    if pe_offset + 4 <= length:
        data[pe_offset:pe_offset + 4] = signature
    return bytes(data)


class TestSignature:
    """Test suite for the PE signature check."""

    def test_valid_stub(self):
        """Test that a DOS stub pointing at a PE signature is accepted."""
        assert looks_like_pe(dos_stub())

    def test_short_input(self):
        """Test that input shorter than a DOS header is rejected."""
        assert not looks_like_pe(b"")
        assert not looks_like_pe(b"MZ" + bytes(10))

    def test_wrong_magic(self):
        """Test that non-MZ input is rejected."""
        assert not looks_like_pe(b"\x7fELF" + bytes(100))

    def test_pe_offset_out_of_range(self):
        """Test that a PE offset past the end of the data is rejected."""
        assert not looks_like_pe(dos_stub(pe_offset=0xFFFFFF00))

    def test_bad_signature(self):
        """Test that a non-PE signature is rejected."""
        assert not looks_like_pe(dos_stub(signature=b"NE\x00\x00"))

    def test_built_samples(self):
        """Test that the sample builders produce PE signatures."""
        assert looks_like_pe(build_pe())
        assert looks_like_pe(build_managed_pe())


class TestLiefImage:
    """Test suite for LiefImage data directory access."""

    def _image(self, directories):
        binary = SimpleNamespace(data_directories=[
            SimpleNamespace(rva=rva, size=size) for rva, size in directories
        ])
        return LiefImage(binary, b"MZ", file_name="/x/a.exe")

    def test_directory_lookup(self):
        """Test reading an entry of the data directory table."""
        dirs = [(0, 0)] * 14 + [(0x2008, 0x48)]
        assert self._image(dirs).data_directory(14) == DataDirectory(0x2008, 0x48)

    def test_short_table_yields_empty_directory(self):
        """Test that a missing directory reads as empty."""
        assert self._image([(0, 0)] * 10).data_directory(14) == DataDirectory(0, 0)

    def test_close(self):
        """Test that close drops the parsed binary."""
        image = self._image([])
        image.close()
        assert image.binary is None


class TestLiefImageParser:
    """Test suite for LiefImageParser."""

    def test_in_memory_garbage(self):
        """Test that bytes without a PE signature are an error."""
        assert isinstance(LiefImageParser().open(b"hello", mapped=False), Err)

    @pytest.mark.parametrize("mapped", [True, False])
    def test_empty_file(self, tmp_path, mapped):
        """Test that an empty file is an error in both IO modes."""
        path = tmp_path / "empty.exe"
        path.write_bytes(b"")

        result = LiefImageParser().open(path, mapped=mapped)

        assert isinstance(result, Err)

    def test_missing_file(self, tmp_path):
        """Test that a missing file reports the OS error."""
        result = LiefImageParser().open(tmp_path / "missing.exe", mapped=False)

        assert isinstance(result, Err)
        assert isinstance(result.error, OSError)
        assert "cannot read" in str(result)

    @pytest.mark.parametrize("mapped", [True, False])
    def test_native_image(self, tmp_path, mapped):
        """Test opening a PE image without a CLR header."""
        pytest.importorskip("lief")
        path = tmp_path / "native.exe"
        path.write_bytes(build_pe())

        result = LiefImageParser().open(path, mapped=mapped)

        assert result.ok
        image = result.value
        assert image.file_name == str(path)
        assert image.is_mapped is mapped
        assert image.size == path.stat().st_size
        assert image.data_directory(CLR_DIRECTORY_INDEX) == DataDirectory(0, 0)
        image.close()
        if mapped:
            assert image.data.closed

    @pytest.mark.parametrize("mapped", [True, False])
    def test_clr_directory(self, tmp_path, mapped):
        """Test that the CLR directory of a managed image is read by LIEF."""
        pytest.importorskip("lief")
        path = tmp_path / "Lib.dll"
        path.write_bytes(build_managed_pe())

        result = LiefImageParser().open(path, mapped=mapped)

        assert result.ok
        assert result.value.data_directory(CLR_DIRECTORY_INDEX) == DataDirectory(SECTION_RVA, 0x48)
        result.value.close()

    def test_in_memory_image(self):
        """Test opening an image from bytes."""
        pytest.importorskip("lief")

        result = LiefImageParser().open(build_pe(), mapped=True)

        assert result.ok
        assert result.value.file_name == ""
        assert not result.value.is_mapped
        result.value.close()

    def test_lief_logging_disabled_once(self, monkeypatch):
        """Test that LIEF's own logger is switched off before the first parse."""
        lief = pytest.importorskip("lief")
        calls = []
        monkeypatch.setattr(lief.logging, "disable", lambda: calls.append(True))
        monkeypatch.setattr(image_module, "_lief_silenced", False)

        parser = LiefImageParser()
        parser.open(build_pe(), mapped=False).value.close()
        parser.open(build_pe(), mapped=False).value.close()

        assert calls == [True]


class TestSymbolFiles:
    """Test suite for symbol file helpers."""

    def test_symbol_path_replaces_extension(self):
        """Test that the module extension is swapped for .pdb."""
        assert symbol_path_for("/a/b/Foo.dll") == Path("/a/b/Foo.pdb")

    def test_symbol_path_without_extension(self):
        """Test a module location with no extension."""
        assert symbol_path_for("/a/b/Foo") == Path("/a/b/Foo.pdb")

    def test_symbol_path_custom_extension(self):
        """Test a configured symbol extension."""
        assert symbol_path_for("/a/b/Foo.exe", ".sym") == Path("/a/b/Foo.sym")

    def test_symbol_path_empty(self):
        """Test that an empty location has no symbol path."""
        assert symbol_path_for("") is None

    def test_formats(self):
        """Test portable and Windows PDB detection."""
        assert detect_symbol_format(PORTABLE_PDB_MAGIC + bytes(8)) == SymbolFormat.PORTABLE
        assert detect_symbol_format(MSF7_MAGIC + bytes(8)) == SymbolFormat.WINDOWS
        assert detect_symbol_format(b"garbage") is None

    def test_read_symbols(self, tmp_path):
        """Test reading a Windows PDB."""
        path = tmp_path / "Foo.pdb"
        path.write_bytes(MSF7_MAGIC + bytes(32))

        result = read_symbols(path)

        assert result.ok
        assert result.value.format == SymbolFormat.WINDOWS
        assert result.value.size == len(MSF7_MAGIC) + 32

    def test_read_missing_symbols(self, tmp_path):
        """Test that a missing symbol file is an error."""
        result = read_symbols(tmp_path / "Foo.pdb")
        assert isinstance(result, Err)
        assert not result.ok
