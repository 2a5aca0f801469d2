"""tests for buffer ownership and file mapping"""

import pytest

from userdmp.mapping import BufferArena, MappedFile
from userdmp.minidump import FileOpenError, MappingError


class TestBufferArena:
    """test slice tracking and release"""

    def test_slices_share_buffer(self):
        source = bytearray(b"0123456789")
        arena = BufferArena(source)
        view = arena.slice(2, 3)

        assert len(arena) == 10
        assert bytes(view) == b"234"
        source[2] = ord("X")
        assert bytes(view) == b"X34"

    def test_release_invalidates_slices(self):
        arena = BufferArena(b"0123456789")
        view = arena.slice(0, 4)
        arena.release()

        assert arena.released
        with pytest.raises(ValueError):
            bytes(view)

    def test_release_is_idempotent(self):
        arena = BufferArena(b"abc")
        arena.release()
        arena.release()
        assert arena.released


class TestMappedFile:
    """test read-only mapping of files"""

    def test_map_and_close(self, tmp_path):
        path = tmp_path / "data.bin"
        path.write_bytes(b"MDMP" + b"\0" * 60)

        with MappedFile(path) as mapped:
            assert len(mapped) == 64
            view = mapped.arena.slice(0, 4)
            assert bytes(view) == b"MDMP"
            assert not mapped.closed

        assert mapped.closed
        with pytest.raises(ValueError):
            bytes(view)

    def test_mapping_is_read_only(self, tmp_path):
        path = tmp_path / "data.bin"
        path.write_bytes(b"\0" * 16)

        with MappedFile(path) as mapped:
            assert mapped.arena.view.readonly

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileOpenError):
            MappedFile(tmp_path / "missing.dmp")

    def test_empty_file(self, tmp_path):
        """test a zero-length file cannot be mapped"""
        path = tmp_path / "empty.dmp"
        path.write_bytes(b"")

        with pytest.raises(MappingError):
            MappedFile(path)

    def test_close_with_outstanding_view(self, tmp_path):
        """test the file is closed even when the map cannot be unmapped yet"""
        path = tmp_path / "data.bin"
        path.write_bytes(b"MDMP" + b"\0" * 12)

        mapped = MappedFile(path)
        derived = mapped.arena.slice(0, 4)[:2]
        mapped.close()

        assert mapped.closed
        assert mapped._file is None
        assert bytes(derived) == b"MD"

    def test_close_twice(self, tmp_path):
        path = tmp_path / "data.bin"
        path.write_bytes(b"\0" * 16)

        mapped = MappedFile(path)
        mapped.close()
        mapped.close()
        assert mapped.closed
