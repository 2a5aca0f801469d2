"""read-only memory mapping of dump files"""

import logging
import mmap
import os
from typing import List, Optional, Union

logger = logging.getLogger(__name__)


class BufferArena:
    """
    Owns a read-only byte buffer and every slice handed out from it.

    Slices are memoryviews into the buffer, so nothing is copied. Calling
    release() invalidates all of them before the underlying storage goes away.
    """

    def __init__(self, source):
        self._root = memoryview(source).cast("B")
        self._slices: List[memoryview] = []

    def __len__(self) -> int:
        return len(self._root)

    @property
    def view(self) -> memoryview:
        return self._root

    @property
    def released(self) -> bool:
        return self._root is None

    def slice(self, offset: int, size: int) -> memoryview:
        """Returns buffer[offset:offset + size]. The caller checks bounds."""
        view = self._root[offset : offset + size]
        self._slices.append(view)
        return view

    def release(self):
        if self._root is None:
            return
        pinned = 0
        for view in self._slices:
            try:
                view.release()
            except BufferError:
                pinned += 1
        if pinned:
            logger.warning(f"{pinned} slices are still exported and stay valid")
        self._slices.clear()
        root, self._root = self._root, None
        root.release()


class MappedFile:
    """
    A file mapped read-only into memory.

    Usable as a context manager; the mapping and the file descriptor are
    released on close() whatever state parsing was left in.
    """

    def __init__(self, path: Union[str, os.PathLike]):
        # imported here to keep mapping usable without the decoder
        from .minidump import FileOpenError, MappingError

        self.path = os.fspath(path)
        self._file = None
        self._mmap: Optional[mmap.mmap] = None
        try:
            self._file = open(self.path, "rb")
        except OSError as e:
            raise FileOpenError(f"Failed to open file: {e}") from e

        try:
            self._mmap = mmap.mmap(self._file.fileno(), 0, access=mmap.ACCESS_READ)
        except (OSError, ValueError) as e:
            self._file.close()
            self._file = None
            raise MappingError(f"Failed to map view of file '{self.path}': {e}") from e

        self.arena = BufferArena(self._mmap)
        logger.debug(f"mapped {self.path} ({len(self.arena)} bytes)")

    def __len__(self) -> int:
        return len(self.arena)

    def __enter__(self) -> "MappedFile":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def closed(self) -> bool:
        return self._mmap is None

    def close(self):
        if self._mmap is None:
            return
        mapping, self._mmap = self._mmap, None
        try:
            self.arena.release()
            mapping.close()
            logger.debug(f"unmapped {self.path}")
        except BufferError:
            # views derived from a slice keep the map alive; it is unmapped
            # when the last of them is released
            logger.warning(f"{self.path} is still referenced, unmap deferred")
        finally:
            self._file.close()
            self._file = None
