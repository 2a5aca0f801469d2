"""high-level access to a decoded user-mode minidump"""

import logging
import os
from typing import List, Optional, Union

from .mapping import BufferArena, MappedFile
from .minidump import (
    AddressNotFoundError,
    DumpData,
    Handles,
    MemoryRegion,
    MemoryRegions,
    MinidumpHeader,
    Module,
    Modules,
    SystemInfo,
    Thread,
    Threads,
    parse,
)

logger = logging.getLogger(__name__)


class UserDump:
    """
    a parsed minidump together with the buffer it was parsed from

    module records, stacks and memory contents are views into that buffer;
    close() releases them along with the file mapping
    """

    def __init__(
        self,
        data: DumpData,
        arena: BufferArena,
        mapped: Optional[MappedFile] = None,
        path: Optional[str] = None,
    ):
        self.data = data
        self.path = path
        self._arena = arena
        self._mapped = mapped

    @classmethod
    def from_file(cls, path: Union[str, os.PathLike]) -> "UserDump":
        """map a dump file and parse it; the mapping is closed if parsing fails"""
        mapped = MappedFile(path)
        try:
            data = parse(mapped.arena)
        except Exception:
            mapped.close()
            raise
        logger.info(f"loaded {mapped.path}")
        return cls(data, mapped.arena, mapped=mapped, path=mapped.path)

    @classmethod
    def from_bytes(cls, buffer) -> "UserDump":
        """parse a dump already held in memory (any buffer-protocol object)"""
        arena = BufferArena(buffer)
        try:
            data = parse(arena)
        except Exception:
            arena.release()
            raise
        return cls(data, arena)

    def __enter__(self) -> "UserDump":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        return (
            f"UserDump(path={self.path!r}, modules={len(self.modules)}, "
            f"threads={len(self.threads)}, memory={len(self.memory)})"
        )

    @property
    def closed(self) -> bool:
        return self._arena.released

    def close(self):
        """release every borrowed slice and unmap the file"""
        if self._mapped is not None:
            self._mapped.close()
        else:
            self._arena.release()

    @property
    def header(self) -> MinidumpHeader:
        return self.data.header

    @property
    def system(self) -> Optional[SystemInfo]:
        return self.data.system

    @property
    def modules(self) -> Modules:
        """modules keyed by base address"""
        return self.data.modules

    @property
    def threads(self) -> Threads:
        """threads keyed by thread id"""
        return self.data.threads

    @property
    def memory(self) -> MemoryRegions:
        """memory regions keyed by base address"""
        return self.data.memory

    @property
    def handles(self) -> Handles:
        """handles keyed by handle value"""
        return self.data.handles

    @property
    def exception_thread_id(self) -> Optional[int]:
        return self.data.exception_thread_id

    def exception_thread(self) -> Optional[Thread]:
        """the thread that raised the recorded exception, if it was captured"""
        if self.exception_thread_id is None:
            return None
        return self.threads.get(self.exception_thread_id)

    def find_module_by_address(self, address: int) -> Optional[Module]:
        for module in self.modules.values():
            if module.contains_address(address):
                return module
        return None

    def find_modules(self, name_filter: str) -> List[Module]:
        """modules whose path contains the given string (case-insensitive)"""
        name_filter = name_filter.lower()
        return [m for m in self.modules.values() if name_filter in m.path.lower()]

    def find_memory_region(self, address: int) -> Optional[MemoryRegion]:
        for region in self.memory.values():
            if region.contains_address(address):
                return region
        return None

    def read_memory(self, address: int, size: int) -> bytes:
        """
        copy `size` bytes of captured memory starting at `address`

        the whole range must lie inside one region that carries contents,
        otherwise AddressNotFoundError is raised
        """
        region = self.find_memory_region(address)
        if region is None or not region.has_data:
            raise AddressNotFoundError(address)
        offset = address - region.base
        if offset + size > len(region.data):
            raise AddressNotFoundError(region.base + len(region.data))
        return bytes(region.data[offset : offset + size])
