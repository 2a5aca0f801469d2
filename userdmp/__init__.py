"""userdmp - decode windows user-mode minidump files"""

from .context import Arch, ContextX64, ContextX86, ThreadContext
from .mapping import BufferArena, MappedFile
from .minidump import (
    parse,
    merge_memory,
    DumpData,
    MinidumpHeader,
    LocationDescriptor,
    DirectoryEntry,
    StreamType,
    FixedFileInfo,
    SystemInfo,
    Module,
    Thread,
    MemoryRegion,
    Handle,
    UserDmpError,
    FileOpenError,
    MappingError,
    FormatError,
    InvalidSignatureError,
    InvalidFlagsError,
    UnsupportedArchitectureError,
    InvalidMemoryRangeError,
    AddressResolutionError,
    AddressNotFoundError,
    InvalidContextError,
)
from .core import UserDump


def read(path) -> UserDump:
    """map and parse a minidump file"""
    return UserDump.from_file(path)


__all__ = [
    "read",
    "parse",
    "merge_memory",
    "UserDump",
    "DumpData",
    "MinidumpHeader",
    "LocationDescriptor",
    "DirectoryEntry",
    "StreamType",
    "FixedFileInfo",
    "SystemInfo",
    "Module",
    "Thread",
    "MemoryRegion",
    "Handle",
    "Arch",
    "ContextX64",
    "ContextX86",
    "ThreadContext",
    "BufferArena",
    "MappedFile",
    "UserDmpError",
    "FileOpenError",
    "MappingError",
    "FormatError",
    "InvalidSignatureError",
    "InvalidFlagsError",
    "UnsupportedArchitectureError",
    "InvalidMemoryRangeError",
    "AddressResolutionError",
    "AddressNotFoundError",
    "InvalidContextError",
]
