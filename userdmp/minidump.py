#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
A pure-Python library for decoding Windows user-mode minidump (.dmp) files.

The decoder walks the stream directory of a dump and reconstructs the
captured process: system information, loaded modules, threads with their
register contexts, memory regions (merging the MemoryInfoList metadata with
the Memory64List contents) and open handles. Nothing is copied out of the
dump buffer: module records, stack and memory contents are memoryviews into
the same buffer.

References:
 - minidumpapiset.h: https://learn.microsoft.com/en-us/windows/win32/api/minidumpapiset/
 - MINIDUMP_STREAM_TYPE: https://learn.microsoft.com/en-us/windows/win32/api/minidumpapiset/ne-minidumpapiset-minidump_stream_type

Example Usage:
    # Decoding a buffer already in memory
    try:
        data = minidump.parse(open("crash.dmp", "rb").read())
        print(f"{len(data.modules)} modules, {len(data.threads)} threads")
    except minidump.UserDmpError as e:
        print(f"Error reading dump: {e}")

    # Mapping a file (see userdmp.core.UserDump)
    with userdmp.read("crash.dmp") as dump:
        for base, module in dump.modules.items():
            print(f"0x{base:x} {module.name}")
"""

import dataclasses
import logging
import struct
from enum import IntEnum
from pathlib import PureWindowsPath
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

from .context import Arch, ThreadContext, arch_from_tag, decode_context
from .mapping import BufferArena

logger = logging.getLogger(__name__)

# --- Constants ---
MINIDUMP_SIGNATURE = 0x504D444D  # "MDMP"
VS_FIXEDFILEINFO_SIGNATURE = 0xFEEF04BD
EXCEPTION_MAXIMUM_PARAMETERS = 15

# MiniDumpWithDataSegs through MiniDumpWithIptTrace. A dump produced with any
# of these options is rejected.
DUMP_FLAGS = 0x001FFFFF

# Signature, Version, NumberOfStreams, StreamDirectoryRva, CheckSum, Reserved,
# TimeDateStamp, Flags
_HEADER = struct.Struct("<7IQ")
_DIRECTORY = struct.Struct("<3I")
_COUNT = struct.Struct("<I")
_SYSTEM_INFO = struct.Struct("<3H2B5I2H")
_MODULE = struct.Struct("<Q4I13I2I2I2Q")
_THREAD = struct.Struct("<4IQQ2I2I")
_MEMORY_INFO_LIST = struct.Struct("<IIQ")
_MEMORY_INFO = struct.Struct("<QQIIQIIII")
_MEMORY64_LIST = struct.Struct("<QQ")
_MEMORY_DESCRIPTOR64 = struct.Struct("<QQ")
_HANDLE_DATA = struct.Struct("<4I")
_HANDLE_DESCRIPTOR = struct.Struct("<Q6I")
_EXCEPTION_STREAM = struct.Struct(f"<IIIIQQII{EXCEPTION_MAXIMUM_PARAMETERS}QII")

HEADER_SIZE = _HEADER.size
DIRECTORY_ENTRY_SIZE = _DIRECTORY.size

# MEMORY_BASIC_INFORMATION.State
MEM_COMMIT = 0x1000
MEM_RESERVE = 0x2000
MEM_RESET = 0x8000
MEM_FREE = 0x10000
MEM_TOP_DOWN = 0x100000

# MEMORY_BASIC_INFORMATION.Type
MEM_PRIVATE = 0x20000
MEM_MAPPED = 0x40000
MEM_IMAGE = 0x1000000

_STATE_NAMES = {
    MEM_COMMIT: "MEM_COMMIT",
    MEM_RESERVE: "MEM_RESERVE",
    MEM_RESET: "MEM_RESET",
    MEM_FREE: "MEM_FREE",
    MEM_TOP_DOWN: "MEM_TOP_DOWN",
}

_TYPE_NAMES = {
    MEM_PRIVATE: "MEM_PRIVATE",
    MEM_MAPPED: "MEM_MAPPED",
    MEM_IMAGE: "MEM_IMAGE",
}

_PROTECT_NAMES = {
    0x01: "PAGE_NOACCESS",
    0x02: "PAGE_READONLY",
    0x04: "PAGE_READWRITE",
    0x08: "PAGE_WRITECOPY",
    0x10: "PAGE_EXECUTE",
    0x20: "PAGE_EXECUTE_READ",
    0x40: "PAGE_EXECUTE_READWRITE",
    0x80: "PAGE_EXECUTE_WRITECOPY",
}

_PROTECT_MODIFIERS = {
    0x100: "PAGE_GUARD",
    0x200: "PAGE_NOCACHE",
    0x400: "PAGE_WRITECOMBINE",
}

# --- Errors ---


class UserDmpError(Exception):
    """Base exception for errors raised while opening or decoding a minidump."""

    pass


class FileOpenError(UserDmpError):
    """The dump file could not be opened or read."""

    pass


class MappingError(UserDmpError):
    """The dump file could not be mapped into memory."""

    pass


class FormatError(UserDmpError):
    """A fixed-size record is malformed or truncated."""

    pass


class InvalidSignatureError(FormatError):
    """The buffer does not start with the minidump signature."""

    def __init__(self, signature: Optional[int] = None):
        self.signature = signature
        super().__init__("Invalid minidump signature.")


class InvalidFlagsError(FormatError):
    """The header flags enable dump options this decoder rejects."""

    def __init__(self, flags: int):
        self.flags = flags
        super().__init__(
            f"The minidump contains invalid or unsupported flags: {flags:#x}"
        )


class UnsupportedArchitectureError(UserDmpError):
    """The system info stream names a processor architecture other than x64/x86."""

    def __init__(self, architecture: int):
        self.architecture = architecture
        super().__init__(f"Unsupported architecture: {architecture}")


class InvalidMemoryRangeError(UserDmpError):
    """A module or memory region covers an empty address range."""

    pass


class AddressResolutionError(UserDmpError):
    """An RVA or location descriptor points outside the dump buffer."""

    pass


class AddressNotFoundError(UserDmpError):
    """No captured memory region contains the requested address."""

    def __init__(self, address: int):
        self.address = address
        super().__init__(f"Address {address:#x} was not found in captured memory")


class InvalidContextError(UserDmpError):
    """A thread context cannot be interpreted."""

    pass


# --- Stream types ---


class StreamType(IntEnum):
    """MINIDUMP_STREAM_TYPE values."""

    UNUSED = 0
    RESERVED_0 = 1
    RESERVED_1 = 2
    THREAD_LIST = 3
    MODULE_LIST = 4
    MEMORY_LIST = 5
    EXCEPTION = 6
    SYSTEM_INFO = 7
    THREAD_EX_LIST = 8
    MEMORY64_LIST = 9
    COMMENT_A = 10
    COMMENT_W = 11
    HANDLE_DATA = 12
    FUNCTION_TABLE = 13
    UNLOADED_MODULE_LIST = 14
    MISC_INFO = 15
    MEMORY_INFO_LIST = 16
    THREAD_INFO_LIST = 17
    HANDLE_OPERATION_LIST = 18
    TOKEN = 19
    JAVASCRIPT_DATA = 20
    SYSTEM_MEMORY_INFO = 21
    PROCESS_VM_COUNTERS = 22
    IPT_TRACE = 23
    THREAD_NAMES = 24
    CE_NULL = 0x8000
    CE_SYSTEM_INFO = 0x8001
    CE_EXCEPTION = 0x8002
    CE_MODULE_LIST = 0x8003
    CE_PROCESS_LIST = 0x8004
    CE_THREAD_LIST = 0x8005
    CE_THREAD_CONTEXT_LIST = 0x8006
    CE_THREAD_CALL_STACK_LIST = 0x8007
    CE_MEMORY_VIRTUAL_LIST = 0x8008
    CE_MEMORY_PHYSICAL_LIST = 0x8009
    CE_BUCKET_PARAMETERS = 0x800A
    CE_PROCESS_MODULE_MAP = 0x800B
    CE_DIAGNOSIS_LIST = 0x800C
    LAST_RESERVED = 0xFFFF

    @classmethod
    def lookup(cls, value: int) -> Optional["StreamType"]:
        try:
            return cls(value)
        except ValueError:
            return None


# --- Records ---


@dataclasses.dataclass(frozen=True)
class MinidumpHeader:
    """MINIDUMP_HEADER as laid out in the dump."""

    signature: int
    version: int
    number_of_streams: int
    stream_directory_rva: int
    checksum: int
    reserved: int
    time_date_stamp: int
    flags: int


@dataclasses.dataclass(frozen=True)
class LocationDescriptor:
    """A (size, rva) pair addressing bytes elsewhere in the dump."""

    data_size: int
    rva: int

    @property
    def end(self) -> int:
        return self.rva + self.data_size


@dataclasses.dataclass(frozen=True)
class DirectoryEntry:
    """One MINIDUMP_DIRECTORY entry."""

    stream_type: int
    location: LocationDescriptor

    @property
    def known_type(self) -> Optional[StreamType]:
        return StreamType.lookup(self.stream_type)


@dataclasses.dataclass(frozen=True)
class FixedFileInfo:
    """VS_FIXEDFILEINFO embedded in each module record."""

    signature: int
    struct_version: int
    file_version_ms: int
    file_version_ls: int
    product_version_ms: int
    product_version_ls: int
    file_flags_mask: int
    file_flags: int
    file_os: int
    file_type: int
    file_subtype: int
    file_date_ms: int
    file_date_ls: int

    @staticmethod
    def _split(ms: int, ls: int) -> Tuple[int, int, int, int]:
        return (ms >> 16, ms & 0xFFFF, ls >> 16, ls & 0xFFFF)

    @property
    def valid(self) -> bool:
        return self.signature == VS_FIXEDFILEINFO_SIGNATURE

    @property
    def file_version(self) -> Optional[Tuple[int, int, int, int]]:
        if not self.valid:
            return None
        return self._split(self.file_version_ms, self.file_version_ls)

    @property
    def product_version(self) -> Optional[Tuple[int, int, int, int]]:
        if not self.valid:
            return None
        return self._split(self.product_version_ms, self.product_version_ls)


# --- Decoded entities ---


@dataclasses.dataclass(frozen=True)
class SystemInfo:
    """Processor and operating system information of the captured machine."""

    processor_architecture: Arch
    processor_level: int
    processor_revision: int
    number_of_processors: int
    product_type: int
    major_version: int
    minor_version: int
    build_number: int
    platform_id: int
    suite_mask: int = 0
    csd_version: Optional[str] = None

    @property
    def os_version(self) -> str:
        return f"{self.major_version}.{self.minor_version}.{self.build_number}"


@dataclasses.dataclass(frozen=True)
class Module:
    """A module (executable image) loaded in the captured process."""

    base: int
    size: int
    checksum: int
    time_date_stamp: int
    path: str
    version: Optional[FixedFileInfo] = None
    cv_record: memoryview = dataclasses.field(default=memoryview(b""), repr=False)
    misc_record: memoryview = dataclasses.field(default=memoryview(b""), repr=False)

    @property
    def end(self) -> int:
        """First address past the module."""
        return self.base + self.size

    @property
    def name(self) -> str:
        """Returns the file name of the module path."""
        return PureWindowsPath(self.path).name

    def contains_address(self, addr: int) -> bool:
        return self.base <= addr < self.end


@dataclasses.dataclass(frozen=True)
class Thread:
    """A thread of the captured process and its register state."""

    thread_id: int
    suspend_count: int
    priority_class: int
    priority: int
    teb: int
    context: ThreadContext = dataclasses.field(repr=False)
    stack_start: int = 0
    stack: memoryview = dataclasses.field(default=memoryview(b""), repr=False)

    @property
    def arch(self) -> Arch:
        return self.context.arch

    @property
    def suspended(self) -> bool:
        return self.suspend_count > 0


@dataclasses.dataclass(frozen=True)
class MemoryRegion:
    """A region of the captured address space, with its contents when present."""

    base: int
    size: int
    allocation_base: int = 0
    allocation_protect: int = 0
    state: int = 0
    protect: int = 0
    type: int = 0
    data: memoryview = dataclasses.field(default=memoryview(b""), repr=False)

    @property
    def end(self) -> int:
        """First address past the region."""
        return self.base + self.size

    @property
    def has_data(self) -> bool:
        return len(self.data) > 0

    @property
    def state_name(self) -> str:
        return _STATE_NAMES.get(self.state, "UNKNOWN")

    @property
    def type_name(self) -> str:
        return _TYPE_NAMES.get(self.type, "UNKNOWN")

    @property
    def protect_name(self) -> str:
        return protection_name(self.protect)

    def contains_address(self, addr: int) -> bool:
        return self.base <= addr < self.end


@dataclasses.dataclass(frozen=True)
class Handle:
    """An operating system handle held by the captured process."""

    handle: int
    type_name: Optional[str]
    object_name: Optional[str]
    attributes: int
    granted_access: int
    handle_count: int = 0
    pointer_count: int = 0

    def __str__(self) -> str:
        return f"0x{self.handle:x}"


Modules = Mapping[int, Module]
Threads = Mapping[int, Thread]
MemoryRegions = Mapping[int, MemoryRegion]
Handles = Mapping[int, Handle]


@dataclasses.dataclass(frozen=True)
class DumpData:
    """Everything decoded from one minidump buffer."""

    header: MinidumpHeader
    system: Optional[SystemInfo]
    modules: Modules
    threads: Threads
    memory: MemoryRegions
    handles: Handles
    exception_thread_id: Optional[int] = None


def protection_name(protect: int) -> str:
    """Formats a PAGE_* protection value, including GUARD/NOCACHE modifiers."""
    if protect == 0:
        return ""
    base = _PROTECT_NAMES.get(protect & 0xFF, "UNKNOWN")
    modifiers = [name for bit, name in _PROTECT_MODIFIERS.items() if protect & bit]
    return "|".join([base] + modifiers)


def _frozen(items: Dict) -> Mapping:
    return MappingProxyType(dict(sorted(items.items())))


# --- Buffer access ---


class DumpReader:
    """
    Bounds-checked access to the dump buffer.

    Every read goes through an (offset, length) check against the buffer
    size; fixed records are unpacked with `struct` from the offset directly.
    """

    def __init__(self, arena: BufferArena):
        self._arena = arena

    def __len__(self) -> int:
        return len(self._arena)

    def unpack(self, layout: struct.Struct, offset: int, what: str) -> Tuple:
        """Unpacks a fixed-size record, raising FormatError if it is truncated."""
        if offset < 0 or offset + layout.size > len(self._arena):
            raise FormatError(
                f"Truncated {what} at offset {offset:#x}: need {layout.size} bytes, "
                f"buffer has {len(self._arena)}"
            )
        return layout.unpack_from(self._arena.view, offset)

    def extract(self, location: LocationDescriptor) -> memoryview:
        """Returns the bytes addressed by a location descriptor without copying."""
        return self.extract_range(location.rva, location.data_size)

    def extract_range(self, rva: int, size: int) -> memoryview:
        if size == 0:
            return self._arena.slice(0, 0)
        if rva < 0 or rva + size > len(self._arena):
            raise AddressResolutionError(
                f"Range {rva:#x}+{size:#x} lies outside the dump ({len(self._arena):#x} bytes)"
            )
        return self._arena.slice(rva, size)

    def read_string(self, rva: int) -> str:
        """Resolves a MINIDUMP_STRING: a 32-bit byte length then UTF-16LE code units."""
        if rva < 0 or rva + _COUNT.size > len(self._arena):
            raise AddressResolutionError(
                f"String RVA {rva:#x} lies outside the dump ({len(self._arena):#x} bytes)"
            )
        (length,) = _COUNT.unpack_from(self._arena.view, rva)
        start = rva + _COUNT.size
        end = start + (length // 2) * 2
        if end > len(self._arena):
            raise AddressResolutionError(
                f"String at {rva:#x} ({length} bytes) runs past the end of the dump"
            )
        raw = bytes(self._arena.view[start:end])
        return raw.decode("utf-16-le", errors="replace").rstrip("\0")

    def extract_optional(self, location: LocationDescriptor, what: str) -> memoryview:
        """Like extract(), but an out-of-bounds location yields an empty view."""
        try:
            return self.extract(location)
        except AddressResolutionError as e:
            logger.warning(f"ignoring {what}: {e}")
            return self._arena.slice(0, 0)

    def read_optional_string(self, rva: int, what: str) -> Optional[str]:
        """Like read_string(), but a zero or unresolvable RVA yields None."""
        if not rva:
            return None
        try:
            return self.read_string(rva)
        except AddressResolutionError as e:
            logger.warning(f"ignoring {what}: {e}")
            return None


# --- Parser Implementation ---


def merge_memory(
    memory_info: Mapping[int, MemoryRegion], memory64: Mapping[int, MemoryRegion]
) -> Dict[int, MemoryRegion]:
    """
    Merges MemoryInfoList regions with Memory64List regions.

    A Memory64List region replaces the MemoryInfoList region at the same base
    address entirely. Neither input is modified.
    """
    merged = dict(memory_info)
    for address, region in memory64.items():
        merged[address] = region
    return dict(sorted(merged.items()))


class _Parser:
    """Stream decoders. Each takes the stream's location and returns its entities."""

    @staticmethod
    def parse(reader: DumpReader) -> DumpData:
        header = _Parser._parse_header(reader)
        entries = _Parser._collect_directory(reader, header)

        system: Optional[SystemInfo] = None
        modules: Dict[int, Module] = {}
        threads: Dict[int, Thread] = {}
        memory_info: Dict[int, MemoryRegion] = {}
        memory64: Dict[int, MemoryRegion] = {}
        handles: Dict[int, Handle] = {}
        exception_thread_id: Optional[int] = None

        # Stream abort policy: any error inside a recognized stream propagates
        # and no DumpData is produced. Duplicates of a stream type are all
        # decoded; the last one in directory order replaces the earlier ones.
        decoded = set()
        for entry in entries:
            stream_type = entry.known_type
            if stream_type is None:
                logger.debug(f"ignoring unknown stream type {entry.stream_type:#x}")
                continue
            if stream_type in decoded:
                logger.warning(
                    f"duplicate {stream_type.name} stream at {entry.location.rva:#x} "
                    f"replaces the earlier one"
                )

            location = entry.location
            if stream_type == StreamType.SYSTEM_INFO:
                system = _Parser._parse_system_info(reader, location)
            elif stream_type == StreamType.MODULE_LIST:
                modules = _Parser._parse_module_list(reader, location)
            elif stream_type == StreamType.THREAD_LIST:
                arch = system.processor_architecture if system else None
                threads = _Parser._parse_thread_list(reader, location, arch)
            elif stream_type == StreamType.MEMORY_INFO_LIST:
                memory_info = _Parser._parse_memory_info_list(reader, location)
            elif stream_type == StreamType.MEMORY64_LIST:
                memory64 = _Parser._parse_memory64_list(reader, location)
            elif stream_type == StreamType.HANDLE_DATA:
                handles = _Parser._parse_handle_data(reader, location)
            elif stream_type == StreamType.EXCEPTION:
                exception_thread_id = _Parser._parse_exception(reader, location)
            else:
                logger.debug(f"skipping unhandled stream {stream_type.name}")
                continue
            decoded.add(stream_type)

        memory = merge_memory(memory_info, memory64)
        logger.info(
            f"decoded {len(modules)} modules, {len(threads)} threads, "
            f"{len(memory)} memory regions, {len(handles)} handles"
        )

        return DumpData(
            header=header,
            system=system,
            modules=_frozen(modules),
            threads=_frozen(threads),
            memory=MappingProxyType(memory),
            handles=_frozen(handles),
            exception_thread_id=exception_thread_id,
        )

    @staticmethod
    def _parse_header(reader: DumpReader) -> MinidumpHeader:
        if len(reader) < _COUNT.size:
            raise InvalidSignatureError()
        (signature,) = reader.unpack(_COUNT, 0, "signature")
        if signature != MINIDUMP_SIGNATURE:
            raise InvalidSignatureError(signature)

        header = MinidumpHeader(*reader.unpack(_HEADER, 0, "MINIDUMP_HEADER"))
        if header.flags & DUMP_FLAGS:
            raise InvalidFlagsError(header.flags)
        return header

    @staticmethod
    def _collect_directory(
        reader: DumpReader, header: MinidumpHeader
    ) -> List[DirectoryEntry]:
        """
        Reads the stream directory and returns the entries in dispatch order.

        Directory skip policy: an entry that cannot be read, or whose type is
        UNUSED, is dropped instead of failing the parse. Reading stops at the
        first truncated entry, whatever count the header declares. The remaining entries
        are ordered by descending stream type, which puts SystemInfoStream (7)
        ahead of ThreadListStream (3) so the architecture is known before any
        thread context is interpreted.
        """
        rva = header.stream_directory_rva
        if rva > len(reader):
            raise AddressResolutionError(
                f"Stream directory at {rva:#x} lies outside the dump ({len(reader):#x} bytes)"
            )

        entries = []
        for i in range(header.number_of_streams):
            offset = rva + i * DIRECTORY_ENTRY_SIZE
            try:
                stream_type, data_size, data_rva = reader.unpack(
                    _DIRECTORY, offset, "MINIDUMP_DIRECTORY"
                )
            except FormatError as e:
                # offsets only grow, so every later entry is truncated as well
                logger.debug(
                    f"dropping directory entries {i}..{header.number_of_streams - 1}: {e}"
                )
                break
            if stream_type == StreamType.UNUSED:
                logger.debug(f"dropping unused directory entry {i}")
                continue
            entries.append(
                DirectoryEntry(stream_type, LocationDescriptor(data_size, data_rva))
            )

        entries.sort(key=lambda entry: entry.stream_type, reverse=True)
        logger.debug(
            "stream order: "
            + ", ".join(
                entry.known_type.name if entry.known_type else f"{entry.stream_type:#x}"
                for entry in entries
            )
        )
        return entries

    @staticmethod
    def _parse_system_info(reader: DumpReader, location: LocationDescriptor) -> SystemInfo:
        (
            architecture,
            level,
            revision,
            processors,
            product_type,
            major,
            minor,
            build,
            platform_id,
            csd_version_rva,
            suite_mask,
            _reserved,
        ) = reader.unpack(_SYSTEM_INFO, location.rva, "MINIDUMP_SYSTEM_INFO")

        arch = arch_from_tag(architecture)
        if arch is None:
            raise UnsupportedArchitectureError(architecture)

        csd_version = reader.read_optional_string(csd_version_rva, "CSD version")
        system = SystemInfo(
            processor_architecture=arch,
            processor_level=level,
            processor_revision=revision,
            number_of_processors=processors,
            product_type=product_type,
            major_version=major,
            minor_version=minor,
            build_number=build,
            platform_id=platform_id,
            suite_mask=suite_mask,
            csd_version=csd_version,
        )
        logger.debug(f"system: {arch.name}, {processors} cpus, os {system.os_version}")
        return system

    @staticmethod
    def _parse_module_list(
        reader: DumpReader, location: LocationDescriptor
    ) -> Dict[int, Module]:
        (count,) = reader.unpack(_COUNT, location.rva, "MINIDUMP_MODULE_LIST")
        modules: Dict[int, Module] = {}
        for i in range(count):
            offset = location.rva + _COUNT.size + i * _MODULE.size
            fields = reader.unpack(_MODULE, offset, "MINIDUMP_MODULE")
            base, size, checksum, timestamp, name_rva = fields[0:5]
            version = FixedFileInfo(*fields[5:18])
            cv_record = LocationDescriptor(*fields[18:20])
            misc_record = LocationDescriptor(*fields[20:22])

            if size == 0:
                raise InvalidMemoryRangeError(
                    f"Invalid memory range in module at {base:#x}: size is zero"
                )

            module = Module(
                base=base,
                size=size,
                checksum=checksum,
                time_date_stamp=timestamp,
                path=reader.read_string(name_rva),
                version=version,
                cv_record=reader.extract_optional(cv_record, f"CodeView record of {base:#x}"),
                misc_record=reader.extract_optional(misc_record, f"misc record of {base:#x}"),
            )
            modules[module.base] = module

        logger.debug(f"module list: {len(modules)} modules")
        return modules

    @staticmethod
    def _parse_thread_list(
        reader: DumpReader, location: LocationDescriptor, arch: Optional[Arch]
    ) -> Dict[int, Thread]:
        (count,) = reader.unpack(_COUNT, location.rva, "MINIDUMP_THREAD_LIST")
        threads: Dict[int, Thread] = {}
        for i in range(count):
            offset = location.rva + _COUNT.size + i * _THREAD.size
            (
                thread_id,
                suspend_count,
                priority_class,
                priority,
                teb,
                stack_start,
                stack_size,
                stack_rva,
                context_size,
                context_rva,
            ) = reader.unpack(_THREAD, offset, "MINIDUMP_THREAD")

            raw_context = reader.extract(LocationDescriptor(context_size, context_rva))
            try:
                context = decode_context(raw_context, arch)
            except (ValueError, struct.error) as e:
                raise InvalidContextError(
                    f"Invalid context for thread {thread_id}: {e}"
                ) from e

            threads[thread_id] = Thread(
                thread_id=thread_id,
                suspend_count=suspend_count,
                priority_class=priority_class,
                priority=priority,
                teb=teb,
                context=context,
                stack_start=stack_start,
                stack=reader.extract_optional(
                    LocationDescriptor(stack_size, stack_rva), f"stack of thread {thread_id}"
                ),
            )

        logger.debug(f"thread list: {len(threads)} threads")
        return threads

    @staticmethod
    def _parse_memory_info_list(
        reader: DumpReader, location: LocationDescriptor
    ) -> Dict[int, MemoryRegion]:
        _header_size, _entry_size, count = reader.unpack(
            _MEMORY_INFO_LIST, location.rva, "MINIDUMP_MEMORY_INFO_LIST"
        )
        regions: Dict[int, MemoryRegion] = {}
        for i in range(count):
            offset = location.rva + _MEMORY_INFO_LIST.size + i * _MEMORY_INFO.size
            (
                base,
                allocation_base,
                allocation_protect,
                _alignment1,
                region_size,
                state,
                protect,
                type_,
                _alignment2,
            ) = reader.unpack(_MEMORY_INFO, offset, "MINIDUMP_MEMORY_INFO")

            if region_size == 0:
                raise InvalidMemoryRangeError(
                    f"Invalid memory range at {base:#x}: region size is zero"
                )

            regions[base] = MemoryRegion(
                base=base,
                size=region_size,
                allocation_base=allocation_base,
                allocation_protect=allocation_protect,
                state=state,
                protect=protect,
                type=type_,
            )

        logger.debug(f"memory info list: {len(regions)} regions")
        return regions

    @staticmethod
    def _parse_memory64_list(
        reader: DumpReader, location: LocationDescriptor
    ) -> Dict[int, MemoryRegion]:
        count, base_rva = reader.unpack(
            _MEMORY64_LIST, location.rva, "MINIDUMP_MEMORY64_LIST"
        )
        regions: Dict[int, MemoryRegion] = {}

        # Descriptors carry no RVA; contents are laid out back to back from BaseRva.
        current_rva = base_rva
        for i in range(count):
            offset = location.rva + _MEMORY64_LIST.size + i * _MEMORY_DESCRIPTOR64.size
            start, data_size = reader.unpack(
                _MEMORY_DESCRIPTOR64, offset, "MINIDUMP_MEMORY_DESCRIPTOR64"
            )
            if data_size == 0:
                raise InvalidMemoryRangeError(
                    f"Invalid memory range at {start:#x}: data size is zero"
                )

            regions[start] = MemoryRegion(
                base=start,
                size=data_size,
                data=reader.extract_range(current_rva, data_size),
            )
            current_rva += data_size

        logger.debug(f"memory64 list: {len(regions)} regions")
        return regions

    @staticmethod
    def _parse_handle_data(
        reader: DumpReader, location: LocationDescriptor
    ) -> Dict[int, Handle]:
        _header_size, descriptor_size, count, _reserved = reader.unpack(
            _HANDLE_DATA, location.rva, "MINIDUMP_HANDLE_DATA_STREAM"
        )
        if count and descriptor_size < _HANDLE_DESCRIPTOR.size:
            raise FormatError(
                f"Handle descriptor size {descriptor_size} is smaller than "
                f"MINIDUMP_HANDLE_DESCRIPTOR ({_HANDLE_DESCRIPTOR.size})"
            )

        handles: Dict[int, Handle] = {}
        for i in range(count):
            # Bytes past the known fields up to descriptor_size are skipped.
            offset = location.rva + _HANDLE_DATA.size + i * descriptor_size
            (
                value,
                type_name_rva,
                object_name_rva,
                attributes,
                granted_access,
                handle_count,
                pointer_count,
            ) = reader.unpack(_HANDLE_DESCRIPTOR, offset, "MINIDUMP_HANDLE_DESCRIPTOR")

            handles[value] = Handle(
                handle=value,
                type_name=reader.read_string(type_name_rva) if type_name_rva else None,
                object_name=(
                    reader.read_string(object_name_rva) if object_name_rva else None
                ),
                attributes=attributes,
                granted_access=granted_access,
                handle_count=handle_count,
                pointer_count=pointer_count,
            )

        logger.debug(f"handle data: {len(handles)} handles")
        return handles

    @staticmethod
    def _parse_exception(reader: DumpReader, location: LocationDescriptor) -> int:
        fields = reader.unpack(
            _EXCEPTION_STREAM, location.rva, "MINIDUMP_EXCEPTION_STREAM"
        )
        thread_id = fields[0]
        logger.debug(f"exception raised on thread {thread_id}")
        return thread_id


# --- Public API Functions ---


def parse(data: Union[bytes, bytearray, memoryview, BufferArena]) -> DumpData:
    """
    Decodes a minidump held in memory.

    Args:
        data: The dump bytes (any buffer-protocol object) or a BufferArena.

    Returns:
        A DumpData object whose slices borrow from `data`.

    Raises:
        UserDmpError: If the buffer is not a valid minidump.
    """
    arena = data if isinstance(data, BufferArena) else BufferArena(data)
    return _Parser.parse(DumpReader(arena))
