"""shared fixtures: a builder for synthetic minidump buffers"""

import struct

import pytest

from userdmp.context import CONTEXT_X64_SIZE, CONTEXT_X86_SIZE
from userdmp.minidump import (
    HEADER_SIZE,
    MEM_COMMIT,
    MEM_IMAGE,
    MEM_PRIVATE,
    MEM_RESERVE,
    MINIDUMP_SIGNATURE,
    VS_FIXEDFILEINFO_SIGNATURE,
    StreamType,
)

# addresses used by the sample dump
NOTEPAD_BASE = 0x7FF600000000
NTDLL_BASE = 0x7FFB10000000
HEAP_BASE = 0x1000000
MAIN_TID = 0x1234
WORKER_TID = 0x5678


def make_context_x64(rip=0, rsp=0, rbp=0, rax=0):
    ctx = bytearray(CONTEXT_X64_SIZE)
    struct.pack_into("<I", ctx, 0x30, 0x10001F)
    struct.pack_into("<Q", ctx, 0x78, rax)
    struct.pack_into("<Q", ctx, 0x98, rsp)
    struct.pack_into("<Q", ctx, 0xA0, rbp)
    struct.pack_into("<Q", ctx, 0xF8, rip)
    return bytes(ctx)


def make_context_x86(eip=0, esp=0, ebp=0, eax=0):
    ctx = bytearray(CONTEXT_X86_SIZE)
    struct.pack_into("<I", ctx, 0, 0x1003F)
    struct.pack_into("<I", ctx, 0xB0, eax)
    struct.pack_into("<I", ctx, 0xB4, ebp)
    struct.pack_into("<I", ctx, 0xB8, eip)
    struct.pack_into("<I", ctx, 0xC4, esp)
    return bytes(ctx)


def version_info(major=10, minor=0, build=19041, revision=1):
    ms = (major << 16) | minor
    ls = (build << 16) | revision
    return (VS_FIXEDFILEINFO_SIGNATURE, 0x10000, ms, ls, ms, ls, 0x3F, 0, 0x40004, 1, 0, 0, 0)


class DumpBuilder:
    """
    assembles a minidump buffer piece by piece

    every helper appends its payload and records a directory entry; build()
    appends the directory and writes the header
    """

    def __init__(self):
        self.data = bytearray(HEADER_SIZE)
        self.directory = []

    def append(self, blob: bytes) -> int:
        rva = len(self.data)
        self.data += blob
        return rva

    def add_directory_entry(self, stream_type, size, rva):
        self.directory.append((int(stream_type), size, rva))

    def add_stream(self, stream_type, payload: bytes) -> int:
        rva = self.append(payload)
        self.add_directory_entry(stream_type, len(payload), rva)
        return rva

    def add_string(self, text: str, trailing_nuls: int = 1) -> int:
        encoded = text.encode("utf-16-le")
        return self.append(
            struct.pack("<I", len(encoded)) + encoded + b"\0\0" * trailing_nuls
        )

    def add_system_info(self, arch=9, processors=8, build=19045, csd_version=None):
        csd_rva = self.add_string(csd_version) if csd_version is not None else 0
        payload = struct.pack(
            "<3H2B5I2H", arch, 6, 0x5507, processors, 1, 10, 0, build, 2, csd_rva, 0x100, 0
        )
        return self.add_stream(StreamType.SYSTEM_INFO, payload)

    def add_module_list(self, modules):
        """modules: iterable of (base, size, path) or (base, size, path, cv_record)"""
        records = []
        for module in modules:
            base, size, path = module[:3]
            cv_record = module[3] if len(module) > 3 else b""
            name_rva = self.add_string(path)
            cv_rva = self.append(cv_record) if cv_record else 0
            records.append(
                struct.pack("<Q4I", base, size, 0xABCD, 0x5F000000, name_rva)
                + struct.pack("<13I", *version_info())
                + struct.pack("<2I", len(cv_record), cv_rva)
                + struct.pack("<2I", 0, 0)
                + struct.pack("<2Q", 0, 0)
            )
        payload = struct.pack("<I", len(records)) + b"".join(records)
        return self.add_stream(StreamType.MODULE_LIST, payload)

    def add_thread_list(self, threads):
        """threads: iterable of (tid, context) or (tid, context, stack_start, stack)"""
        records = []
        for thread in threads:
            tid, context = thread[:2]
            stack_start, stack = (thread[2], thread[3]) if len(thread) > 2 else (0, b"")
            context_rva = self.append(context)
            stack_rva = self.append(stack) if stack else 0
            records.append(
                struct.pack("<4IQ", tid, 0, 0x20, 0, 0x7FFDF000 + tid)
                + struct.pack("<Q2I", stack_start, len(stack), stack_rva)
                + struct.pack("<2I", len(context), context_rva)
            )
        payload = struct.pack("<I", len(records)) + b"".join(records)
        return self.add_stream(StreamType.THREAD_LIST, payload)

    def add_memory_info_list(self, regions):
        """regions: iterable of (base, size, state, protect, type)"""
        regions = list(regions)
        payload = struct.pack("<IIQ", 16, 48, len(regions))
        for base, size, state, protect, type_ in regions:
            payload += struct.pack(
                "<QQIIQIIII", base, base, protect, 0, size, state, protect, type_, 0
            )
        return self.add_stream(StreamType.MEMORY_INFO_LIST, payload)

    def add_memory64_list(self, regions):
        """regions: iterable of (base, contents); contents are laid out back to back"""
        regions = list(regions)
        base_rva = len(self.data)
        for _, contents in regions:
            self.append(contents)
        payload = struct.pack("<QQ", len(regions), base_rva)
        for base, contents in regions:
            payload += struct.pack("<QQ", base, len(contents))
        return self.add_stream(StreamType.MEMORY64_LIST, payload)

    def add_handle_data(self, handles, descriptor_size=40):
        """handles: iterable of (value, type_name, object_name)"""
        records = []
        for value, type_name, object_name in handles:
            type_rva = self.add_string(type_name) if type_name is not None else 0
            object_rva = self.add_string(object_name) if object_name is not None else 0
            record = struct.pack("<Q6I", value, type_rva, object_rva, 0, 0x1F0003, 2, 3)
            records.append(record + b"\0" * (descriptor_size - len(record)))
        payload = struct.pack("<4I", 16, descriptor_size, len(records), 0)
        return self.add_stream(StreamType.HANDLE_DATA, payload + b"".join(records))

    def add_exception(self, thread_id, address=0):
        payload = (
            struct.pack("<II", thread_id, 0)
            + struct.pack("<IIQQII", 0xC0000005, 0, 0, address, 2, 0)
            + struct.pack("<15Q", *([0] * 15))
            + struct.pack("<2I", 0, 0)
        )
        return self.add_stream(StreamType.EXCEPTION, payload)

    def build(
        self,
        flags=0,
        signature=MINIDUMP_SIGNATURE,
        number_of_streams=None,
        directory_rva=None,
    ) -> bytes:
        out = bytearray(self.data)
        rva = len(out)
        for entry in self.directory:
            out += struct.pack("<3I", *entry)
        if number_of_streams is None:
            number_of_streams = len(self.directory)
        if directory_rva is None:
            directory_rva = rva
        struct.pack_into(
            "<7IQ",
            out,
            0,
            signature,
            0xA793,
            number_of_streams,
            directory_rva,
            0,
            0,
            0x60000000,
            flags,
        )
        return bytes(out)


def build_sample_dump() -> bytes:
    """an x64 dump exercising every decoded stream type"""
    b = DumpBuilder()
    # thread list deliberately precedes system info in the directory
    b.add_thread_list(
        [
            (
                MAIN_TID,
                make_context_x64(rip=NOTEPAD_BASE + 0x1000, rsp=0x2000F00, rbp=0x2000F80, rax=0x41),
                0x2000F00,
                bytes(range(256)),
            ),
            (WORKER_TID, make_context_x64(rip=NTDLL_BASE + 0x9F000, rsp=0x3000F00)),
        ]
    )
    b.add_system_info(arch=9, csd_version="Service Pack 1")
    b.add_module_list(
        [
            (NOTEPAD_BASE, 0x20000, "C:\\Windows\\System32\\notepad.exe", b"RSDS" + b"\x11" * 20),
            (NTDLL_BASE, 0x1F0000, "C:\\Windows\\System32\\ntdll.dll"),
        ]
    )
    b.add_memory_info_list(
        [
            (HEAP_BASE, 0x2000, MEM_COMMIT, 0x04, MEM_PRIVATE),
            (NOTEPAD_BASE, 0x1000, MEM_COMMIT, 0x02, MEM_IMAGE),
            (0x4000000, 0x10000, MEM_RESERVE, 0, MEM_PRIVATE),
        ]
    )
    b.add_memory64_list(
        [
            (HEAP_BASE, bytes(range(256)) * 16),
            (NOTEPAD_BASE, b"MZ" + b"\x90" * 0x1FE),
        ]
    )
    b.add_handle_data(
        [
            (0x4, "File", "\\Device\\HarddiskVolume3\\notes.txt"),
            (0x8, "Key", None),
            (0xC, None, None),
        ]
    )
    b.add_exception(MAIN_TID, address=NOTEPAD_BASE + 0x1000)
    return b.build()


@pytest.fixture
def dump_builder():
    return DumpBuilder()


@pytest.fixture
def sample_dump_bytes():
    return build_sample_dump()


@pytest.fixture
def sample_dump_file(tmp_path):
    path = tmp_path / "sample.dmp"
    path.write_bytes(build_sample_dump())
    return path
