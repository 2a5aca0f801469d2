"""cpu register contexts captured for each thread in a minidump"""

import dataclasses
import struct
from enum import Enum
from typing import Dict, Optional, Tuple, Union

# --- Constants ---
ARCH_X64 = 9
ARCH_X86 = 0

CONTEXT_X64_SIZE = 0x4D0
CONTEXT_X86_SIZE = 0x2CC

# P1Home..P6Home, ContextFlags, MxCsr, SegCs..SegSs, EFlags, Dr0..Dr7, Rax..R15, Rip
_X64_CONTROL = struct.Struct("<6Q2I6HI6Q17Q")
_X64_FLT_SAVE_OFFSET = 0x100
_X64_VECTOR_OFFSET = 0x300
_X64_TRAILER = struct.Struct("<6Q")
_X64_TRAILER_OFFSET = 0x4A0
_U128 = struct.Struct("<QQ")

# ContextFlags, Dr0..Dr7, FloatSave (7 dwords, RegisterArea, Spare0), segments,
# integer registers, control registers, ExtendedRegisters
_X86_LAYOUT = struct.Struct("<7I7I80sI4I6I6I512s")


class Arch(Enum):
    """Processor architecture of the captured process."""

    X64 = ARCH_X64
    X86 = ARCH_X86

    @property
    def context_size(self) -> int:
        """Byte size of the register context record for this architecture."""
        return CONTEXT_X64_SIZE if self is Arch.X64 else CONTEXT_X86_SIZE

    @property
    def pointer_size(self) -> int:
        return 8 if self is Arch.X64 else 4


def _read_u128s(view: memoryview, offset: int, count: int) -> Tuple[int, ...]:
    values = []
    for i in range(count):
        lo, hi = _U128.unpack_from(view, offset + i * _U128.size)
        values.append(lo | (hi << 64))
    return tuple(values)


@dataclasses.dataclass(frozen=True)
class ContextX64:
    """AMD64 CONTEXT record (0x4D0 bytes, 16-byte aligned in the producer)."""

    p1_home: int
    p2_home: int
    p3_home: int
    p4_home: int
    p5_home: int
    p6_home: int
    context_flags: int
    mx_csr: int
    seg_cs: int
    seg_ds: int
    seg_es: int
    seg_fs: int
    seg_gs: int
    seg_ss: int
    eflags: int
    dr0: int
    dr1: int
    dr2: int
    dr3: int
    dr6: int
    dr7: int
    rax: int
    rcx: int
    rdx: int
    rbx: int
    rsp: int
    rbp: int
    rsi: int
    rdi: int
    r8: int
    r9: int
    r10: int
    r11: int
    r12: int
    r13: int
    r14: int
    r15: int
    rip: int
    header: Tuple[int, ...]  # 2 x uint128
    legacy: Tuple[int, ...]  # 8 x uint128
    xmm: Tuple[int, ...]  # xmm0..xmm15
    vector_register: Tuple[int, ...]  # 26 x uint128
    vector_control: int
    debug_control: int
    last_branch_to_rip: int
    last_branch_from_rip: int
    last_exception_to_rip: int
    last_exception_from_rip: int

    arch = Arch.X64

    @classmethod
    def decode(cls, data: memoryview) -> "ContextX64":
        """Decodes the record field by field; `data` must be exactly CONTEXT_X64_SIZE bytes."""
        control = _X64_CONTROL.unpack_from(data, 0)
        flt = _read_u128s(data, _X64_FLT_SAVE_OFFSET, 26)
        vectors = _read_u128s(data, _X64_VECTOR_OFFSET, 26)
        trailer = _X64_TRAILER.unpack_from(data, _X64_TRAILER_OFFSET)
        return cls(
            *control,
            header=flt[0:2],
            legacy=flt[2:10],
            xmm=flt[10:26],
            vector_register=vectors,
            vector_control=trailer[0],
            debug_control=trailer[1],
            last_branch_to_rip=trailer[2],
            last_branch_from_rip=trailer[3],
            last_exception_to_rip=trailer[4],
            last_exception_from_rip=trailer[5],
        )

    @property
    def instruction_pointer(self) -> int:
        return self.rip

    @property
    def stack_pointer(self) -> int:
        return self.rsp

    @property
    def frame_pointer(self) -> int:
        return self.rbp

    def general_registers(self) -> Dict[str, int]:
        """Returns the integer registers in conventional display order."""
        names = (
            "rax", "rbx", "rcx", "rdx", "rsi", "rdi", "rbp", "rsp",
            "r8", "r9", "r10", "r11", "r12", "r13", "r14", "r15",
            "rip", "eflags",
        )
        return {name: getattr(self, name) for name in names}


@dataclasses.dataclass(frozen=True)
class ContextX86:
    """i386 CONTEXT record (0x2CC bytes, no alignment requirements)."""

    context_flags: int
    dr0: int
    dr1: int
    dr2: int
    dr3: int
    dr6: int
    dr7: int
    control_word: int
    status_word: int
    tag_word: int
    error_offset: int
    error_selector: int
    data_offset: int
    data_selector: int
    register_area: bytes
    spare0: int
    seg_gs: int
    seg_fs: int
    seg_es: int
    seg_ds: int
    edi: int
    esi: int
    ebx: int
    edx: int
    ecx: int
    eax: int
    ebp: int
    eip: int
    seg_cs: int
    eflags: int
    esp: int
    seg_ss: int
    extended_registers: bytes

    arch = Arch.X86

    @classmethod
    def decode(cls, data: memoryview) -> "ContextX86":
        """Decodes the record field by field; `data` must be exactly CONTEXT_X86_SIZE bytes."""
        return cls(*_X86_LAYOUT.unpack_from(data, 0))

    @property
    def instruction_pointer(self) -> int:
        return self.eip

    @property
    def stack_pointer(self) -> int:
        return self.esp

    @property
    def frame_pointer(self) -> int:
        return self.ebp

    def general_registers(self) -> Dict[str, int]:
        """Returns the integer registers in conventional display order."""
        names = (
            "eax", "ebx", "ecx", "edx", "esi", "edi", "ebp", "esp",
            "eip", "eflags",
        )
        return {name: getattr(self, name) for name in names}


ThreadContext = Union[ContextX64, ContextX86]


def arch_from_tag(tag: int) -> Optional[Arch]:
    """Maps a PROCESSOR_ARCHITECTURE tag to an Arch, or None when unsupported."""
    try:
        return Arch(tag)
    except ValueError:
        return None


def decode_context(data: memoryview, arch: Optional[Arch]) -> ThreadContext:
    """
    Interprets a raw context slice as the register record for `arch`.

    Raises:
        ValueError: If no architecture is known or the slice length does not
            match the record size. Callers wrap this in InvalidContextError.
    """
    if arch is None:
        raise ValueError("processor architecture is not known")
    if len(data) != arch.context_size:
        raise ValueError(
            f"context is {len(data)} bytes, expected {arch.context_size} for {arch.name}"
        )
    if arch is Arch.X64:
        return ContextX64.decode(data)
    return ContextX86.decode(data)
