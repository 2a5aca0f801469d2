"""tests for register context decoding"""

import struct

import pytest

from userdmp.context import (
    CONTEXT_X64_SIZE,
    CONTEXT_X86_SIZE,
    Arch,
    ContextX64,
    ContextX86,
    arch_from_tag,
    decode_context,
)

from conftest import make_context_x64, make_context_x86


class TestArch:
    """test architecture tags"""

    def test_known_tags(self):
        assert arch_from_tag(9) is Arch.X64
        assert arch_from_tag(0) is Arch.X86

    def test_unknown_tags(self):
        """test ARM, IA64 and ARM64 tags are unsupported"""
        for tag in (5, 6, 12, 0xFFFF):
            assert arch_from_tag(tag) is None

    def test_record_sizes(self):
        assert Arch.X64.context_size == 1232
        assert Arch.X86.context_size == 716
        assert Arch.X64.pointer_size == 8
        assert Arch.X86.pointer_size == 4


class TestContextX64:
    """test AMD64 context decoding"""

    def test_control_registers(self):
        raw = make_context_x64(rip=0x7FF600001000, rsp=0xDEAD0, rbp=0xBEEF0, rax=7)
        ctx = decode_context(memoryview(raw), Arch.X64)

        assert isinstance(ctx, ContextX64)
        assert ctx.arch is Arch.X64
        assert ctx.instruction_pointer == 0x7FF600001000
        assert ctx.stack_pointer == 0xDEAD0
        assert ctx.frame_pointer == 0xBEEF0
        assert ctx.rax == 7
        assert ctx.context_flags == 0x10001F

    def test_every_field_offset(self):
        """test a few fields spread across the whole record"""
        raw = bytearray(CONTEXT_X64_SIZE)
        struct.pack_into("<I", raw, 0x34, 0x1F80)  # MxCsr
        struct.pack_into("<H", raw, 0x38, 0x33)  # SegCs
        struct.pack_into("<I", raw, 0x44, 0x246)  # EFlags
        struct.pack_into("<Q", raw, 0xF0, 0x15)  # R15
        struct.pack_into("<QQ", raw, 0x1A0, 0x1111, 0x2222)  # Xmm0
        struct.pack_into("<QQ", raw, 0x290, 0x3333, 0)  # Xmm15
        struct.pack_into("<Q", raw, 0x4A0, 0xAA)  # VectorControl
        struct.pack_into("<Q", raw, 0x4C8, 0xBB)  # LastExceptionFromRip
        ctx = ContextX64.decode(memoryview(bytes(raw)))

        assert ctx.mx_csr == 0x1F80
        assert ctx.seg_cs == 0x33
        assert ctx.eflags == 0x246
        assert ctx.r15 == 0x15
        assert len(ctx.xmm) == 16
        assert ctx.xmm[0] == 0x1111 | (0x2222 << 64)
        assert ctx.xmm[15] == 0x3333
        assert len(ctx.vector_register) == 26
        assert ctx.vector_control == 0xAA
        assert ctx.last_exception_from_rip == 0xBB

    def test_general_registers(self):
        ctx = decode_context(memoryview(make_context_x64(rip=1, rsp=2)), Arch.X64)
        registers = ctx.general_registers()

        assert list(registers)[:4] == ["rax", "rbx", "rcx", "rdx"]
        assert registers["rip"] == 1
        assert registers["rsp"] == 2
        assert "r15" in registers


class TestContextX86:
    """test i386 context decoding"""

    def test_control_registers(self):
        raw = make_context_x86(eip=0x401000, esp=0x12FF00, ebp=0x12FF80, eax=3)
        ctx = decode_context(memoryview(raw), Arch.X86)

        assert isinstance(ctx, ContextX86)
        assert ctx.arch is Arch.X86
        assert ctx.instruction_pointer == 0x401000
        assert ctx.stack_pointer == 0x12FF00
        assert ctx.frame_pointer == 0x12FF80
        assert ctx.eax == 3
        assert ctx.context_flags == 0x1003F
        assert len(ctx.register_area) == 80
        assert len(ctx.extended_registers) == 512

    def test_general_registers(self):
        ctx = decode_context(memoryview(make_context_x86(eip=5)), Arch.X86)
        assert ctx.general_registers()["eip"] == 5
        assert "rax" not in ctx.general_registers()


class TestDecodeContext:
    """test context size and architecture checks"""

    def test_size_mismatch(self):
        with pytest.raises(ValueError):
            decode_context(memoryview(b"\0" * CONTEXT_X86_SIZE), Arch.X64)
        with pytest.raises(ValueError):
            decode_context(memoryview(b"\0" * CONTEXT_X64_SIZE), Arch.X86)
        with pytest.raises(ValueError):
            decode_context(memoryview(b"\0" * (CONTEXT_X64_SIZE + 16)), Arch.X64)

    def test_unknown_arch(self):
        with pytest.raises(ValueError):
            decode_context(memoryview(make_context_x64()), None)
