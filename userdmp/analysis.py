"""report generation for decoded minidumps"""

import json
from typing import Any, Dict, Iterable, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .core import UserDump
from .minidump import MEM_COMMIT, Handle, MemoryRegion, Module, Thread

# Constants
DEFAULT_TOP_MODULES = 10
HEXDUMP_WIDTH = 16
BYTES_PER_MB = 1024 * 1024


def _format_version(version) -> str:
    if version is None:
        return ""
    return ".".join(str(part) for part in version)


def _module_data(module: Module) -> Dict[str, Any]:
    data = {
        "name": module.name,
        "path": module.path,
        "base_address": f"0x{module.base:x}",
        "end_address": f"0x{module.end:x}",
        "size": module.size,
        "checksum": f"0x{module.checksum:x}",
        "time_date_stamp": module.time_date_stamp,
        "file_version": None,
    }
    if module.version is not None and module.version.valid:
        data["file_version"] = _format_version(module.version.file_version)
    return data


def _thread_data(thread: Thread, registers: bool = False) -> Dict[str, Any]:
    context = thread.context
    data = {
        "thread_id": thread.thread_id,
        "suspend_count": thread.suspend_count,
        "priority_class": thread.priority_class,
        "priority": thread.priority,
        "teb": f"0x{thread.teb:x}",
        "arch": thread.arch.name,
        "instruction_pointer": f"0x{context.instruction_pointer:x}",
        "stack_pointer": f"0x{context.stack_pointer:x}",
        "stack_size": len(thread.stack),
    }
    if registers:
        data["registers"] = {
            name: f"0x{value:x}" for name, value in context.general_registers().items()
        }
    return data


def _memory_data(region: MemoryRegion) -> Dict[str, Any]:
    return {
        "base_address": f"0x{region.base:x}",
        "end_address": f"0x{region.end:x}",
        "size": region.size,
        "allocation_base": f"0x{region.allocation_base:x}",
        "state": region.state_name,
        "type": region.type_name,
        "protect": region.protect_name,
        "has_data": region.has_data,
    }


def _handle_data(handle: Handle) -> Dict[str, Any]:
    return {
        "handle": str(handle),
        "type_name": handle.type_name,
        "object_name": handle.object_name,
        "attributes": handle.attributes,
        "granted_access": f"0x{handle.granted_access:x}",
        "handle_count": handle.handle_count,
        "pointer_count": handle.pointer_count,
    }


def filter_modules(dump: UserDump, module_filter: Optional[str]) -> List[Module]:
    if module_filter:
        return dump.find_modules(module_filter)
    return list(dump.modules.values())


def filter_memory(dump: UserDump, committed_only: bool = False) -> List[MemoryRegion]:
    regions = dump.memory.values()
    if committed_only:
        return [r for r in regions if r.state == MEM_COMMIT or r.has_data]
    return list(regions)


def filter_handles(dump: UserDump, type_filter: Optional[str]) -> List[Handle]:
    handles = dump.handles.values()
    if type_filter:
        type_filter = type_filter.lower()
        return [h for h in handles if h.type_name and type_filter in h.type_name.lower()]
    return list(handles)


def _generate_dump_data(dump: UserDump, filename: str) -> Dict[str, Any]:
    """generate the summary structure shared by the rich and json reports"""
    data = {
        "filename": filename,
        "header": {
            "version": dump.header.version,
            "number_of_streams": dump.header.number_of_streams,
            "time_date_stamp": dump.header.time_date_stamp,
            "flags": f"0x{dump.header.flags:x}",
        },
        "system": None,
        "summary": {
            "total_modules": len(dump.modules),
            "total_threads": len(dump.threads),
            "total_memory_regions": len(dump.memory),
            "total_handles": len(dump.handles),
            "exception_thread_id": dump.exception_thread_id,
        },
        "memory": {},
        "modules": [_module_data(m) for m in dump.modules.values()],
        "exception_thread": None,
    }

    system = dump.system
    if system is not None:
        data["system"] = {
            "architecture": system.processor_architecture.name,
            "processor_level": system.processor_level,
            "processor_revision": system.processor_revision,
            "number_of_processors": system.number_of_processors,
            "product_type": system.product_type,
            "os_version": system.os_version,
            "platform_id": system.platform_id,
            "csd_version": system.csd_version,
        }

    if dump.memory:
        regions = list(dump.memory.values())
        captured = sum(len(r.data) for r in regions)
        committed = sum(r.size for r in regions if r.state == MEM_COMMIT)
        data["memory"] = {
            "min_address": f"0x{regions[0].base:x}",
            "max_address": f"0x{regions[-1].end:x}",
            "regions_with_data": sum(1 for r in regions if r.has_data),
            "captured_bytes": captured,
            "captured_mb": round(captured / BYTES_PER_MB, 1),
            "committed_bytes": committed,
        }

    thread = dump.exception_thread()
    if thread is not None:
        data["exception_thread"] = _thread_data(thread, registers=True)
        module = dump.find_module_by_address(thread.context.instruction_pointer)
        data["exception_thread"]["module"] = module.name if module else None

    return data


def print_detailed_info_rich(dump: UserDump, filename: str):
    """display a summary of a minidump using Rich"""
    console = Console()
    data = _generate_dump_data(dump, filename)

    title = f"[bold cyan]Minidump Information[/bold cyan]\n[dim]{filename}[/dim]"
    console.print(Panel(title, expand=False))
    console.print()

    summary_table = Table(
        title="[bold]Summary[/bold]", show_header=False, box=None
    )
    summary_table.add_column("Metric", style="bold")
    summary_table.add_column("Value", style="cyan")

    summary = data["summary"]
    summary_table.add_row("Modules", f"{summary['total_modules']:,}")
    summary_table.add_row("Threads", f"{summary['total_threads']:,}")
    summary_table.add_row("Memory Regions", f"{summary['total_memory_regions']:,}")
    summary_table.add_row("Handles", f"{summary['total_handles']:,}")
    if summary["exception_thread_id"] is not None:
        summary_table.add_row("Exception Thread", str(summary["exception_thread_id"]))

    console.print(summary_table)
    console.print()

    if data["system"]:
        print_system_rich(dump, console)

    if data["memory"]:
        memory = data["memory"]
        memory_table = Table(
            title="[bold]Address Space[/bold]", show_header=False, box=None
        )
        memory_table.add_column("Property", style="bold")
        memory_table.add_column("Value", style="green")
        memory_table.add_row(
            "Address Range", f"{memory['min_address']} - {memory['max_address']}"
        )
        memory_table.add_row(
            "Captured Contents",
            f"{memory['captured_bytes']:,} bytes ({memory['captured_mb']} MB) "
            f"in {memory['regions_with_data']} regions",
        )
        memory_table.add_row("Committed", f"{memory['committed_bytes']:,} bytes")
        console.print(memory_table)
        console.print()

    if data["exception_thread"]:
        info = data["exception_thread"]
        location = f" in {info['module']}" if info["module"] else ""
        tree = Tree(
            f"[red]Exception on thread {info['thread_id']}[/red] "
            f"at {info['instruction_pointer']}{location}"
        )
        for name, value in info["registers"].items():
            tree.add(f"{name} = {value}")
        console.print(tree)
        console.print()

    if data["modules"]:
        print_modules_rich(
            list(dump.modules.values())[:DEFAULT_TOP_MODULES],
            console,
            title=f"Modules (first {min(DEFAULT_TOP_MODULES, len(dump.modules))} of {len(dump.modules)})",
        )


def print_detailed_info_json(dump: UserDump, filename: str):
    """output the minidump summary as JSON"""
    data = _generate_dump_data(dump, filename)
    print(json.dumps(data, indent=2))


def print_system_rich(dump: UserDump, console: Optional[Console] = None):
    console = console or Console()
    system = dump.system
    if system is None:
        console.print("[yellow]no system info stream[/yellow]")
        return

    table = Table(title="[bold]System[/bold]", show_header=False, box=None)
    table.add_column("Property", style="bold")
    table.add_column("Value", style="green")
    table.add_row("Architecture", system.processor_architecture.name)
    table.add_row(
        "Processor",
        f"level {system.processor_level}, revision 0x{system.processor_revision:x}",
    )
    table.add_row("Processors", str(system.number_of_processors))
    table.add_row("OS Version", system.os_version)
    table.add_row("Platform", str(system.platform_id))
    table.add_row("Product Type", str(system.product_type))
    if system.csd_version:
        table.add_row("Service Pack", system.csd_version)
    console.print(table)
    console.print()


def print_modules_rich(
    modules: Iterable[Module], console: Optional[Console] = None, title: str = "Modules"
):
    console = console or Console()
    table = Table(title=f"[bold]{title}[/bold]")
    table.add_column("Module", style="cyan", no_wrap=True)
    table.add_column("Base", style="magenta", no_wrap=True)
    table.add_column("End", style="magenta", no_wrap=True)
    table.add_column("Size", justify="right", style="blue")
    table.add_column("Version", style="green")
    table.add_column("Path", style="dim", max_width=60)

    for module in modules:
        data = _module_data(module)
        table.add_row(
            data["name"],
            data["base_address"],
            data["end_address"],
            f"{data['size']:,}",
            data["file_version"] or "",
            data["path"],
        )
    console.print(table)


def print_threads_rich(
    threads: Iterable[Thread],
    registers: bool = False,
    exception_thread_id: Optional[int] = None,
    console: Optional[Console] = None,
):
    console = console or Console()
    threads = list(threads)
    table = Table(title="[bold]Threads[/bold]")
    table.add_column("TID", justify="right", style="cyan")
    table.add_column("Arch", style="magenta")
    table.add_column("IP", style="green", no_wrap=True)
    table.add_column("SP", style="green", no_wrap=True)
    table.add_column("TEB", style="blue", no_wrap=True)
    table.add_column("Suspend", justify="right")
    table.add_column("Priority", justify="right")

    for thread in threads:
        data = _thread_data(thread)
        tid = str(data["thread_id"])
        if thread.thread_id == exception_thread_id:
            tid = f"[red]{tid} *[/red]"
        table.add_row(
            tid,
            data["arch"],
            data["instruction_pointer"],
            data["stack_pointer"],
            data["teb"],
            str(data["suspend_count"]),
            str(data["priority"]),
        )
    console.print(table)

    if registers:
        for thread in threads:
            tree = Tree(f"[cyan]thread {thread.thread_id}[/cyan]")
            for name, value in thread.context.general_registers().items():
                tree.add(f"{name} = 0x{value:x}")
            console.print(tree)


def print_memory_rich(regions: Iterable[MemoryRegion], console: Optional[Console] = None):
    console = console or Console()
    table = Table(title="[bold]Memory Regions[/bold]")
    table.add_column("Base", style="magenta", no_wrap=True)
    table.add_column("End", style="magenta", no_wrap=True)
    table.add_column("Size", justify="right", style="blue")
    table.add_column("State", style="cyan")
    table.add_column("Type", style="cyan")
    table.add_column("Protect", style="yellow")
    table.add_column("Data", justify="right", style="green")

    for region in regions:
        table.add_row(
            f"0x{region.base:x}",
            f"0x{region.end:x}",
            f"{region.size:,}",
            region.state_name,
            region.type_name,
            region.protect_name,
            f"{len(region.data):,}" if region.has_data else "-",
        )
    console.print(table)


def print_handles_rich(handles: Iterable[Handle], console: Optional[Console] = None):
    console = console or Console()
    table = Table(title="[bold]Handles[/bold]")
    table.add_column("Handle", style="cyan", no_wrap=True)
    table.add_column("Type", style="magenta")
    table.add_column("Access", style="yellow", no_wrap=True)
    table.add_column("Name", style="dim", max_width=60)

    for handle in handles:
        table.add_row(
            str(handle),
            handle.type_name or "",
            f"0x{handle.granted_access:x}",
            handle.object_name or "",
        )
    console.print(table)


def print_records_json(records: List[Dict[str, Any]]):
    print(json.dumps(records, indent=2))


def modules_json(modules: Iterable[Module]) -> List[Dict[str, Any]]:
    return [_module_data(m) for m in modules]


def threads_json(threads: Iterable[Thread], registers: bool = False) -> List[Dict[str, Any]]:
    return [_thread_data(t, registers) for t in threads]


def memory_json(regions: Iterable[MemoryRegion]) -> List[Dict[str, Any]]:
    return [_memory_data(r) for r in regions]


def handles_json(handles: Iterable[Handle]) -> List[Dict[str, Any]]:
    return [_handle_data(h) for h in handles]


def hexdump(data: bytes, address: int = 0, width: int = HEXDUMP_WIDTH) -> str:
    """format bytes as address / hex / ascii lines"""
    lines = []
    for offset in range(0, len(data), width):
        chunk = data[offset : offset + width]
        hex_part = " ".join(f"{b:02x}" for b in chunk)
        text = "".join(chr(b) if 0x20 <= b < 0x7F else "." for b in chunk)
        lines.append(f"{address + offset:016x}  {hex_part:<{width * 3 - 1}}  {text}")
    return "\n".join(lines)
