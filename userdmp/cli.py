"""command line interface for userdmp"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from .analysis import (
    filter_handles,
    filter_memory,
    filter_modules,
    handles_json,
    hexdump,
    memory_json,
    modules_json,
    print_detailed_info_json,
    print_detailed_info_rich,
    print_handles_rich,
    print_memory_rich,
    print_modules_rich,
    print_records_json,
    print_system_rich,
    print_threads_rich,
    threads_json,
)
from .core import UserDump

err_console = Console(stderr=True)

app = typer.Typer(
    help="inspect windows user-mode minidump files",
    no_args_is_help=True,
    context_settings=dict(help_option_names=["-h", "--help"]),
    pretty_exceptions_short=True,
    pretty_exceptions_show_locals=False,
    add_completion=False,
)

# global state for verbose option
verbose_level = 0


def setup_logging(verbose: int = 0):
    """setup logging based on verbosity level"""
    levels = [logging.WARNING, logging.INFO, logging.DEBUG]
    level = levels[min(verbose, len(levels) - 1)]

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
    )


@app.callback()
def main_callback(
    verbose: int = typer.Option(
        0, "-v", "--verbose", count=True, help="increase verbosity"
    ),
):
    """global options for userdmp"""
    global verbose_level
    verbose_level = verbose
    setup_logging(verbose)


def _fail(action: str, file: Path, e: Exception):
    typer.echo(f"error {action} {file}: {e}", err=True)
    if verbose_level > 1:
        import traceback

        traceback.print_exc()
    raise typer.Exit(1)


def _parse_address(value: str) -> int:
    try:
        return int(value, 0)
    except ValueError:
        raise typer.BadParameter(f"invalid address: {value}")


@app.command()
def info(
    file: Path = typer.Argument(..., help="minidump file to analyze"),
    json_output: bool = typer.Option(
        False, "--json", help="output information as JSON"
    ),
):
    """display a summary of a minidump"""
    try:
        with UserDump.from_file(file) as dump:
            if json_output:
                print_detailed_info_json(dump, file.name)
            else:
                print_detailed_info_rich(dump, file.name)
    except Exception as e:
        _fail("analyzing", file, e)


@app.command()
def system(
    file: Path = typer.Argument(..., help="minidump file to analyze"),
):
    """display processor and operating system information"""
    try:
        with UserDump.from_file(file) as dump:
            print_system_rich(dump)
    except Exception as e:
        _fail("reading", file, e)


@app.command()
def modules(
    file: Path = typer.Argument(..., help="minidump file to analyze"),
    module_filter: Optional[str] = typer.Option(
        None, "--filter", "-f", help="only show modules whose path contains this"
    ),
    json_output: bool = typer.Option(False, "--json", help="output as JSON"),
):
    """list loaded modules"""
    try:
        with UserDump.from_file(file) as dump:
            selected = filter_modules(dump, module_filter)
            if json_output:
                print_records_json(modules_json(selected))
            elif not selected:
                typer.echo("no modules found")
            else:
                print_modules_rich(selected)
    except Exception as e:
        _fail("reading", file, e)


@app.command()
def threads(
    file: Path = typer.Argument(..., help="minidump file to analyze"),
    registers: bool = typer.Option(
        False, "--registers", "-r", help="show general purpose registers"
    ),
    json_output: bool = typer.Option(False, "--json", help="output as JSON"),
):
    """list threads and their register state"""
    try:
        with UserDump.from_file(file) as dump:
            selected = list(dump.threads.values())
            if json_output:
                print_records_json(threads_json(selected, registers))
            elif not selected:
                typer.echo("no threads found")
            else:
                print_threads_rich(
                    selected, registers, exception_thread_id=dump.exception_thread_id
                )
    except Exception as e:
        _fail("reading", file, e)


@app.command()
def memory(
    file: Path = typer.Argument(..., help="minidump file to analyze"),
    committed: bool = typer.Option(
        False, "--committed", "-c", help="only show committed or captured regions"
    ),
    json_output: bool = typer.Option(False, "--json", help="output as JSON"),
):
    """list memory regions"""
    try:
        with UserDump.from_file(file) as dump:
            selected = filter_memory(dump, committed)
            if json_output:
                print_records_json(memory_json(selected))
            elif not selected:
                typer.echo("no memory regions found")
            else:
                print_memory_rich(selected)
    except Exception as e:
        _fail("reading", file, e)


@app.command()
def handles(
    file: Path = typer.Argument(..., help="minidump file to analyze"),
    type_filter: Optional[str] = typer.Option(
        None, "--type", "-t", help="only show handles of this type (e.g. File, Key)"
    ),
    json_output: bool = typer.Option(False, "--json", help="output as JSON"),
):
    """list open handles"""
    try:
        with UserDump.from_file(file) as dump:
            selected = filter_handles(dump, type_filter)
            if json_output:
                print_records_json(handles_json(selected))
            elif not selected:
                typer.echo("no handles found")
            else:
                print_handles_rich(selected)
    except Exception as e:
        _fail("reading", file, e)


@app.command()
def read(
    file: Path = typer.Argument(..., help="minidump file to read from"),
    address: str = typer.Argument(..., help="virtual address (hex with 0x prefix)"),
    size: int = typer.Option(64, "--size", "-n", help="number of bytes to dump"),
):
    """hex dump captured memory at an address"""
    addr = _parse_address(address)
    try:
        with UserDump.from_file(file) as dump:
            data = dump.read_memory(addr, size)
            typer.echo(hexdump(data, addr))
    except Exception as e:
        _fail("reading", file, e)


def main():
    """entry point for console script"""
    app()


if __name__ == "__main__":
    main()
