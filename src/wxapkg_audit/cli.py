"""Command line interface for wxapkg audit."""

from __future__ import annotations

import json
import logging
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Callable

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from wxapkg_audit import __version__
from wxapkg_audit.container import decode_container, encode_container, extract_entries
from wxapkg_audit.container.extract import DEFAULT_WORKERS
from wxapkg_audit.crypto.envelope import decrypt, decrypt_file, is_encrypted
from wxapkg_audit.decompiler import (
    UNKNOWN_IDENTIFIER,
    Decompiler,
    RunState,
    discover_packages,
    extract_identifier,
    run_batch,
    summary_records,
)
from wxapkg_audit.errors import (
    DecryptionFailure,
    InvalidContainerFormat,
    PatternCompileError,
)
from wxapkg_audit.lookup import lookup_app_info, offline_lookup
from wxapkg_audit.scanner.patterns import PatternConfig, load_pattern_file, parse_sensitive_text

EXIT_SUCCESS = 0
EXIT_USAGE = 1
EXIT_CRYPTO = 2
EXIT_FS = 3
EXIT_CORRUPT = 4

DEFAULT_OUTPUT_ROOT = Path.home() / ".wxapkg-audit" / "output"

console = Console()


def _package_version() -> str:
    try:
        return version("wxapkg-audit")
    except PackageNotFoundError:
        return __version__


def _handle_action(action: Callable[[], None]) -> int:
    try:
        action()
    except PatternCompileError as exc:
        console.print(f"[red]Invalid pattern:[/red] {exc}")
        return EXIT_USAGE
    except DecryptionFailure as exc:
        console.print(f"[red]Decryption failed:[/red] {exc}")
        return EXIT_CRYPTO
    except InvalidContainerFormat as exc:
        console.print(f"[red]Error: package is corrupted or not supported:[/red] {exc}")
        return EXIT_CORRUPT
    except FileNotFoundError as exc:
        console.print(f"[red]File not found:[/red] {exc}")
        return EXIT_FS
    except PermissionError as exc:
        console.print(f"[red]Permission denied:[/red] {exc}")
        return EXIT_FS
    except OSError as exc:  # noqa: BLE001
        console.print(f"[red]Filesystem error:[/red] {exc}")
        return EXIT_FS
    except ValueError as exc:
        console.print(f"[red]Invalid input:[/red] {exc}")
        return EXIT_USAGE
    return EXIT_SUCCESS


def _split_csv(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [item for item in (part.strip() for part in value.split(",")) if item]


def _resolve_config(
    config_path: Path | None,
    endpoint_regex: str | None,
    sensitive: tuple[str, ...],
    suffix_blacklist: str | None,
    prefix_blacklist: str | None,
) -> PatternConfig:
    base = load_pattern_file(config_path) if config_path is not None else PatternConfig.default()
    return PatternConfig.from_overrides(
        endpoint_pattern=endpoint_regex or base.endpoint_pattern,
        sensitive_patterns=parse_sensitive_text("\n".join(sensitive)) if sensitive else base.sensitive_patterns,
        suffix_blacklist=_split_csv(suffix_blacklist) or base.suffix_blacklist,
        prefix_blacklist=_split_csv(prefix_blacklist) or base.prefix_blacklist,
    )


def _print_results(runs: list[Decompiler]) -> None:
    info_table = Table(title="Mini program info")
    info_table.add_column("Item")
    info_table.add_column("Value", overflow="fold")
    for run in runs:
        for record in summary_records(run):
            info_table.add_row(escape(record.label), escape(record.value))
    console.print(info_table)

    endpoint_table = Table(title="Endpoints")
    endpoint_table.add_column("#", justify="right")
    endpoint_table.add_column("File", overflow="fold")
    endpoint_table.add_column("Endpoint", overflow="fold")
    sensitive_table = Table(title="Sensitive data")
    sensitive_table.add_column("File", overflow="fold")
    sensitive_table.add_column("Category")
    sensitive_table.add_column("Content", overflow="fold")
    for run in runs:
        for endpoint in run.endpoints:
            endpoint_table.add_row(str(endpoint.index), escape(endpoint.source_file), escape(endpoint.endpoint))
        for finding in run.sensitive:
            sensitive_table.add_row(escape(finding.source_file), escape(finding.category), escape(finding.matched_text))
    console.print(endpoint_table)
    console.print(sensitive_table)


def _export_json(runs: list[Decompiler], target: Path) -> None:
    document = [
        {
            "package": str(run.source_path),
            "kind": run.package_kind,
            "appid": run.identifier,
            "state": run.state.value,
            "appInfo": [{"label": r.label, "value": r.value} for r in run.app_info],
            "endpoints": [f.to_dict() for f in run.endpoints],
            "sensitive": [f.to_dict() for f in run.sensitive],
        }
        for run in runs
    ]
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=_package_version(), prog_name="wxapkg audit")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Unpack WeChat mini program packages and scan them for leaks."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@cli.command(
    help="Unpack one package or every package below a directory and scan for leaks.",
    epilog="Examples:\n  wxaudit scan ./wx0123456789abcdef\n  wxaudit scan __APP__.wxapkg --json report.json --no-lookup",
)
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--output",
    "output_root",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_OUTPUT_ROOT,
    envvar="WXAUDIT_OUTPUT",
    show_default=True,
    help="Directory that receives one sub-directory per AppID.",
)
@click.option("--workers", type=click.IntRange(min=1), default=DEFAULT_WORKERS, show_default=True)
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), help="JSON pattern file.")
@click.option("--endpoint-regex", help="Regular expression used to extract endpoints.")
@click.option("--sensitive", multiple=True, help="Sensitive data pattern as 'label:regex' (repeatable).")
@click.option("--suffix-blacklist", help="Comma separated URL suffixes to ignore.")
@click.option("--prefix-blacklist", help="Comma separated substrings that suppress an endpoint.")
@click.option("--lookup/--no-lookup", default=True, help="Query mini program metadata online.")
@click.option("--json", "json_path", type=click.Path(dir_okay=False, path_type=Path), help="Write results as JSON.")
@click.pass_context
def scan(
    ctx: click.Context,
    path: Path,
    output_root: Path,
    workers: int,
    config_path: Path | None,
    endpoint_regex: str | None,
    sensitive: tuple[str, ...],
    suffix_blacklist: str | None,
    prefix_blacklist: str | None,
    lookup: bool,
    json_path: Path | None,
) -> None:
    try:
        config = _resolve_config(config_path, endpoint_regex, sensitive, suffix_blacklist, prefix_blacklist)
    except PatternCompileError as exc:
        console.print(f"[red]Invalid pattern:[/red] {exc}")
        ctx.exit(EXIT_USAGE)
        return

    packages = discover_packages(path)
    if not packages:
        console.print(f"[yellow]No .wxapkg files found under[/yellow] {path}")
        ctx.exit(EXIT_USAGE)
        return

    runs: list[Decompiler] = []

    def _run() -> None:
        runs.extend(
            run_batch(
                packages,
                output_root,
                workers,
                config=config,
                lookup=lookup_app_info if lookup else offline_lookup,
            )
        )
        _print_results(runs)
        if json_path is not None:
            _export_json(runs, json_path)

    code = _handle_action(_run)
    if code == EXIT_SUCCESS:
        failed = [run for run in runs if run.state is not RunState.DONE]
        console.print(f"[green]Processed {len(runs)} package(s).[/green]")
        if failed:
            console.print(f"[red]{len(failed)} package(s) could not be unpacked.[/red]")
            code = EXIT_CORRUPT
    ctx.exit(code)


@cli.command("decrypt", help="Remove the encryption envelope from a package.")
@click.argument("package", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("output_path", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.option("--appid", help="AppID used as the key (taken from the path if omitted).")
@click.pass_context
def decrypt_cmd(ctx: click.Context, package: Path, output_path: Path | None, appid: str | None) -> None:
    identifier = appid or extract_identifier(package)
    if identifier == UNKNOWN_IDENTIFIER:
        console.print("[yellow]AppID not found in path, decryption will most likely fail.[/yellow]")
    target = output_path or package.with_name(f"{package.stem}_decrypted.wxapkg")
    code = _handle_action(lambda: decrypt_file(identifier, package, target))
    if code == EXIT_SUCCESS:
        console.print(f"[green]Decrypted to[/green] {target}.")
    ctx.exit(code)


@cli.command(help="Extract the members of a package without scanning them.")
@click.argument("package", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("output_dir", type=click.Path(file_okay=False, path_type=Path))
@click.option("--appid", help="AppID used when the package is encrypted.")
@click.option("--workers", type=click.IntRange(min=1), default=DEFAULT_WORKERS, show_default=True)
@click.pass_context
def unpack(ctx: click.Context, package: Path, output_dir: Path, appid: str | None, workers: int) -> None:
    counts: dict[str, int] = {}

    def _run() -> None:
        data = package.read_bytes()
        if is_encrypted(data):
            data = decrypt(appid or extract_identifier(package), data)
        entries = decode_container(data)
        result = extract_entries(entries, data, output_dir, workers)
        for warning in result.warnings:
            console.print(f"[yellow]{escape(warning)}[/yellow]")
        counts["written"] = result.written
        counts["scheduled"] = result.scheduled

    code = _handle_action(_run)
    if code == EXIT_SUCCESS:
        console.print(
            f"[green]Extracted {counts['written']} of {counts['scheduled']} file(s) to[/green] {output_dir}."
        )
    ctx.exit(code)


@cli.command(help="Build a plaintext package from a directory.")
@click.argument("directory", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.argument("output_path", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def pack(ctx: click.Context, directory: Path, output_path: Path) -> None:
    def _run() -> None:
        members = [
            ("/" + path.relative_to(directory).as_posix(), path.read_bytes())
            for path in sorted(directory.rglob("*"))
            if path.is_file()
        ]
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(encode_container(members))

    code = _handle_action(_run)
    if code == EXIT_SUCCESS:
        console.print(f"[green]Packed to[/green] {output_path}.")
    ctx.exit(code)


def main(argv: list[str] | None = None) -> int:
    try:
        return cli.main(args=argv, prog_name="wxaudit", standalone_mode=False)
    except SystemExit as exc:  # noqa: TRY003
        code = exc.code if isinstance(exc.code, int) else EXIT_USAGE
        return code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
