# echoledger/cli/main.py
"""
CLI for sealing, inspecting, verifying and fetching recording proofs.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from echoledger.chain.session import FINAL_FILE_NAME, RecordingSession
from echoledger.config import load_settings
from echoledger.core.errors import ConfigError, NotFound, NotYetAvailable, RetrievalError
from echoledger.core.types import HashingMode, ProofBundle, SignatureRevision
from echoledger.crypto.keys import SignerKeyPair
from echoledger.retrieval import ResilientFetcher, create_store
from echoledger.verify.verifier import ChainVerifier, FileStatus

app = typer.Typer(
    name="echo-ledger",
    help="Seal, inspect, verify and fetch progressive audio recording proofs",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

STATUS_STYLE = {
    FileStatus.UNALTERED: "[green]unaltered[/]",
    FileStatus.TAMPERED: "[bold red]TAMPERED[/]",
    FileStatus.METADATA_ONLY: "[yellow]metadata only[/]",
    FileStatus.NOT_INDEXED: "[red]not in proof[/]",
}


def _settings():
    try:
        return load_settings()
    except ConfigError as e:
        console.print(f"[red]Invalid configuration: {e}[/]")
        raise typer.Exit(2)


def _read_bundle_text(path: Path) -> str:
    if not path.exists():
        console.print(f"[red]Proof file not found: {path}[/]")
        raise typer.Exit(1)
    return path.read_text(encoding="utf-8")


def _parse_file_args(file_args: List[str]) -> dict:
    files = {}
    for arg in file_args:
        name, sep, raw_path = arg.partition("=")
        if not sep or not name or not raw_path:
            console.print(f"[red]--file expects NAME=PATH, got {arg!r}[/]")
            raise typer.Exit(2)
        path = Path(raw_path)
        if not path.exists():
            console.print(f"[red]Media file not found: {path}[/]")
            raise typer.Exit(1)
        files[name] = path.read_bytes()
    return files


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log library activity to stderr"),
):
    """Manage progressive audio recording proofs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def seal(
    chunks: List[Path] = typer.Argument(..., help="Chunk files, in recording order"),
    output: Path = typer.Option(..., "--output", "-o", help="Where to write the proof JSON"),
    mode: HashingMode = typer.Option(HashingMode.SCALAR, "--mode", help="Content hashing mode"),
    chunk_duration: Optional[float] = typer.Option(None, "--chunk-duration", help="Seconds per chunk"),
):
    """Build and sign a proof from chunk files with a fresh signing key (no witnessing)."""
    settings = _settings()
    for path in chunks:
        if not path.exists():
            console.print(f"[red]Chunk file not found: {path}[/]")
            raise typer.Exit(1)
    names = [path.name for path in chunks]
    duplicates = sorted({n for n in names if names.count(n) > 1} | ({FINAL_FILE_NAME} & set(names)))
    if duplicates:
        console.print(f"[red]Chunk file names must be unique and not {FINAL_FILE_NAME}: {', '.join(duplicates)}[/]")
        raise typer.Exit(2)

    keys = SignerKeyPair.generate()
    session = RecordingSession.from_settings(
        settings,
        keys.sign_message,
        mode=mode,
        chunk_duration=chunk_duration if chunk_duration is not None else settings.chunk_duration,
    )
    session.start()
    for path in chunks:
        session.process_chunk(path.read_bytes(), file_name=path.name)
    session.stop()

    bundle = session.export()
    output.write_text(bundle.dumps(), encoding="utf-8")
    console.print(f"[green]Sealed {bundle.chunk_count} chunks into {output}[/]")
    console.print(f"  Signer: {keys.address}")
    console.print(f"  Revisions: {bundle.chain.length} ({mode.value} hashing)")


@app.command()
def verify(
    bundle_path: Path = typer.Argument(..., help="Proof JSON to verify"),
    file_args: List[str] = typer.Option([], "--file", "-f", help="NAME=PATH of original media to check"),
    audio: Optional[Path] = typer.Option(None, "--audio", help=f"Combined audio, checked as {FINAL_FILE_NAME}"),
):
    """Verify a proof's chain, signatures and embedded content, plus any supplied media."""
    settings = _settings()
    text = _read_bundle_text(bundle_path)
    files = _parse_file_args(file_args)
    if audio is not None:
        if not audio.exists():
            console.print(f"[red]Media file not found: {audio}[/]")
            raise typer.Exit(1)
        files[FINAL_FILE_NAME] = audio.read_bytes()

    result = ChainVerifier(max_wire_depth=settings.max_wire_depth).verify(text, files)

    if result.structure_valid:
        console.print(f"[green]✓ Proof structure is valid[/] ({bundle_path})")
    else:
        console.print(f"[red]✗ Proof structure is invalid[/] ({bundle_path})")
        for failure in result.failures:
            console.print(f"  • [{failure.index}] {failure.category}: {failure.message}")

    if result.content_checked:
        for name, check in result.files.items():
            if check.status is not FileStatus.METADATA_ONLY:
                console.print(f"  {name}: {STATUS_STYLE[check.status]}")
    else:
        console.print("[yellow]No media supplied, audio authenticity not checked (metadata only)[/]")

    report = result.report
    if report is not None:
        table = Table(title="Recording")
        table.add_column("Field")
        table.add_column("Value")
        table.add_row("Signer", report.signer_address or "—")
        table.add_row("Started", report.started_at.isoformat() if report.started_at else "—")
        table.add_row("Ended", report.ended_at.isoformat() if report.ended_at else "—")
        table.add_row("Chunks", str(report.chunk_count))
        table.add_row("Duration", f"{report.total_duration:g}s")
        table.add_row("Content revisions", str(report.content_revisions))
        table.add_row("Signature revisions", str(report.signature_revisions))
        table.add_row("Anchor", report.anchor_identity or "—")
        console.print(table)
        if report.estimated_capture_start is not None:
            console.print(
                f"  Capture likely began around {report.estimated_capture_start.isoformat()} "
                "(estimate, one chunk before the first revision)"
            )
        for line in report.witness_lines():
            console.print(f"  [cyan]witness[/] {line}")

    if not result.is_valid:
        raise typer.Exit(1)


@app.command()
def inspect(
    bundle_path: Path = typer.Argument(..., help="Proof JSON to inspect"),
):
    """List the revisions in a proof without verifying them."""
    settings = _settings()
    text = _read_bundle_text(bundle_path)
    try:
        bundle = ProofBundle.loads(text, max_depth=settings.max_wire_depth)
    except ValueError as e:
        console.print(f"[red]Could not read proof: {e}[/]")
        raise typer.Exit(1)

    table = Table(title=f"Revisions ({bundle.chain.mode.value if bundle.chain.mode else 'unknown'} hashing)")
    table.add_column("#")
    table.add_column("Type")
    table.add_column("Hash")
    table.add_column("Time")
    table.add_column("Detail")

    for i, (h, revision) in enumerate(bundle.chain):
        if isinstance(revision, SignatureRevision):
            detail = f"signed by {revision.signer_address[:16]}…"
        else:
            detail = bundle.chain.file_index.get(h, "")
            if revision.content is not None:
                detail += f" ({len(revision.content)} bytes embedded)"
        table.add_row(str(i), revision.revision_type, h[:18] + "…", revision.timestamp, detail)

    console.print(table)
    console.print(f"  Witnesses: {len(bundle.witnesses)}")


@app.command()
def fetch(
    key: str = typer.Argument(..., help="Content address of the blob"),
    output: Path = typer.Option(..., "--output", "-o", help="Where to write the blob"),
    proof: bool = typer.Option(False, "--proof", help="Blob is a proof JSON rather than media"),
    gateway: Optional[str] = typer.Option(None, "--gateway", help="Gateway base URL (overrides ECHO_GATEWAY_URL)"),
):
    """Fetch a blob from the gateway with retry and backoff."""
    settings = _settings()
    base_url = gateway or settings.gateway_url
    if not base_url:
        console.print("[red]No gateway configured.[/]")
        console.print("  • Pass --gateway https://gateway.example")
        console.print("  • Or set ECHO_GATEWAY_URL")
        raise typer.Exit(2)

    try:
        store = create_store(base_url, token=settings.gateway_token)
    except ValueError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(2)

    with store:
        fetcher = ResilientFetcher.from_settings(store, settings)
        try:
            if proof:
                data = fetcher.fetch_proof(key)
                output.write_text(json.dumps(data, indent=2), encoding="utf-8")
            else:
                output.write_bytes(fetcher.fetch_media(key))
        except NotFound as e:
            console.print(f"[red]Not found: {e}[/]")
            raise typer.Exit(1)
        except NotYetAvailable as e:
            console.print(f"[yellow]{e}[/]")
            console.print("  The blob may still be propagating. Try again shortly.")
            raise typer.Exit(2)
        except RetrievalError as e:
            console.print(f"[red]Fetch failed: {e}[/]")
            raise typer.Exit(1)

    console.print(f"[green]Fetched {key} to {output}[/]")


if __name__ == "__main__":
    app()
