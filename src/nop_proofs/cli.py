#!/usr/bin/env python3
"""
NOP Proofs CLI

Command-line interface for publishing operator key trees, generating range
proofs and assembling deposit payloads. Provides table output for humans
and JSON output for scripts.
"""

import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from nop_proofs.api.proof_service import ProofService, ProofServiceError, format_assembly
from nop_proofs.api.registry_client import RegistryAPIClient, RegistryAPIError
from nop_proofs.errors import NopProofsError
from nop_proofs.main import assemble
from nop_proofs.merkle import fold_range, max_proof_length
from nop_proofs.operators import prep_operator_trees
from nop_proofs.registry import load_snapshot
from nop_proofs.serialization import load_operator_trees, save_operator_trees
from nop_proofs.utils.hex_helpers import hex_to_bytes

# Configure rich console
console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def format_result(result_dict: Dict[str, Any]) -> str:
    """Format a result for JSON output."""
    return json.dumps(result_dict, indent=2)


def parse_allocation(pairs: Tuple[str, ...]) -> List[Tuple[int, int]]:
    """Parse OPERATOR:KEYS pairs, e.g. ('1:4', '3:2')."""
    allocation = []
    for pair in pairs:
        try:
            op_id, keys = pair.split(":")
            allocation.append((int(op_id), int(keys)))
        except ValueError:
            raise click.BadParameter(f"Expected OPERATOR:KEYS, got '{pair}'")
    return allocation


def parse_tree_sizes(value: str) -> List[int]:
    """Parse a comma-separated list of tree sizes, e.g. '8,16'."""
    if not value.strip():
        return []
    try:
        return [int(size) for size in value.split(",")]
    except ValueError:
        raise click.BadParameter(f"Tree sizes must be comma-separated integers, got '{value}'")


def print_plan(plan: Dict[str, Any], title: str = "Deposit Plan"):
    """Print a deposit plan as tables."""
    table = Table(title=title)
    table.add_column("Operator", style="cyan")
    table.add_column("Tree", style="cyan")
    table.add_column("Keys", style="green")
    table.add_column("Batches", style="green")
    table.add_column("Proofs", style="yellow")

    for segment in plan["segments"]:
        key_end = segment["key_index"] + segment["key_count"]
        batch_end = segment["batch_index"] + segment["batch_count"]
        table.add_row(
            str(segment["operator_id"]),
            str(segment["tree_index"]),
            f"[{segment['key_index']}, {key_end})",
            f"[{segment['batch_index']}, {batch_end})",
            str(segment["proofs_count"]),
        )
    console.print(table)

    for key, value in plan["metadata"].items():
        console.print(f"  [cyan]{key.replace('_', ' ').title()}:[/cyan] {value}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, verbose: bool):
    """
    NOP Proofs CLI - Merkle range proofs for node operator validator keys.

    Operators publish keys as batch trees; this tool builds the trees,
    proves key ranges and assembles deposit payloads that a registry
    verifies in one pass.
    """
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("output", type=click.Path())
@click.option(
    "--operator",
    "-o",
    "operators",
    multiple=True,
    required=True,
    help="Comma-separated tree sizes of one operator, repeat per operator (e.g. -o 8,16 -o 32)",
)
@click.option("--keys-per-batch", "-k", type=int, envvar="NOP_KEYS_PER_BATCH", default=1, show_default=True)
@click.option("--pre-used", type=int, multiple=True, help="Keys already used, one value per operator")
def generate(output: str, operators: Tuple[str, ...], keys_per_batch: int, pre_used: Tuple[int, ...]):
    """
    Generate random operator trees and write them to OUTPUT.

    Keys and signatures are random bytes, suitable for testing and
    benchmarking only.
    """
    try:
        params = []
        for i, sizes in enumerate(operators):
            params.append({
                "tree_sizes": parse_tree_sizes(sizes),
                "keys_pre_used": pre_used[i] if i < len(pre_used) else 0,
            })
        trees = prep_operator_trees(params, keys_per_batch)
        save_operator_trees(output, trees, keys_per_batch)
        console.print(f"[green]Wrote {len(trees)} operators to {output}[/green]")
    except NopProofsError as e:
        raise click.ClickException(str(e))


@cli.command()
@click.argument("trees_file", type=click.Path(exists=True), envvar="NOP_TREES_FILE")
@click.pass_context
def inspect(ctx, trees_file: str):
    """Inspect an operator trees JSON file."""
    try:
        operators, keys_per_batch = load_operator_trees(trees_file)

        table = Table(title=f"Operator Trees ({keys_per_batch} keys per batch)")
        table.add_column("Operator", style="cyan")
        table.add_column("Tree", style="cyan")
        table.add_column("Size", style="green")
        table.add_column("Used / Capacity", style="yellow")
        table.add_column("Root")
        table.add_column("IPFS Link")

        for op_id in sorted(operators):
            operator = operators[op_id]
            for index, tree in enumerate(operator.trees):
                marker = " <" if index == operator.last_root_id else ""
                root_hex = tree.root.hex()
                table.add_row(
                    str(op_id),
                    f"{index}{marker}",
                    str(tree.tree_size),
                    f"{tree.used_keys} / {tree.capacity}",
                    f"0x{root_hex[:10]}...{root_hex[-8:]}",
                    tree.ipfs_link,
                )
        console.print(table)

    except Exception as e:
        console.print(f"[red]Inspection failed: {e}[/red]", style="bold")
        if ctx.obj.get("verbose"):
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument("trees_file", type=click.Path(exists=True), envvar="NOP_TREES_FILE")
@click.argument("operator_id", type=int)
@click.option("--tree", "tree_index", type=int, default=0, show_default=True, help="Tree index in publish order")
@click.option("--key-index", type=int, default=0, show_default=True, help="First key of the range")
@click.option("--key-count", type=int, default=1, show_default=True, help="Number of keys")
@click.option("--output", type=click.Path(), help="Write the proof JSON to a file instead of stdout")
def prove(trees_file: str, operator_id: int, tree_index: int, key_index: int, key_count: int, output: Optional[str]):
    """
    Generate a range proof for keys of one operator tree.

    The key range is rounded outward to whole batches.
    """
    try:
        service = ProofService(trees_file=trees_file)
        result = service.get_range_proof(operator_id, tree_index, key_index, key_count)
        if output:
            with open(output, "w") as f:
                f.write(format_result(result))
            console.print(f"[green]Proof written to {output}[/green]")
        else:
            print(format_result(result))
    except (NopProofsError, ProofServiceError) as e:
        logger.error(f"Error generating range proof: {e}")
        raise click.ClickException(str(e))


@cli.command()
@click.argument("proof_file", type=click.Path(exists=True))
@click.option("--tree-size", type=int, help="Number of leaves in the tree (defaults to the proof file's)")
def verify(proof_file: str, tree_size: Optional[int]):
    """
    Fold a range proof (as written by `prove`) back to its root.

    Exits with an error if the recomputed root differs from the proof's
    stated root.
    """
    try:
        with open(proof_file, "r") as f:
            data = json.load(f)

        hashes = [hex_to_bytes(h, 32) for h in data["hashes"]]
        proofs = [hex_to_bytes(p, 32) for p in data["proofs"]]
        tree_size = tree_size or data["tree_size"]
        consumed, root = fold_range(data["batch_index"], tree_size, hashes, proofs)

        table = Table(title="Range Proof Verification")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Batches", f"[{data['batch_index']}, {data['batch_index'] + len(hashes)})")
        table.add_row("Proof Hashes", f"{consumed} (max {max_proof_length(tree_size)})")
        table.add_row("Computed Root", f"0x{root.hex()}")
        table.add_row("Expected Root", data["root"])
        console.print(table)

        if consumed != len(proofs):
            raise click.ClickException(f"{len(proofs) - consumed} unused proof hashes")
        if f"0x{root.hex()}" != data["root"].lower():
            raise click.ClickException("Root mismatch")
        console.print("[green]✅ Proof valid[/green]")

    except (KeyError, ValueError, NopProofsError) as e:
        raise click.ClickException(f"Invalid proof: {e}")


@cli.command()
@click.argument("trees_file", type=click.Path(exists=True), envvar="NOP_TREES_FILE")
@click.option("--total", type=int, help="Keys to deposit, split by the registry's allocation")
@click.option("--alloc", "-a", multiple=True, help="Explicit OPERATOR:KEYS pair, repeatable")
@click.option("--registry-url", envvar="NOP_REGISTRY_URL", help="Remote registry to read usage from")
@click.option("--json", "as_json", is_flag=True, help="Print the full payload as JSON")
def plan(trees_file: str, total: Optional[int], alloc: Tuple[str, ...], registry_url: Optional[str], as_json: bool):
    """
    Assemble a deposit payload without committing anything.

    Usage counters come from the trees file, or from a remote registry
    when --registry-url is given.
    """
    if total is None and not alloc:
        raise click.UsageError("Give either --total or at least one --alloc")

    try:
        allocation = parse_allocation(alloc) if alloc else None
        if registry_url:
            client = RegistryAPIClient(registry_url)
            trees, _ = load_operator_trees(trees_file)
            keys_per_batch = client.get_keys_per_batch()
            if allocation is None:
                allocation = client.calc_keys_to_use(total)
            snapshot = load_snapshot(client, {op_id: trees[op_id] for op_id, _ in allocation})
            result = format_assembly(assemble(snapshot, allocation, keys_per_batch), allocation)
        else:
            service = ProofService(trees_file=trees_file)
            result = service.plan_deposit(total, allocation)

        if as_json:
            print(format_result(result))
        else:
            print_plan(result)

    except (NopProofsError, ProofServiceError, RegistryAPIError, KeyError) as e:
        logger.error(f"Error planning deposit: {e}")
        raise click.ClickException(str(e))


@cli.command()
@click.argument("trees_file", type=click.Path(exists=True), envvar="NOP_TREES_FILE")
@click.argument("total", type=int)
@click.option("--save", is_flag=True, help="Write the updated usage counters back to TREES_FILE")
def deposit(trees_file: str, total: int, save: bool):
    """
    Plan, verify and commit a deposit of TOTAL keys.

    Verification runs against an in-memory registry built from TREES_FILE.
    """
    try:
        service = ProofService(trees_file=trees_file)
        result = service.commit_deposit(total, persist=save)
        print_plan(result, title="Committed Deposit")
        console.print(f"[green]Committed {result['total_used_keys']} keys[/green]")
        if save:
            console.print(f"[green]Updated {trees_file}[/green]")
    except (NopProofsError, ProofServiceError) as e:
        logger.error(f"Error committing deposit: {e}")
        raise click.ClickException(str(e))


@cli.command()
@click.option("--host", envvar="NOP_API_HOST", default="127.0.0.1", help="Host to bind to")
@click.option("--port", envvar="NOP_API_PORT", default=8000, type=int, help="Port to bind to")
@click.option("--trees-file", envvar="NOP_TREES_FILE", type=click.Path(exists=True), help="Operator trees to serve")
@click.option("--dev", is_flag=True, help="Enable development mode with auto-reload")
@click.pass_context
def serve(ctx, host: str, port: int, trees_file: Optional[str], dev: bool):
    """Start the REST API server."""
    try:
        from nop_proofs.api.rest_api import run_server

        if trees_file:
            # The app builds its service lazily from the environment
            os.environ["NOP_TREES_FILE"] = trees_file

        console.print(
            Panel(
                f"Starting NOP Proofs API Server\n\n"
                f"🚀 Server: http://{host}:{port}\n"
                f"📖 Docs: http://{host}:{port}/docs\n"
                f"❤️ Health: http://{host}:{port}/health\n\n"
                f"Press Ctrl+C to stop",
                title="API Server",
                border_style="green",
            )
        )

        run_server(host=host, port=port, dev=dev)

    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped by user[/yellow]")
    except Exception as e:
        console.print(f"[red]Server error: {e}[/red]", style="bold")
        if ctx.obj.get("verbose"):
            console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    cli()
