#!/usr/bin/env python3
"""
Sandbox Pool Admin CLI.

Usage:
  python scripts/sandbox_cli.py status                 # Runtime availability
  python scripts/sandbox_cli.py policies               # List agent policies
  python scripts/sandbox_cli.py show <agent_id>        # Effective limits
  python scripts/sandbox_cli.py set <agent_id> --cpu 2 --memory 1024
  python scripts/sandbox_cli.py remove <agent_id>      # Back to defaults
  python scripts/sandbox_cli.py purge                  # Remove stale containers
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load .env file if it exists
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.prompt import Confirm
from rich import box

from src.config import settings
from src.models.policy import AgentPolicyUpdate
from src.models.sandbox import ResourceLimits
from src.services.sandbox.policy import PolicyStore
from src.services.sandbox.runtime import ContainerRuntime

console = Console()


# ============================================================================
# Formatting Helpers
# ============================================================================

def build_limits_table(title: str, limits: ResourceLimits) -> Table:
    """Render effective limits as a two-column table."""
    table = Table(title=title, box=box.ROUNDED, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("CPU", f"{limits.cpu_limit}")
    table.add_row("Memory", f"{limits.memory_limit_mb} MB")
    table.add_row("Network", limits.network_policy.value)
    table.add_row("Timeout", f"{limits.timeout_seconds}s")
    table.add_row("PIDs", str(limits.pids_limit))
    table.add_row("Storage", f"{limits.storage_limit_mb} MB")
    return table


async def open_store(args) -> PolicyStore:
    store = PolicyStore(db_path=args.db)
    await store.open()
    return store


# ============================================================================
# Commands
# ============================================================================

async def cmd_status(args):
    """Show runtime availability and pool configuration."""
    runtime = ContainerRuntime()
    available = await runtime.is_docker_available()
    containers = await runtime.list_sandbox_containers() if available else []

    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Runtime", settings.sandbox_runtime_binary)
    table.add_row(
        "Available", "[green]yes[/green]" if available else "[red]no[/red]"
    )
    table.add_row("Name prefix", settings.sandbox_name_prefix)
    table.add_row("Existing containers", str(len(containers)))
    table.add_row("Warm pool size", str(settings.sandbox_warm_pool_size))
    table.add_row("Max containers", str(settings.sandbox_max_containers))
    table.add_row("Idle timeout", f"{settings.sandbox_idle_timeout_ms / 1000:.0f}s")
    table.add_row("Image", settings.sandbox_default_image)

    console.print()
    console.print(Panel(table, title="[bold]Sandbox Runtime[/bold]", border_style="magenta"))
    console.print()


async def cmd_policies(args):
    """List stored agent policies."""
    store = await open_store(args)
    try:
        records = await store.list_agent_policies()
    finally:
        await store.close()

    if not records:
        console.print("[dim]No agent policies stored; all agents use defaults.[/dim]")
        return

    table = Table(title="Agent Policies", box=box.ROUNDED)
    table.add_column("Agent", style="cyan")
    table.add_column("CPU", justify="right")
    table.add_column("Memory", justify="right")
    table.add_column("Network")
    table.add_column("Timeout", justify="right")
    table.add_column("Updated")
    for record in records:
        table.add_row(
            record.agent_id,
            f"{record.cpu_limit}",
            f"{record.memory_limit_mb} MB",
            record.network_policy.value,
            f"{record.timeout_seconds}s",
            record.updated_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print()
    console.print(table)
    console.print()


async def cmd_show(args):
    """Show the effective limits for one agent."""
    store = await open_store(args)
    try:
        limits = await store.get_agent_policy(args.agent_id)
    finally:
        await store.close()
    console.print()
    console.print(build_limits_table(f"Limits: {args.agent_id}", limits))
    console.print()


async def cmd_set(args):
    """Create or update an agent policy."""
    update = AgentPolicyUpdate(
        cpu_limit=args.cpu,
        memory_limit_mb=args.memory,
        network_policy=args.network,
        timeout_seconds=args.timeout,
    )
    store = await open_store(args)
    try:
        limits = await store.set_agent_policy(args.agent_id, update)
    finally:
        await store.close()
    console.print(f"[green]Policy saved for {args.agent_id}[/green]")
    console.print(build_limits_table(f"Limits: {args.agent_id}", limits))


async def cmd_remove(args):
    """Remove an agent policy."""
    if not args.force and not Confirm.ask(
        f"Remove policy for {args.agent_id}?", default=False
    ):
        console.print("[yellow]Cancelled[/yellow]")
        return

    store = await open_store(args)
    try:
        removed = await store.remove_agent_policy(args.agent_id)
    finally:
        await store.close()

    if removed:
        console.print(f"[green]Policy removed: {args.agent_id}[/green]")
    else:
        console.print(f"[red]No policy found for {args.agent_id}[/red]")


async def cmd_purge(args):
    """Stop and remove every container carrying the sandbox name prefix."""
    runtime = ContainerRuntime()
    if not await runtime.is_docker_available():
        console.print(f"[red]Error:[/red] {settings.sandbox_runtime_binary} is not available")
        sys.exit(1)

    container_ids = await runtime.list_sandbox_containers()
    if not container_ids:
        console.print("[dim]No sandbox containers found.[/dim]")
        return

    if not args.force and not Confirm.ask(
        f"Remove {len(container_ids)} sandbox container(s)?", default=False
    ):
        console.print("[yellow]Cancelled[/yellow]")
        return

    for container_id in container_ids:
        await runtime.stop_container(container_id)
        await runtime.remove_container(container_id)
        console.print(f"  removed {container_id[:12]}")
    console.print(f"[green]Purged {len(container_ids)} container(s)[/green]")


def main():
    parser = argparse.ArgumentParser(
        description="Sandbox Pool Admin CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s status                          # Runtime availability
  %(prog)s policies                        # List agent policies
  %(prog)s set agent-1 --cpu 2 --network none
  %(prog)s remove agent-1 -f               # Remove without confirmation
  %(prog)s purge                           # Remove stale containers
"""
    )
    parser.add_argument(
        "--db", default=settings.policy_db_path, help="Policy database path"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # status
    subparsers.add_parser("status", help="Runtime availability and pool config")

    # policies
    subparsers.add_parser("policies", help="List stored agent policies")

    # show
    show_p = subparsers.add_parser("show", help="Effective limits for an agent")
    show_p.add_argument("agent_id", help="Agent ID")

    # set
    set_p = subparsers.add_parser("set", help="Create or update an agent policy")
    set_p.add_argument("agent_id", help="Agent ID")
    set_p.add_argument("--cpu", type=float, help="CPU limit (cores)")
    set_p.add_argument("--memory", type=int, help="Memory limit (MB)")
    set_p.add_argument(
        "--network", choices=["none", "host", "restricted"], help="Network policy"
    )
    set_p.add_argument("--timeout", type=int, help="Timeout (seconds)")

    # remove
    remove_p = subparsers.add_parser("remove", help="Remove an agent policy")
    remove_p.add_argument("agent_id", help="Agent ID")
    remove_p.add_argument("-f", "--force", action="store_true", help="Skip confirmation")

    # purge
    purge_p = subparsers.add_parser("purge", help="Remove stale sandbox containers")
    purge_p.add_argument("-f", "--force", action="store_true", help="Skip confirmation")

    args = parser.parse_args()

    handlers = {
        "status": cmd_status,
        "policies": cmd_policies,
        "show": cmd_show,
        "set": cmd_set,
        "remove": cmd_remove,
        "purge": cmd_purge,
    }

    try:
        asyncio.run(handlers[args.command](args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(0)


if __name__ == "__main__":
    main()
