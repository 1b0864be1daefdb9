"""`openzt` CLI entry point."""

import argparse
import asyncio
import sys
from pathlib import Path

import httpx

from openzt_manager.cli.client import ApiError, InstanceClient
from openzt_manager.cli.config import ClientConfig
from openzt_manager.cli.output import render
from openzt_manager.cli.resolver import (
    AmbiguousIdError,
    ResolutionError,
    resolve_instance_id,
)


def build_parser(config: ClientConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage OpenZT instances",
        prog="openzt",
    )
    parser.add_argument(
        "--api-url",
        default=config.api_url,
        help=f"Manager URL (default: {config.api_url})",
    )
    parser.add_argument(
        "--output", "-o",
        choices=["table", "json"],
        default=config.output,
        help="Output format",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # create command
    create_parser = subparsers.add_parser("create", help="Create a new instance")
    create_parser.add_argument("dll_path", type=Path, help="Path to the OpenZT DLL")
    create_parser.add_argument("--rdp-password", help="RDP password")
    create_parser.add_argument("--wine-debug", help="WINEDEBUG level")
    create_parser.add_argument("--cpulimit", type=float, help="CPU limit (cores)")
    create_parser.add_argument(
        "--mod", "-m",
        dest="mods",
        action="append",
        default=[],
        help="Mod identifier (repeatable)",
    )

    # list command
    subparsers.add_parser("list", help="List all instances")

    # get command
    get_parser = subparsers.add_parser("get", help="Show one instance")
    get_parser.add_argument("id", help="Instance id or unique prefix")

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete an instance")
    delete_parser.add_argument("id", help="Instance id or unique prefix")
    delete_parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Skip confirmation",
    )

    # logs command
    logs_parser = subparsers.add_parser("logs", help="Show instance logs")
    logs_parser.add_argument("id", help="Instance id or unique prefix")
    logs_parser.add_argument("--tail", "-n", type=int, help="Number of lines")

    # health command
    subparsers.add_parser("health", help="Check manager health")

    return parser


async def run(args: argparse.Namespace, client: InstanceClient) -> int:
    """Execute one command. Returns the process exit code."""
    if args.command == "create":
        dll = args.dll_path.read_bytes()
        instance = await client.create_instance(
            dll,
            mods=args.mods,
            rdp_password=args.rdp_password,
            wine_debug_level=args.wine_debug,
            cpulimit=args.cpulimit,
        )
        print(render(instance, args.output))
        return 1 if instance["state"] == "error" else 0

    if args.command == "list":
        print(render(await client.list_instances(), args.output))
        return 0

    if args.command == "health":
        print(render(await client.health(), args.output))
        return 0

    instance_id = await resolve_instance_id(client, args.id)

    if args.command == "get":
        print(render(await client.get_instance(instance_id), args.output))

    elif args.command == "logs":
        print(await client.get_logs(instance_id, tail=args.tail), end="")

    elif args.command == "delete":
        if not args.yes:
            confirm = input(f"Delete instance '{instance_id}'? [y/N]: ")
            if confirm.lower() != "y":
                print("Cancelled")
                return 0
        await client.delete_instance(instance_id)
        print(f"Instance '{instance_id}' deleted")

    return 0


async def _main(args: argparse.Namespace, config: ClientConfig) -> int:
    async with InstanceClient(args.api_url, timeout=config.timeout) as client:
        return await run(args, client)


def main() -> None:
    """CLI entry point."""
    config = ClientConfig()
    args = build_parser(config).parse_args()

    try:
        code = asyncio.run(_main(args, config))
    except AmbiguousIdError as e:
        print(f"Error: {e}", file=sys.stderr)
        for match in e.matches:
            print(f"  {match}", file=sys.stderr)
        print(e.hint, file=sys.stderr)
        sys.exit(1)
    except (ResolutionError, ApiError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except httpx.HTTPError as e:
        print(f"Error: cannot reach manager at {args.api_url}: {e}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
