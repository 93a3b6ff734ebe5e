# CLI interface for mcporbit
import argparse
import difflib
import json
import logging
import sys
from pathlib import Path

from mcporbit import __version__
from mcporbit.apply import OrchestratorResult
from mcporbit.config import Settings, load_settings
from mcporbit.conflicts import BULK_ACTIONS, ConflictResolution
from mcporbit.drift import accept_drift, check_drift
from mcporbit.models import ClientType, Server
from mcporbit.platforms import get_all_adapters
from mcporbit.registry import RegistryService
from mcporbit.store import Store

# ABOUTME: Exit codes
# 0 = success, 1 = partial success, 2 = config error, 3 = fatal
EXIT_SUCCESS = 0
EXIT_PARTIAL = 1
EXIT_CONFIG_ERROR = 2
EXIT_FATAL = 3

CLIENT_CHOICES = [client.value for client in ClientType]

logger = logging.getLogger(__name__)


def build_service(settings: Settings) -> RegistryService:
    """Wire store, adapters and service from settings."""
    store = Store.from_path(settings.db_path).init()
    adapters = get_all_adapters(settings.client_paths, settings.backup_dir)
    return RegistryService(
        store,
        adapters,
        backup_dir=settings.backup_dir,
        backup_retention=settings.backup_retention,
        config_paths=settings.client_paths,
    )


def _parse_pairs(value: str | None) -> dict[str, str] | None:
    """Parse comma-separated KEY=VALUE pairs."""
    if not value:
        return None
    pairs: dict[str, str] = {}
    for pair in value.split(","):
        if "=" in pair:
            key, item = pair.split("=", 1)
            pairs[key.strip()] = item.strip()
    return pairs or None


def _endpoint_from_args(args: argparse.Namespace, transport: str) -> dict:
    """Collect the endpoint fields given on the command line.

    ABOUTME: --args is comma-separated; --env and --headers are KEY=VALUE,KEY=VALUE
    """
    endpoint: dict = {}
    if transport == "stdio":
        if args.command_line:
            endpoint["command"] = args.command_line
        if args.args:
            endpoint["args"] = [arg.strip() for arg in args.args.split(",")]
        if args.cwd:
            endpoint["cwd"] = args.cwd
    else:
        if args.url:
            endpoint["url"] = args.url
        headers = _parse_pairs(args.headers)
        if headers:
            endpoint["headers"] = headers
    env = _parse_pairs(args.env)
    if env:
        endpoint["env"] = env
    return endpoint


def _find_server(service: RegistryService, key: str) -> Server:
    server = service.store.get_server(key) or service.store.find_server_by_name(key)
    if server is None:
        raise LookupError(f"Server not found: {key}")
    return server


def _print_apply(result: OrchestratorResult) -> int:
    for path in result.files_changed:
        print(f"  updated {path}")
    for error in result.errors:
        where = error.file_path or error.client.value
        print(f"  Error: {where}: {error.message}")
    if result.success:
        return EXIT_SUCCESS
    print("  All files in this batch were restored from backup.")
    return EXIT_PARTIAL


def _describe(server: Server) -> str:
    transport = server.transport
    if server.type == "stdio":
        return " ".join([transport.command, *(transport.args or [])])  # type: ignore[union-attr]
    return transport.url  # type: ignore[union-attr]


def cmd_scan(service: RegistryService, args: argparse.Namespace) -> int:
    """Rebuild the registry from the client config files."""
    result = service.rescan(force_import_all=args.force)
    for warning in result.warnings:
        print(f"  Warning: {warning}")
    print(f"Imported {result.imported_count} server(s)")
    if result.conflicts:
        print(f"{len(result.conflicts)} conflict(s) need resolving; see 'mcporbit conflicts'")
        return EXIT_PARTIAL
    return EXIT_SUCCESS


def cmd_list(service: RegistryService, args: argparse.Namespace) -> int:
    servers = service.list_servers()
    for server, bindings in servers:
        print(f"  {server.name}  [{server.type}]  {server.id}")
        print(f"    {_describe(server)}")
        if server.env:
            print(f"    env: {', '.join(f'{k}={v}' for k, v in server.env.items())}")
        for binding in bindings:
            print(f"    {binding.client.value}: {binding.enabled}  ({binding.id})")
        print()
    print(f"Total: {len(servers)} server(s)")
    return EXIT_SUCCESS


def cmd_conflicts(service: RegistryService, args: argparse.Namespace) -> int:
    conflicts = service.pending_conflicts()
    if args.json:
        print(json.dumps([c.to_dict() for c in conflicts], indent=2))
        return EXIT_SUCCESS

    for conflict in conflicts:
        print(f"  {conflict.name}  ({conflict.id})")
        print(f"    clients: {', '.join(c.value for c in conflict.clients)}")
        for difference in conflict.differences:
            print(f"    {difference.field}:")
            for client, value in difference.values:
                print(f"      {client.value}: {json.dumps(value)}")
        print()
    print(f"Total: {len(conflicts)} unresolved conflict(s)")
    return EXIT_SUCCESS


def cmd_resolve(service: RegistryService, args: argparse.Namespace) -> int:
    """Resolve conflicts from a JSON file or with one bulk action."""
    if args.bulk:
        client = ClientType(args.client) if args.client else None
        result = service.bulk_resolve(args.bulk, client)
    elif args.file:
        data = json.loads(Path(args.file).read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError("Resolution file must contain a JSON array")
        result = service.resolve_conflicts([ConflictResolution.from_dict(item) for item in data])
    else:
        print("Error: give a resolution file or --bulk")
        return EXIT_CONFIG_ERROR

    print(f"Resolved {result.resolved_count} conflict(s)")
    if result.rebuild is not None:
        print(f"Imported {result.rebuild.imported_count} server(s)")
    exit_code = _print_apply(result.apply) if result.apply is not None else EXIT_SUCCESS
    if result.rebuild is not None and result.rebuild.conflicts:
        print(f"{len(result.rebuild.conflicts)} conflict(s) still pending")
        return EXIT_PARTIAL
    return exit_code


def cmd_apply(service: RegistryService, args: argparse.Namespace) -> int:
    """Write the registry to every known client, or preview it."""
    if args.dry_run:
        for preview in service.preview_all():
            if not preview.changed:
                print(f"  {preview.file_path}: no changes")
                continue
            diff = difflib.unified_diff(
                preview.before.splitlines(keepends=True),
                preview.after.splitlines(keepends=True),
                fromfile=f"{preview.file_path} (current)",
                tofile=f"{preview.file_path} (mcporbit)",
            )
            sys.stdout.writelines(diff)
            print()
        return EXIT_SUCCESS

    return _print_apply(service.apply_all())


def cmd_toggle(service: RegistryService, args: argparse.Namespace) -> int:
    enabled = "on" if args.subcommand == "enable" else "off"
    result = service.set_binding_enabled(args.binding_id, enabled)
    print(f"Binding {args.binding_id} is now {enabled}")
    return _print_apply(result.apply)


def cmd_add(service: RegistryService, args: argparse.Namespace) -> int:
    """Add a server and bind it to the requested clients."""
    endpoint = _endpoint_from_args(args, args.type)
    clients = [ClientType(client) for client in args.client or []]
    result = service.create_server(args.name, args.type, endpoint, tags=args.tag, clients=clients)
    for warning in result.warnings:
        print(f"  Warning: {warning.message}")
    if result.server is None:
        print(f"Error: '{args.name}' was not created")
        return EXIT_CONFIG_ERROR
    print(f"Added '{result.server.name}' ({result.server.id})")
    return _print_apply(result.apply)


def cmd_remove(service: RegistryService, args: argparse.Namespace) -> int:
    """Remove a server by id or name."""
    server = _find_server(service, args.server)
    result = service.delete_server(server.id)
    print(f"Removed '{server.name}'")
    return _print_apply(result.apply)



def cmd_edit(service: RegistryService, args: argparse.Namespace) -> int:
    """Rename, retag or change the endpoint of a server.

    Endpoint flags are laid over the current endpoint; changing --type
    starts from an empty one.
    """
    server = _find_server(service, args.server)
    transport = args.type or server.type
    overrides = _endpoint_from_args(args, transport)
    endpoint = None
    if overrides:
        base = server.config.to_dict() if transport == server.type else {}
        base.pop("name", None)
        base.pop("type", None)
        endpoint = {**base, **overrides}

    result = service.update_server(server.id, name=args.name, transport=args.type, endpoint=endpoint, tags=args.tag)
    for warning in result.warnings:
        print(f"  Warning: {warning.message}")
    print(f"Updated '{result.server.name if result.server else server.name}'")
    return _print_apply(result.apply)


def cmd_bind(service: RegistryService, args: argparse.Namespace) -> int:
    server = _find_server(service, args.server)
    enabled = "off" if args.disabled else "on"
    exit_code = EXIT_SUCCESS
    for client in dict.fromkeys(args.client):
        result = service.add_binding(server.id, ClientType(client), enabled)
        print(f"Bound '{server.name}' to {client} ({enabled})")
        exit_code = max(exit_code, _print_apply(result.apply))
    return exit_code


def cmd_unbind(service: RegistryService, args: argparse.Namespace) -> int:
    result = service.remove_binding(args.binding_id)
    name = result.server.name if result.server else args.binding_id
    client = result.binding.client.value if result.binding else "client"
    print(f"Unbound '{name}' from {client}")
    return _print_apply(result.apply)


def cmd_cleanup(service: RegistryService, args: argparse.Namespace) -> int:
    """Delete servers that no client is bound to."""
    deleted = service.cleanup_orphans()
    for server in deleted:
        print(f"  removed {server.name}")
    print(f"Removed {len(deleted)} orphaned server(s)")
    return EXIT_SUCCESS


def cmd_clients(service: RegistryService, args: argparse.Namespace) -> int:
    for adapter, status in service.list_installed_clients():
        mark = "installed" if status.installed else "not found"
        print(f"  {adapter.client.value}: {mark}")
        print(f"    config: {adapter.global_config_path()}")
        if status.binary_path:
            print(f"    binary: {status.binary_path}")
    return EXIT_SUCCESS


def cmd_drift(service: RegistryService, args: argparse.Namespace) -> int:
    reports = check_drift(service.store, service.adapters, service.bus)
    by_client = {adapter.client: adapter for adapter in service.adapters}
    for report in reports:
        state = "missing" if report.missing else "changed"
        print(f"  {report.snapshot.client.value}: {report.snapshot.path} {state}")
        if args.accept and not report.missing:
            accept_drift(service.store, by_client[report.snapshot.client], report.snapshot.path)
            print("    accepted as new baseline")
    if not reports:
        print("No drift detected")
        return EXIT_SUCCESS
    return EXIT_SUCCESS if args.accept else EXIT_PARTIAL


def cmd_activity(service: RegistryService, args: argparse.Namespace, settings: Settings) -> int:
    if args.prune:
        removed = service.prune_activity(settings.activity_retention_days)
        print(f"Pruned {removed} entr{'y' if removed == 1 else 'ies'}")
    for entry in service.recent_activity(args.limit):
        name = f" {entry.entity_name}" if entry.entity_name else ""
        print(f"  {entry.created_at:%Y-%m-%d %H:%M:%S}  {entry.action}{name}")
    return EXIT_SUCCESS


def _add_endpoint_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--command", dest="command_line", help="Command to run (for stdio type)")
    parser.add_argument("--url", help="URL endpoint (for http type)")
    parser.add_argument("--args", help="Comma-separated arguments (for stdio type)")
    parser.add_argument("--cwd", help="Working directory (for stdio type)")
    parser.add_argument("--env", help="Comma-separated KEY=VALUE environment variables")
    parser.add_argument("--headers", help="Comma-separated KEY=VALUE headers (for http type)")
    parser.add_argument("--tag", action="append", help="Tag (repeatable)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcporbit",
        description="One MCP server registry, kept in sync with every AI coding client"
    )
    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"mcporbit v{__version__}"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--settings",
        type=Path,
        help="Settings file (default ~/.mcporbit/config.json)"
    )

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    scan_parser = subparsers.add_parser("scan", help="Rebuild the registry from client configs")
    scan_parser.add_argument(
        "--force",
        action="store_true",
        help="Import every server even when names conflict"
    )

    subparsers.add_parser("list", help="List servers and their client bindings")

    conflicts_parser = subparsers.add_parser("conflicts", help="Show unresolved name conflicts")
    conflicts_parser.add_argument("--json", action="store_true", help="Print conflicts as JSON")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve pending conflicts")
    resolve_parser.add_argument("file", nargs="?", help="JSON file with a list of resolutions")
    resolve_parser.add_argument("--bulk", choices=BULK_ACTIONS, help="Resolve every conflict the same way")
    resolve_parser.add_argument("--client", choices=CLIENT_CHOICES, help="Client to use with --bulk use_client")

    apply_parser = subparsers.add_parser("apply", help="Write the registry to client configs")
    apply_parser.add_argument("--dry-run", action="store_true", help="Show a diff without writing")

    for toggle in ("enable", "disable"):
        toggle_parser = subparsers.add_parser(toggle, help=f"{toggle.capitalize()} a client binding")
        toggle_parser.add_argument("binding_id", help="Binding id (see 'mcporbit list')")

    add_parser = subparsers.add_parser("add", help="Add an MCP server")
    add_parser.add_argument("name", help="Name of the MCP server")
    add_parser.add_argument("--type", choices=["stdio", "http"], default="stdio", help="Transport type")
    _add_endpoint_arguments(add_parser)
    add_parser.add_argument("--client", action="append", choices=CLIENT_CHOICES, help="Client to bind (repeatable)")

    remove_parser = subparsers.add_parser("remove", help="Remove an MCP server")
    remove_parser.add_argument("server", help="Server id or name")

    edit_parser = subparsers.add_parser("edit", help="Change a server's name, tags or endpoint")
    edit_parser.add_argument("server", help="Server id or name")
    edit_parser.add_argument("--name", help="New name")
    edit_parser.add_argument("--type", choices=["stdio", "http"], help="New transport type")
    _add_endpoint_arguments(edit_parser)

    bind_parser = subparsers.add_parser("bind", help="Bind a server to clients")
    bind_parser.add_argument("server", help="Server id or name")
    bind_parser.add_argument(
        "--client", action="append", required=True, choices=CLIENT_CHOICES, help="Client to bind (repeatable)"
    )
    bind_parser.add_argument("--disabled", action="store_true", help="Bind but leave the server switched off")

    unbind_parser = subparsers.add_parser("unbind", help="Remove a client binding")
    unbind_parser.add_argument("binding_id", help="Binding id (see 'mcporbit list')")

    subparsers.add_parser("cleanup", help="Delete servers no client is bound to")

    subparsers.add_parser("clients", help="Show which clients are installed")

    drift_parser = subparsers.add_parser("drift", help="Check client configs for outside edits")
    drift_parser.add_argument("--accept", action="store_true", help="Take current files as the new baseline")

    activity_parser = subparsers.add_parser("activity", help="Show recent activity")
    activity_parser.add_argument("--limit", type=int, default=20, help="Entries to show")
    activity_parser.add_argument("--prune", action="store_true", help="Drop entries past the retention window")

    return parser


COMMANDS = {
    "scan": cmd_scan,
    "list": cmd_list,
    "conflicts": cmd_conflicts,
    "resolve": cmd_resolve,
    "apply": cmd_apply,
    "enable": cmd_toggle,
    "disable": cmd_toggle,
    "add": cmd_add,
    "remove": cmd_remove,
    "edit": cmd_edit,
    "bind": cmd_bind,
    "unbind": cmd_unbind,
    "cleanup": cmd_cleanup,
    "clients": cmd_clients,
    "drift": cmd_drift,
}


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    ABOUTME: Parses args and dispatches to appropriate command
    ABOUTME: Returns exit code for sys.exit()
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    if not args.subcommand:
        parser.print_help()
        return EXIT_SUCCESS

    try:
        settings = load_settings(args.settings)
    except (ValueError, OSError) as e:
        print(f"Error: invalid settings: {e}")
        return EXIT_CONFIG_ERROR

    service: RegistryService | None = None
    try:
        service = build_service(settings)
        if args.subcommand == "activity":
            return cmd_activity(service, args, settings)
        return COMMANDS[args.subcommand](service, args)
    except (ValueError, LookupError) as e:
        print(f"Error: {e}")
        return EXIT_CONFIG_ERROR
    except Exception as e:
        logger.debug("Unhandled error", exc_info=True)
        print(f"Fatal error: {e}")
        return EXIT_FATAL
    finally:
        if service is not None:
            service.store.close()


if __name__ == "__main__":
    sys.exit(main())
