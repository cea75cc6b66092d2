"""
CLI Module

Architectural Intent:
- Command-line interface for the instance orchestrator
- Entry point for all operator interactions
- Delegates to application use cases via the composition root
- Supports --verbose/--debug flags for log level control
"""

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
import traceback

from anywhere.domain.errors import AnywhereError, InstanceNotFoundError
from anywhere.infrastructure.config import AnywhereConfig, load_config
from anywhere.infrastructure.logging import configure_logging, level_from_name


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Anywhere: regional proxy endpoint orchestrator"
    )
    parser.add_argument(
        "--config", "-c", default=None, help="Path to JSON config (default: anywhere.json)"
    )
    parser.add_argument(
        "--simulate", action="store_true", help="Use the in-memory cloud gateway"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose output"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug output with tracebacks"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser(
        "serve", help="Run the REST API and the cloud reconciler"
    )
    serve_parser.add_argument("--host", default=None, help="Override server.host")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Override server.port")

    create_parser = subparsers.add_parser("create", help="Provision an endpoint in a region")
    create_parser.add_argument("--region", "-r", required=True, help="Region code, e.g. ap-east-1")

    delete_parser = subparsers.add_parser("delete", help="Decommission an endpoint")
    delete_parser.add_argument("uuid", help="Instance uuid")

    subparsers.add_parser("list", help="List non-deleted instances")

    show_parser = subparsers.add_parser("show", help="Show one instance with its links")
    show_parser.add_argument("uuid", help="Instance uuid")

    subparsers.add_parser("regions", help="List configured regions")

    subparsers.add_parser("sync", help="Run one reconciliation pass and exit")

    dash_parser = subparsers.add_parser("dash", help="Launch the instance dashboard")
    dash_parser.add_argument(
        "--interval", "-i", type=float, default=5.0, help="Refresh interval in seconds"
    )

    return parser


def _load(args: argparse.Namespace) -> AnywhereConfig:
    config = load_config(args.config)
    if args.simulate:
        config = dataclasses.replace(config, simulate=True)
    return config


def _configure_logging(args: argparse.Namespace, config: AnywhereConfig) -> None:
    if args.debug:
        level = logging.DEBUG
    elif args.verbose:
        level = logging.INFO
    elif args.command == "serve":
        level = level_from_name(config.logging.level)
    else:
        level = logging.WARNING
    configure_logging(
        level=level,
        json_format=config.logging.format == "json" and args.command == "serve",
        log_dir=config.logging.log_dir or None,
    )


def _print_instance(view) -> None:
    address = view.public_address or "-"
    print(f"  {view.uuid}  {view.region:<16} {view.status:<9} {address}")


async def _serve(container, host: str, port: int) -> None:
    from anywhere.presentation.web.app import AnywhereWebApp

    config = container.config
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    await container.telemetry.initialize()
    recovered = await container.orchestrator.recover_interrupted()
    if recovered:
        print(f"[*] Settled {recovered} interrupted instances")

    web = AnywhereWebApp(container.orchestrator)
    await web.start(host, port)
    container.scheduler.start()
    print(f"[*] Serving on http://{host}:{web.port} (regions: {', '.join(config.region_codes)})")

    try:
        await shutdown.wait()
    finally:
        print("\n[*] Shutting down...")
        await container.scheduler.stop(timeout=config.scheduler.shutdown_grace)
        web.stop()
        await container.orchestrator.shutdown(config.scheduler.shutdown_grace)
        await container.telemetry.export()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        print("[+] Stopped.")


async def async_main():
    parser = _build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    config = _load(args)
    _configure_logging(args, config)
    verbose = args.verbose or args.debug

    if args.command == "regions":
        for region in config.aws.regions:
            print(f"  {region.code:<16} {region.name or region.code}")
        return

    from anywhere.composition_root import create_container

    try:
        container = create_container(config)
    except AnywhereError as e:
        print(f"[-] Startup failed: {e}")
        sys.exit(1)

    try:
        if args.command == "serve":
            host = args.host or config.server.host
            port = args.port if args.port is not None else config.server.port
            await _serve(container, host, port)
            return

        if args.command == "dash":
            from anywhere.presentation.tui.dashboard import Dashboard

            app = Dashboard(container.orchestrator, container.reconciler, args.interval)
            await app.run_async()
            return

        if args.command == "list":
            views = container.orchestrator.list_instances()
            if not views:
                print("[*] No instances.")
            for view in views:
                _print_instance(view)
            return

        if args.command == "show":
            view = container.orchestrator.get_instance(args.uuid)
            for key, value in view.to_dict().items():
                print(f"  {key:<16} {value}")
            return

        if args.command == "sync":
            print(f"[*] Reconciling {', '.join(config.region_codes) or 'no regions'}...")
            summary = await container.reconciler.sync_once()
            print(
                f"[+] Sync complete: {summary.updated} updated, {summary.created} created, "
                f"{summary.adopted} adopted, {summary.soft_deleted} soft-deleted"
            )
            if summary.failed_regions:
                print(f"[-] Failed regions: {', '.join(summary.failed_regions)}")
                sys.exit(1)
            return

        if args.command == "create":
            uuid = await container.orchestrator.request_create(args.region)
            print(f"[+] Instance {uuid} admitted in {args.region}.")
            print("[*] Waiting for provisioning to finish...")
            await container.orchestrator.drain()
            view = container.orchestrator.get_instance(uuid)
            _print_instance(view)
            if view.status == "error":
                print("[-] Provisioning failed; see logs.")
                sys.exit(1)
            return

        if args.command == "delete":
            await container.orchestrator.request_delete(args.uuid)
            print(f"[+] Instance {args.uuid} is deleting.")
            await container.orchestrator.drain()
            try:
                view = container.orchestrator.get_instance(args.uuid)
            except InstanceNotFoundError:
                print("[+] Deleted.")
                return
            _print_instance(view)
            print("[-] Teardown did not complete; see logs.")
            sys.exit(1)

    except InstanceNotFoundError as e:
        print(f"[-] {e}")
        sys.exit(1)
    except AnywhereError as e:
        print(f"[-] {args.command} failed: {e}")
        if verbose:
            traceback.print_exc()
        sys.exit(1)
    finally:
        container.close()


def main():
    asyncio.run(async_main())
