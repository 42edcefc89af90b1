"""
Speed Checker command line.

Commands:
    daemon   run speed and iperf tests on a schedule
    api      serve the HTTP API
    all      serve the HTTP API and run the daemon in one process
    hosts    list, add or delete iperf3 target hosts
    test     run a single test or list recent results

Usage:
    speed-checker daemon                                  # submit to the API
    speed-checker daemon --legacy                         # write to the database
    speed-checker all --port 8080                         # API and daemon together
    speed-checker hosts add --name nas --hostname 192.168.1.10 --type lan
    speed-checker test iperf 3                            # test host 3 once
    speed-checker test list iperf --count 20
"""

import argparse
import asyncio
import signal
import sys

from pydantic import ValidationError

from config import settings
from database import AsyncSessionLocal, close_db, init_db
from errors import HostNotFound, SpeedCheckerError
from schemas import HostCreate, HostResponse
from services import hosts as host_service
from services import measurements
from services.orchestrator import MeasurementOrchestrator, OrchestratorConfig, use_orchestrator
from services.sinks import DirectStorageSink, build_sink
from utils.identity import daemon_identity
from utils.logging_utils import setup_logging, get_logger

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
# daemon
# ══════════════════════════════════════════════════════════════════════

async def run_daemon(mode: str, api_endpoint: str) -> None:
    if mode == "direct":
        await init_db()

    sink = build_sink(
        mode,
        api_endpoint=api_endpoint,
        api_timeout=settings.API_TIMEOUT_SECONDS,
    )
    if mode == "api":
        logger.info(f"Submitting results to API at {api_endpoint}")
    else:
        logger.info(f"Writing results directly to {settings.DATABASE_URL}")

    orchestrator = MeasurementOrchestrator(
        sink,
        daemon_identity(),
        OrchestratorConfig.from_settings(settings, mode),
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, orchestrator.stop)

    try:
        async with sink:
            await orchestrator.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        if mode == "direct":
            await close_db()


def cmd_daemon(args) -> int:
    mode = "direct" if args.legacy else settings.DAEMON_MODE.lower()
    endpoint = args.api_endpoint or settings.API_ENDPOINT
    try:
        asyncio.run(run_daemon(mode, endpoint))
    except ValueError as e:
        logger.error(f"Cannot start daemon: {e}")
        return 1
    return 0


# ══════════════════════════════════════════════════════════════════════
# api
# ══════════════════════════════════════════════════════════════════════

def cmd_api(args) -> int:
    from main import serve

    serve(host=args.host, port=args.port)
    return 0


# ══════════════════════════════════════════════════════════════════════
# all
# ══════════════════════════════════════════════════════════════════════

async def run_all(host: str = None, port: int = None) -> None:
    """Serve the API and run the daemon in one process, writing to the database."""
    import uvicorn
    from main import app

    await init_db()
    orchestrator = MeasurementOrchestrator(
        DirectStorageSink(),
        daemon_identity(),
        OrchestratorConfig.from_settings(settings, "direct"),
    )
    # On-demand API runs share the daemon's stop signal
    use_orchestrator(orchestrator)

    server = uvicorn.Server(uvicorn.Config(
        app,
        host=host or settings.SERVER_HOST,
        port=port or settings.SERVER_PORT,
    ))
    daemon = asyncio.create_task(orchestrator.run())
    try:
        # uvicorn handles SIGINT/SIGTERM and returns once it has shut down
        await server.serve()
    finally:
        orchestrator.stop()
        await daemon
        use_orchestrator(None)
        await close_db()


def cmd_all(args) -> int:
    asyncio.run(run_all(args.host, args.port))
    return 0


# ══════════════════════════════════════════════════════════════════════
# hosts
# ══════════════════════════════════════════════════════════════════════

def print_host(host) -> None:
    status = "active" if host.active else "inactive"
    line = f"  [{host.id}] {host.name:20} {host.hostname}:{host.port}  {host.category:6}  {status}"
    if host.description:
        line += f"  - {host.description}"
    print(line)


async def hosts_list(args) -> int:
    async with AsyncSessionLocal() as db:
        hosts = await host_service.list_hosts(db)
    if not hosts:
        print("No hosts configured. Add one with: speed-checker hosts add")
        return 0
    print(f"\nConfigured hosts ({len(hosts)}):")
    for host in hosts:
        print_host(host)
    return 0


async def hosts_add(args) -> int:
    host = HostCreate(
        name=args.name,
        hostname=args.hostname,
        port=args.port,
        category=args.type,
        active=not args.inactive,
        description=args.description,
    )
    async with AsyncSessionLocal() as db:
        db_host = await host_service.create_host(db, host)
    print("Host added:")
    print_host(db_host)
    return 0


async def hosts_delete(args) -> int:
    async with AsyncSessionLocal() as db:
        await host_service.delete_host(db, args.host_id)
    print(f"Host {args.host_id} deleted")
    return 0


# ══════════════════════════════════════════════════════════════════════
# test
# ══════════════════════════════════════════════════════════════════════

def local_orchestrator() -> MeasurementOrchestrator:
    config = OrchestratorConfig.from_settings(settings, "direct")
    return MeasurementOrchestrator(DirectStorageSink(), daemon_identity(), config)


async def speed_once(args) -> int:
    orchestrator = local_orchestrator()
    record_id = await orchestrator.run_speed_test()
    async with AsyncSessionLocal() as db:
        result = await measurements.get_speed_test(db, record_id)
    print("\nSpeed Test Results:")
    print(f"   Download: {result.download_mbps:.2f} Mbps")
    print(f"   Upload:   {result.upload_mbps:.2f} Mbps")
    print(f"   Ping:     {result.ping_ms:.2f} ms")
    print(f"   Server:   {result.server_name or '-'}")
    print(f"   ISP:      {result.isp or '-'}")
    print(f"   Tested:   {result.timestamp:%Y-%m-%d %H:%M:%S} UTC")
    return 0


async def iperf_once(args) -> int:
    orchestrator = local_orchestrator()

    if args.host_id is None:
        print("Running iperf tests against random hosts...")
        results = await orchestrator.run_iperf_tests(args.duration)
        record_ids = [r for r in results.values() if r is not None]
    else:
        async with AsyncSessionLocal() as db:
            host = HostResponse.model_validate(await host_service.get_host(db, args.host_id))
        record_ids = [await orchestrator.run_iperf_test(host, args.duration)]

    if not record_ids:
        print("No iperf tests were run (no active hosts?)")
        return 1

    failed = 0
    async with AsyncSessionLocal() as db:
        for record_id in record_ids:
            test, host = await measurements.get_iperf_test(db, record_id)
            print_iperf_test(test, host)
            failed += 0 if test.success else 1
    return 1 if failed else 0


def print_speed_test(test) -> None:
    print(
        f"  {test.timestamp:%m-%d %H:%M} | ↓{test.download_mbps:.1f} ↑{test.upload_mbps:.1f} Mbps"
        f" | {test.server_name or '-'}"
    )


def print_iperf_test(test, host) -> None:
    host_name = host.name if host is not None else "Unknown"
    line = (
        f"  {test.timestamp:%m-%d %H:%M} | {test.protocol} | ↓{test.received_mbps:.1f}"
        f" ↑{test.sent_mbps:.1f} Mbps | {host_name}"
    )
    if not test.success:
        line += f" | FAILED: {test.error_message}"
    print(line)


async def list_results(args) -> int:
    count = args.count
    async with AsyncSessionLocal() as db:
        if args.kind in ("speed", "all"):
            limit = count if args.kind == "speed" else max(1, count // 2)
            _, speed_tests = await measurements.list_speed_tests(db, limit=limit)
            print(f"\nRecent Speed Tests ({len(speed_tests)} results):")
            for test in speed_tests:
                print_speed_test(test)
        if args.kind in ("iperf", "all"):
            limit = count if args.kind == "iperf" else max(1, count // 2)
            _, iperf_tests = await measurements.list_iperf_tests(db, limit=limit)
            print(f"\nRecent Iperf Tests ({len(iperf_tests)} results):")
            for test, host in iperf_tests:
                print_iperf_test(test, host)
    return 0


def run_local(handler, args) -> int:
    """Run a database-backed command against the local database."""

    async def _run():
        await init_db()
        try:
            return await handler(args)
        finally:
            await close_db()

    try:
        return asyncio.run(_run())
    except HostNotFound as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (SpeedCheckerError, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


# ══════════════════════════════════════════════════════════════════════
# Argument parsing
# ══════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="speed-checker",
        description="Internet speed and iperf3 throughput monitoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Usage:", 1)[1],
    )
    parser.add_argument(
        "--log-level", default=settings.LOG_LEVEL,
        help=f"Log level (default: {settings.LOG_LEVEL})",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    daemon = commands.add_parser("daemon", help="Run tests on a schedule")
    daemon.add_argument(
        "--legacy", action="store_true",
        help="Write results directly to the database instead of the API",
    )
    daemon.add_argument(
        "--api-endpoint", metavar="URL",
        help=f"API server to submit results to (default: {settings.API_ENDPOINT})",
    )
    daemon.set_defaults(func=cmd_daemon)

    api = commands.add_parser("api", help="Serve the HTTP API")
    api.add_argument("--host", default=None, help=f"Bind address (default: {settings.SERVER_HOST})")
    api.add_argument("--port", type=int, default=None, help=f"Port (default: {settings.SERVER_PORT})")
    api.set_defaults(func=cmd_api)

    everything = commands.add_parser("all", help="Serve the API and run the daemon in one process")
    everything.add_argument("--host", default=None, help=f"Bind address (default: {settings.SERVER_HOST})")
    everything.add_argument("--port", type=int, default=None, help=f"Port (default: {settings.SERVER_PORT})")
    everything.set_defaults(func=cmd_all)

    hosts = commands.add_parser("hosts", help="Manage iperf3 target hosts")
    host_commands = hosts.add_subparsers(dest="hosts_command", required=True)

    host_commands.add_parser("list", help="List all hosts").set_defaults(
        func=lambda a: run_local(hosts_list, a)
    )

    add = host_commands.add_parser("add", help="Add a host")
    add.add_argument("-n", "--name", required=True, help="Display name")
    add.add_argument("-H", "--hostname", required=True, help="Hostname or IP address")
    add.add_argument("-t", "--type", required=True, choices=["lan", "vpn", "remote"], help="Host category")
    add.add_argument("-p", "--port", type=int, default=5201, help="iperf3 server port (default: 5201)")
    add.add_argument("-d", "--description", default=None, help="Free-text description")
    add.add_argument("--inactive", action="store_true", help="Add the host without scheduling tests")
    add.set_defaults(func=lambda a: run_local(hosts_add, a))

    delete = host_commands.add_parser("delete", help="Delete a host by ID")
    delete.add_argument("host_id", type=int)
    delete.set_defaults(func=lambda a: run_local(hosts_delete, a))

    test = commands.add_parser("test", help="Run a single test or list results")
    test_commands = test.add_subparsers(dest="test_command", required=True)

    test_commands.add_parser("speed", help="Run one speed test").set_defaults(
        func=lambda a: run_local(speed_once, a)
    )

    iperf = test_commands.add_parser("iperf", help="Run iperf3 against one host or random hosts")
    iperf.add_argument("host_id", type=int, nargs="?", help="Host ID (random host per category if omitted)")
    iperf.add_argument("-d", "--duration", type=int, default=None, help="Test duration in seconds")
    iperf.set_defaults(func=lambda a: run_local(iperf_once, a))

    listing = test_commands.add_parser("list", help="List recent results")
    listing.add_argument("kind", nargs="?", default="all", choices=["speed", "iperf", "all"])
    listing.add_argument("-c", "--count", type=int, default=10, help="Number of results (default: 10)")
    listing.set_defaults(func=lambda a: run_local(list_results, a))

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
