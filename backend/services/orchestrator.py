"""
Measurement orchestrator.

Drives the two recurring jobs of the daemon:

- speed: run the speedtest CLI, normalize, submit
- iperf: for each host category (lan, vpn, remote) pick one random active
  host, run iperf3 against it, normalize, submit

Both jobs run once immediately on start and then on their own interval. Every
run is dispatched as an independent asyncio task, so a slow run never delays
the next tick and runs of the same kind may overlap.  Failed iperf attempts are
stored as failed results; failed speed tests are only logged.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set

from errors import (
    NoEligibleHosts,
    NormalizationFailed,
    ProcessCancelled,
    ProcessExecutionFailed,
    ProcessTimeout,
)
from parsers import get_parser
from schemas import HostResponse, IperfTestSubmission, SpeedTestSubmission
from services.host_selector import select_host
from services.process_runner import run_command
from services.sinks import SubmissionSink
from utils.identity import daemon_identity, utc_now
from utils.logging_utils import LogTimer

logger = logging.getLogger(__name__)

IPERF_CATEGORIES = ("lan", "vpn", "remote")
SPEEDTEST_ARGS = ("--format=json", "--accept-license", "--accept-gdpr")

JOB_LABELS = {
    "speed": "speed test",
    "iperf": "iperf tests",
}

Runner = Callable[..., Awaitable[bytes]]


@dataclass
class OrchestratorConfig:
    """Schedules, deadlines and tool settings for the daemon."""

    speedtest_interval: float = 15 * 60
    iperf_interval: float = 10 * 60
    iperf_duration: int = 10
    iperf_timeout_grace: float = 30
    speedtest_timeout: float = 120
    speedtest_command: str = "speedtest"
    iperf_command: str = "iperf3"
    bandwidth_unit: str = "bits"
    max_concurrent_runs: int = 4

    @classmethod
    def from_settings(cls, settings, mode: Optional[str] = None) -> "OrchestratorConfig":
        return cls(
            speedtest_interval=settings.SPEEDTEST_INTERVAL_SECONDS,
            iperf_interval=settings.IPERF_INTERVAL_SECONDS,
            iperf_duration=settings.IPERF_DURATION_SECONDS,
            iperf_timeout_grace=settings.IPERF_TIMEOUT_GRACE_SECONDS,
            speedtest_timeout=settings.SPEEDTEST_TIMEOUT_SECONDS,
            speedtest_command=settings.SPEEDTEST_COMMAND,
            iperf_command=settings.IPERF_COMMAND,
            bandwidth_unit=settings.bandwidth_unit(mode),
            max_concurrent_runs=settings.MAX_CONCURRENT_RUNS,
        )


class MeasurementOrchestrator:
    """Schedules speed and iperf runs and pushes their results into a sink."""

    def __init__(
        self,
        sink: SubmissionSink,
        daemon_id: str,
        config: Optional[OrchestratorConfig] = None,
        runner: Runner = run_command,
        rng: Optional[random.Random] = None,
    ):
        self.sink = sink
        self.daemon_id = daemon_id
        self.config = config or OrchestratorConfig()
        self._runner = runner
        self._rng = rng
        self._speedtest_parser = get_parser("speedtest", bandwidth_unit=self.config.bandwidth_unit)
        self._iperf_parser = get_parser("iperf3")
        self._stop = asyncio.Event()
        self._slots = asyncio.Semaphore(max(1, self.config.max_concurrent_runs))
        self._tasks: Set[asyncio.Task] = set()

    # ── Lifecycle ────────────────────────────────────────────────────

    async def run(self) -> None:
        """Run until stop() is called, then wait for in-flight runs to finish."""
        logger.info(f"Starting daemon {self.daemon_id} ({self.sink.mode} mode)")
        logger.info(
            f"Test intervals - Speed: {self.config.speedtest_interval:g}s, "
            f"Iperf: {self.config.iperf_interval:g}s, Iperf duration: {self.config.iperf_duration}s"
        )

        self.dispatch("speed", "initial")
        self.dispatch("iperf", "initial")

        timers = [
            asyncio.create_task(self._every(self.config.speedtest_interval, "speed")),
            asyncio.create_task(self._every(self.config.iperf_interval, "iperf")),
        ]
        try:
            await self._stop.wait()
        finally:
            for timer in timers:
                timer.cancel()
            await asyncio.gather(*timers, return_exceptions=True)
            await self.drain()
            logger.info("Daemon stopped")

    def stop(self) -> None:
        """Stop scheduling and kill running tool processes."""
        if not self._stop.is_set():
            logger.info("Stop requested, no new runs will be scheduled")
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every dispatched run to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def dispatch(self, kind: str, trigger: str = "scheduled") -> asyncio.Task:
        """Start a run of ``kind`` ("speed" or "iperf") without waiting for it."""
        if kind not in JOB_LABELS:
            raise ValueError(f"Unknown job kind: {kind}. Available: {', '.join(JOB_LABELS)}")
        task = asyncio.create_task(self._guarded(kind, trigger), name=f"{kind}-{trigger}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _every(self, interval: float, kind: str) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                self.dispatch(kind, "scheduled")

    async def _guarded(self, kind: str, trigger: str) -> None:
        job = self.run_speed_test if kind == "speed" else self.run_iperf_tests
        async with self._slots:
            if self._stop.is_set():
                logger.info(f"Skipping {trigger} {JOB_LABELS[kind]}: daemon is stopping")
                return
            # Errors end this run only; the next tick tries again
            try:
                with LogTimer(logger, f"{trigger} {JOB_LABELS[kind]}", kind=kind) as timer:
                    result = await job()
                    if kind == "speed":
                        timer.set_record_id(result)
            except Exception as e:
                logger.debug(f"{trigger} {JOB_LABELS[kind]} error", exc_info=e)

    # ── Jobs ─────────────────────────────────────────────────────────

    async def run_speed_test(self) -> int:
        """Run the speedtest CLI once and submit the result."""
        output = await self._runner(
            self.config.speedtest_command,
            SPEEDTEST_ARGS,
            timeout=self.config.speedtest_timeout,
            cancel_event=self._stop,
        )
        parsed = self._speedtest_parser.parse(output)

        record = SpeedTestSubmission(
            timestamp=parsed.timestamp,
            download_mbps=parsed.download_mbps,
            upload_mbps=parsed.upload_mbps,
            ping_ms=parsed.ping_ms,
            jitter_ms=parsed.jitter_ms,
            server_name=parsed.server_name,
            server_id=parsed.server_id,
            isp=parsed.isp,
            external_ip=parsed.external_ip,
            result_url=parsed.result_url,
            daemon_id=self.daemon_id,
        )
        record_id = await self.sink.submit_speed_test(record)

        logger.info(
            f"Speed test submitted - ID: {record_id}, Download: {parsed.download_mbps:.2f} Mbps, "
            f"Upload: {parsed.upload_mbps:.2f} Mbps, Ping: {parsed.ping_ms:.2f} ms, "
            f"Server: {parsed.server_name or '-'}",
            extra={"kind": "speed"},
        )
        return record_id

    async def run_iperf_tests(self, duration: Optional[int] = None) -> Dict[str, Optional[int]]:
        """
        Test one random active host per category, in order lan, vpn, remote.

        Args:
            duration: Seconds per test, overriding the configured duration

        Returns:
            Stored record id per category, None where nothing was stored
        """
        hosts = await self.sink.list_active_hosts()
        results: Dict[str, Optional[int]] = {}

        for category in IPERF_CATEGORIES:
            results[category] = None
            if self._stop.is_set():
                logger.info(f"Daemon stopping, skipping {category} hosts")
                continue

            try:
                host = select_host(category, hosts, self._rng)
            except NoEligibleHosts:
                logger.info(f"No active {category} hosts found", extra={"category": category})
                continue

            try:
                results[category] = await self.run_iperf_test(host, duration)
            except Exception as e:
                logger.error(
                    f"{category.upper()} iperf test failed: {e}",
                    extra={"category": category, "target": host.name},
                )

        return results

    async def run_iperf_test(self, host: HostResponse, duration: Optional[int] = None) -> int:
        """
        Run iperf3 against ``host`` and submit the outcome.

        A tool or parse failure is submitted as a failed result.  Only a
        shutdown while the tool runs leaves no record.
        """
        duration = duration or self.config.iperf_duration
        logger.info(
            f"Running iperf3 test against {host.category} host: {host.name} "
            f"({host.hostname}:{host.port})",
            extra={"category": host.category, "target": host.name},
        )

        started = utc_now()
        try:
            output = await self._runner(
                self.config.iperf_command,
                ["-c", host.hostname, "-p", host.port, "-t", duration, "-J"],
                timeout=duration + self.config.iperf_timeout_grace,
                cancel_event=self._stop,
            )
            parsed = self._iperf_parser.parse(output, duration=duration)
        except ProcessCancelled:
            raise
        except (ProcessTimeout, ProcessExecutionFailed, NormalizationFailed) as e:
            logger.warning(
                f"Iperf3 test against {host.name} failed: {e}",
                extra={"category": host.category, "target": host.name},
            )
            record = IperfTestSubmission(
                timestamp=started,
                host_id=host.id,
                sent_mbps=0.0,
                received_mbps=0.0,
                duration_seconds=duration,
                protocol="TCP",
                success=False,
                error_message=str(e),
                daemon_id=self.daemon_id,
            )
        else:
            record = IperfTestSubmission(
                timestamp=parsed.timestamp,
                host_id=host.id,
                sent_mbps=parsed.sent_mbps,
                received_mbps=parsed.received_mbps,
                retransmits=parsed.retransmits,
                mean_rtt_ms=parsed.mean_rtt_ms,
                duration_seconds=parsed.duration_seconds,
                protocol=parsed.protocol,
                success=True,
                daemon_id=self.daemon_id,
            )

        record_id = await self.sink.submit_iperf_test(record)

        rtt = f"{record.mean_rtt_ms:.2f} ms" if record.mean_rtt_ms is not None else "-"
        logger.info(
            f"Iperf3 test submitted - ID: {record_id}, Sent: {record.sent_mbps:.2f} Mbps, "
            f"Received: {record.received_mbps:.2f} Mbps, RTT: {rtt}, Success: {record.success}",
            extra={"category": host.category, "target": host.name},
        )
        return record_id


# ── On-demand runs ───────────────────────────────────────────────────

_on_demand: Optional[MeasurementOrchestrator] = None


def use_orchestrator(orchestrator: Optional[MeasurementOrchestrator]) -> None:
    """Serve on-demand API runs from ``orchestrator`` (the daemon's, when co-hosted)."""
    global _on_demand
    _on_demand = orchestrator


def get_orchestrator() -> MeasurementOrchestrator:
    """
    Orchestrator for tests requested over HTTP.

    Unless one was installed with use_orchestrator(), a direct-storage
    orchestrator is created on first use.
    """
    global _on_demand
    if _on_demand is None:
        from config import settings
        from services.sinks import DirectStorageSink

        _on_demand = MeasurementOrchestrator(
            DirectStorageSink(),
            daemon_identity(),
            OrchestratorConfig.from_settings(settings, "direct"),
        )
    return _on_demand
