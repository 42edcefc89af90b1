"""Services package for Speed Checker."""

from .host_selector import eligible_hosts, select_host
from .process_runner import run_command
from .sinks import (
    SubmissionSink,
    DirectStorageSink,
    RemoteAPISink,
    build_sink,
)
from .orchestrator import (
    MeasurementOrchestrator,
    OrchestratorConfig,
    IPERF_CATEGORIES,
    get_orchestrator,
    use_orchestrator,
)

__all__ = [
    "eligible_hosts",
    "select_host",
    "run_command",
    "SubmissionSink",
    "DirectStorageSink",
    "RemoteAPISink",
    "build_sink",
    "MeasurementOrchestrator",
    "OrchestratorConfig",
    "IPERF_CATEGORIES",
    "get_orchestrator",
    "use_orchestrator",
]
