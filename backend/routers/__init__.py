from .hosts import router as hosts_router
from .speedtests import router as speedtests_router
from .iperf import router as iperf_router
from .dashboard import router as dashboard_router

__all__ = [
    "hosts_router",
    "speedtests_router",
    "iperf_router",
    "dashboard_router",
]
