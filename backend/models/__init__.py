from .host import Host, HOST_CATEGORIES
from .speed_test import SpeedMeasurement
from .iperf_test import ThroughputMeasurement

__all__ = [
    "Host",
    "HOST_CATEGORIES",
    "SpeedMeasurement",
    "ThroughputMeasurement",
]
