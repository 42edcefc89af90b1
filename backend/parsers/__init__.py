"""Parser package for measurement tool output.

Each parser turns the raw JSON bytes of one tool run into a normalized
dataclass, raising NormalizationFailed when the output is unusable.
"""

from .base import (
    BaseParser,
    ParsedSpeedTest,
    ParsedIperfTest,
)
from .speedtest import SpeedtestParser
from .iperf import IperfParser

# Parser registry mapping tool names to parser classes
PARSERS = {
    "speedtest": SpeedtestParser,
    "iperf3": IperfParser,
    "iperf": IperfParser,  # Alias
}


def get_parser(tool_name: str, **options) -> BaseParser:
    """Get a parser instance by tool name.

    Args:
        tool_name: Name of the tool (e.g., 'speedtest', 'iperf3')
        **options: Constructor options (e.g., bandwidth_unit for speedtest)

    Returns:
        Parser instance

    Raises:
        ValueError: If tool_name is not registered
    """
    parser_class = PARSERS.get(tool_name.lower())
    if parser_class is None:
        raise ValueError(
            f"Unknown parser: {tool_name}. Available: {', '.join(PARSERS.keys())}"
        )
    return parser_class(**options)


__all__ = [
    "BaseParser",
    "ParsedSpeedTest",
    "ParsedIperfTest",
    "SpeedtestParser",
    "IperfParser",
    "PARSERS",
    "get_parser",
]
