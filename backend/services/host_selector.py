"""Random selection of an iperf3 target per host category."""

import random
from typing import Iterable, List, Optional, TypeVar

from errors import NoEligibleHosts

H = TypeVar("H")


def eligible_hosts(category: str, hosts: Iterable[H]) -> List[H]:
    """Active hosts of ``category``.  Works on ORM rows and HostResponse alike."""
    return [h for h in hosts if h.category == category and h.active]


def select_host(category: str, hosts: Iterable[H], rng: Optional[random.Random] = None) -> H:
    """
    Pick one eligible host uniformly at random.

    Every call is an independent draw; nothing is remembered between ticks.

    Raises:
        NoEligibleHosts: no active host in ``category``
    """
    candidates = eligible_hosts(category, hosts)
    if not candidates:
        raise NoEligibleHosts(category)
    return (rng or random).choice(candidates)
