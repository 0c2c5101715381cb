"""
Program slicing over def-use edges.

- Backward slice: "what code can affect the statement at line Y?"
- Forward slice: "what breaks if I change the statement at line Y?"

Statements are identified by their spans, so the slices are sets of
Locations; ``slice_lines`` flattens them to line numbers.
"""

from collections import deque
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .locations import Location

if TYPE_CHECKING:
    from .dfg_extractor import Dataflow


def _traverse(
    links: dict[Location, list[Location]],
    locations: set[Location],
    seed_lines: Iterable[int],
) -> set[Location]:
    """BFS from every statement containing a seed line along ``links``."""
    seed_lines = list(seed_lines)
    seeds = [
        loc for loc in locations if any(loc.contains_line(line) for line in seed_lines)
    ]

    visited: set[Location] = set()
    worklist: deque[Location] = deque(seeds)
    while worklist:
        loc = worklist.popleft()
        if loc in visited:
            continue
        visited.add(loc)
        for neighbour in links.get(loc, []):
            if neighbour not in visited:
                worklist.append(neighbour)
    return visited


def backward_slice(
    dataflows: Iterable["Dataflow"], seed_lines: Iterable[int]
) -> set[Location]:
    """
    Compute backward slice: every statement the seed statements depend on.

    Args:
        dataflows: Def-use edges
        seed_lines: Lines to slice from

    Returns:
        Locations of the seed statements and everything flowing into them
    """
    incoming: dict[Location, list[Location]] = {}
    locations: set[Location] = set()
    for flow in dataflows:
        incoming.setdefault(flow.to_location, []).append(flow.from_location)
        locations.update((flow.from_location, flow.to_location))
    return _traverse(incoming, locations, seed_lines)


def forward_slice(
    dataflows: Iterable["Dataflow"], seed_lines: Iterable[int]
) -> set[Location]:
    """
    Compute forward slice: every statement depending on the seed statements.

    Args:
        dataflows: Def-use edges
        seed_lines: Lines to slice from

    Returns:
        Locations of the seed statements and everything they flow into
    """
    outgoing: dict[Location, list[Location]] = {}
    locations: set[Location] = set()
    for flow in dataflows:
        outgoing.setdefault(flow.from_location, []).append(flow.to_location)
        locations.update((flow.from_location, flow.to_location))
    return _traverse(outgoing, locations, seed_lines)


def slice_lines(locations: Iterable[Location]) -> set[int]:
    """Get every line covered by the given statement spans."""
    return {
        line
        for loc in locations
        for line in range(loc.first_line, loc.last_line + 1)
    }
