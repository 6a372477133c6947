# FILE: codeagent/pipelines/blueprint_sort.py
"""
Generation order for blueprint files.

Code files are ordered so each file comes after the files it depends on
(Kahn's algorithm, ties broken by manifest position). Config files always
come after every code file, so package manifests can be derived from what
the code actually imports. Cycles never abort the run: when no node is
ready, the earliest remaining file in manifest order is emitted and the
sort continues.
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from codeagent.pipelines.blueprint import FileSpec

logger = logging.getLogger(__name__)


@dataclass
class SortResult:
    order: List[FileSpec] = field(default_factory=list)
    cycle_broken: bool = False

    @property
    def paths(self) -> List[str]:
        return [f.path for f in self.order]


def _kahn_with_fallback(
    nodes: List[str],
    edges: Dict[str, List[str]],
) -> Tuple[List[str], bool]:
    """
    Kahn's algorithm over `nodes` in manifest order.

    edges[A] = [B, C] means A depends on B and C (B, C come before A).
    Edges to nodes outside `nodes` are ignored.
    """
    index = {n: i for i, n in enumerate(nodes)}
    in_degree: Dict[str, int] = {n: 0 for n in nodes}
    successors: Dict[str, List[str]] = {n: [] for n in nodes}

    for node in nodes:
        for dep in edges.get(node, []):
            if dep in in_degree and dep != node:
                successors[dep].append(node)
                in_degree[node] += 1

    ready = [index[n] for n in nodes if in_degree[n] == 0]
    heapq.heapify(ready)
    emitted: List[str] = []
    done = set()
    broke_cycle = False

    while len(emitted) < len(nodes):
        if not ready:
            # Cycle: release the earliest remaining node in manifest order
            forced = next(n for n in nodes if n not in done)
            logger.warning(f"[blueprint_sort] cycle detected; falling back to manifest order at {forced}")
            broke_cycle = True
            in_degree[forced] = 0
            heapq.heappush(ready, index[forced])

        current = nodes[heapq.heappop(ready)]
        if current in done:
            continue
        done.add(current)
        emitted.append(current)
        for succ in successors[current]:
            if succ in done:
                continue
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                heapq.heappush(ready, index[succ])

    return emitted, broke_cycle


def order_files(files: List[FileSpec], dependency_map: Dict[str, List[str]]) -> SortResult:
    """All code files in dependency order, then all config files in dependency order."""
    by_path = {f.path: f for f in files}
    code = [f.path for f in files if not f.is_config]
    config = [f.path for f in files if f.is_config]

    code_order, code_cycle = _kahn_with_fallback(code, dependency_map)
    config_order, config_cycle = _kahn_with_fallback(config, dependency_map)

    result = SortResult(
        order=[by_path[p] for p in code_order + config_order],
        cycle_broken=code_cycle or config_cycle,
    )
    logger.info(f"[blueprint_sort] order: {result.paths}")
    return result


__all__ = ["SortResult", "order_files"]
