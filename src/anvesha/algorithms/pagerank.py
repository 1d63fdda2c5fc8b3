"""
Batch PageRank over the persisted link graph.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from ..storage.models import Page
from ..utils.config import PageRankConfig


@dataclass
class PageRankResult:
    ranks: Dict[int, float]
    iterations: int
    converged: bool
    final_delta: float


class PageRankCalculator:
    """
    Iterative PageRank with uniform redistribution of dangling-node mass.

    Each iteration computes
        rank'(p) = (1 - d) / N + d * (sum(rank(s) / outdeg(s)) + dangling / N)
    where `dangling` is the total rank of pages without outbound edges, so
    the rank vector keeps summing to 1.
    """

    def __init__(self, damping_factor: float = 0.85, max_iterations: int = 100,
                 convergence_threshold: float = 1e-6):
        if not 0 < damping_factor < 1:
            raise ValueError("damping_factor must be between 0 and 1")
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

        self.damping_factor = damping_factor
        self.max_iterations = max_iterations
        self.convergence_threshold = convergence_threshold
        self.logger = logging.getLogger(__name__)

    def calculate(self, page_ids: Sequence[int],
                  edges: Iterable[Tuple[int, int]]) -> PageRankResult:
        """
        Args:
            page_ids: Every node of the graph
            edges: (source, target) pairs; edges touching unknown ids are ignored

        Returns:
            PageRankResult with a rank for every page id
        """
        nodes = list(dict.fromkeys(page_ids))
        n = len(nodes)
        if n == 0:
            return PageRankResult(ranks={}, iterations=0, converged=True, final_delta=0.0)

        index = {page_id: i for i, page_id in enumerate(nodes)}
        outdegree = [0] * n
        inbound: List[List[int]] = [[] for _ in range(n)]
        for source, target in edges:
            if source not in index or target not in index:
                continue
            s, t = index[source], index[target]
            outdegree[s] += 1
            inbound[t].append(s)

        dangling_nodes = [i for i in range(n) if outdegree[i] == 0]
        d = self.damping_factor
        ranks = [1.0 / n] * n
        delta = 0.0
        converged = False
        iteration = 0

        for iteration in range(1, self.max_iterations + 1):
            dangling_mass = sum(ranks[i] for i in dangling_nodes)
            base = (1.0 - d) / n + d * dangling_mass / n

            new_ranks = [
                base + d * sum(ranks[s] / outdegree[s] for s in inbound[i])
                for i in range(n)
            ]

            delta = sum(abs(new - old) for new, old in zip(new_ranks, ranks))
            ranks = new_ranks
            self.logger.debug(f"PageRank iteration {iteration}: delta={delta:.8f}")

            if delta < self.convergence_threshold:
                converged = True
                break

        # Absorb floating-point drift
        total = sum(ranks)
        if total > 0:
            ranks = [rank / total for rank in ranks]

        if converged:
            self.logger.info(f"PageRank converged after {iteration} iterations")
        else:
            self.logger.info(f"PageRank stopped after {iteration} iterations (delta={delta:.8f})")

        return PageRankResult(
            ranks={page_id: ranks[index[page_id]] for page_id in nodes},
            iterations=iteration,
            converged=converged,
            final_delta=delta,
        )


def top_pages(ranks: Dict[int, float], limit: int = 10) -> List[Tuple[int, float]]:
    """Highest-ranked (page_id, rank) pairs, ties broken by page id."""
    return sorted(ranks.items(), key=lambda item: (-item[1], item[0]))[:limit]


class PageRankEngine:
    """Loads the link graph from storage, ranks it, and writes ranks back."""

    def __init__(self, storage, config: PageRankConfig = None):
        config = config or PageRankConfig()
        self.storage = storage
        self.calculator = PageRankCalculator(
            damping_factor=config.damping_factor,
            max_iterations=config.max_iterations,
            convergence_threshold=config.convergence_threshold,
        )
        self.logger = logging.getLogger(__name__)

    async def run(self) -> PageRankResult:
        start_time = time.time()

        await self.storage.resolve_link_targets()
        page_ids, edges = await self.storage.load_link_graph()
        self.logger.info(f"Calculating PageRank for {len(page_ids)} pages and {len(edges)} links")

        result = self.calculator.calculate(page_ids, edges)
        await self.storage.update_pageranks(result.ranks)

        self.logger.info(f"PageRank written for {len(result.ranks)} pages "
                         f"in {time.time() - start_time:.2f}s")
        return result

    async def top_pages(self, limit: int = 10) -> List[Page]:
        return await self.storage.top_pages_by_pagerank(limit)
