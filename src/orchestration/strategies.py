"""
Execution strategies for dispatching subtasks to workers.

Each strategy is a coroutine function registered against an ExecutionStrategy
value; the orchestrator looks the runner up once per task, so strategies are
never mixed within one task and new ones can be added with register_strategy().
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from models import Complexity, ExecutionStrategy, Subtask, WorkerResult


logger = logging.getLogger(__name__)

RunOne = Callable[[Subtask], Awaitable[WorkerResult]]
StrategyRunner = Callable[[List[Subtask], RunOne, Optional[int]], Awaitable[List[WorkerResult]]]


async def run_parallel(
    subtasks: List[Subtask],
    run_one: RunOne,
    max_concurrency: Optional[int] = None
) -> List[WorkerResult]:
    """Fan out every subtask and wait for all of them; no short-circuit on failure."""
    if not subtasks:
        return []

    if max_concurrency is None:
        return list(await asyncio.gather(*(run_one(subtask) for subtask in subtasks)))

    semaphore = asyncio.Semaphore(max_concurrency)

    async def bounded(subtask: Subtask) -> WorkerResult:
        async with semaphore:
            return await run_one(subtask)

    return list(await asyncio.gather(*(bounded(subtask) for subtask in subtasks)))


async def run_sequential(
    subtasks: List[Subtask],
    run_one: RunOne,
    max_concurrency: Optional[int] = None
) -> List[WorkerResult]:
    """One subtask at a time in the given order; a failure does not stop the chain."""
    results = []
    for subtask in subtasks:
        results.append(await run_one(subtask))
    return results


async def run_adaptive(
    subtasks: List[Subtask],
    run_one: RunOne,
    max_concurrency: Optional[int] = None
) -> List[WorkerResult]:
    """Simple subtasks in parallel, all others sequentially; the two partitions run independently."""
    simple = [s for s in subtasks if s.complexity == Complexity.SIMPLE]
    others = [s for s in subtasks if s.complexity != Complexity.SIMPLE]

    logger.debug(f"Adaptive split: {len(simple)} parallel, {len(others)} sequential")

    simple_results, other_results = await asyncio.gather(
        run_parallel(simple, run_one, max_concurrency),
        run_sequential(others, run_one)
    )
    return simple_results + other_results


STRATEGIES: Dict[ExecutionStrategy, StrategyRunner] = {
    ExecutionStrategy.PARALLEL: run_parallel,
    ExecutionStrategy.SEQUENTIAL: run_sequential,
    ExecutionStrategy.ADAPTIVE: run_adaptive,
}


def register_strategy(strategy: ExecutionStrategy, runner: StrategyRunner):
    STRATEGIES[strategy] = runner


def get_strategy(strategy: ExecutionStrategy) -> StrategyRunner:
    try:
        return STRATEGIES[ExecutionStrategy(strategy)]
    except KeyError:
        raise ValueError(f"No runner registered for strategy {strategy}") from None


async def dispatch(
    strategy: ExecutionStrategy,
    subtasks: List[Subtask],
    run_one: RunOne,
    max_concurrency: Optional[int] = None
) -> List[WorkerResult]:
    """
    Run subtasks under one strategy and return results in subtask order.

    Results are matched back to their subtask by subtask_id, not by the
    position a runner happened to return them in.
    """
    runner = get_strategy(strategy)
    results = await runner(subtasks, run_one, max_concurrency)

    by_subtask = {result.subtask_id: result for result in results}
    missing = [s.id for s in subtasks if s.id not in by_subtask]
    if missing:
        raise RuntimeError(f"Strategy {strategy} returned no result for subtasks {missing}")
    return [by_subtask[s.id] for s in subtasks]
