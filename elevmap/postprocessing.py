"""Postprocessing pipelines for the raw elevation map, run on a pool of worker threads."""

from __future__ import annotations

import copy
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Sequence

from elevmap.node import Node

GridMap = Any
Filter = Callable[[GridMap], GridMap]

DEFAULT_OUTPUT_TOPIC = "elevation_map_raw_post"
DEFAULT_PIPELINE_NAME = "postprocessor_pipeline"


def _declare_missing(node: Node, name: str, default: Any) -> None:
    if not node.has_parameter(name):
        node.declare_parameter(name, default)


def _declare_pool_parameters(node: Node) -> None:
    _declare_missing(node, "output_topic", DEFAULT_OUTPUT_TOPIC)
    _declare_missing(node, "postprocessor_pipeline_name", DEFAULT_PIPELINE_NAME)


class PostprocessingPipelineFunctor:
    """Applies a chain of filters to a grid map and publishes the result.

    Without a filter chain the raw map is forwarded unchanged.
    """

    def __init__(self, node: Node, filter_chain: Sequence[Filter] | None = None) -> None:
        self.node = node
        _declare_missing(node, "filterChainParametersName_", DEFAULT_PIPELINE_NAME)
        _declare_pool_parameters(node)
        self.output_topic: str = node.get_parameter("output_topic")
        self.filter_chain_parameters_name: str = node.get_parameter("postprocessor_pipeline_name")
        self._publisher = node.create_publisher(self.output_topic)
        self._filters = list(filter_chain) if filter_chain is not None else None
        self._warned_unconfigured = False
        if self._filters is None:
            node.logger.warning(
                "Could not configure the filter chain. Will publish the raw elevation map without postprocessing!"
            )

    @property
    def is_configured(self) -> bool:
        return self._filters is not None

    def __call__(self, input_map: GridMap) -> GridMap:
        """Return the filtered map, or ``input_map`` if there is no chain or it fails."""
        if self._filters is None:
            if not self._warned_unconfigured:
                self._warned_unconfigured = True
                self.node.logger.warning(
                    "No postprocessing pipeline was configured. Forwarding the raw elevation map!"
                )
            return input_map
        self.node.logger.info("performing Post processing")
        output = copy.deepcopy(input_map)
        try:
            for step in self._filters:
                output = step(output)
        except Exception:
            self.node.logger.error(
                "Could not perform the grid map filter chain! Forwarding the raw elevation map!"
            )
            return input_map
        return output

    def publish(self, grid_map: GridMap) -> None:
        """Publish ``grid_map`` on the output topic."""
        self._publisher.publish(grid_map)
        self.node.logger.debug("Elevation map raw has been published.")

    def has_subscribers(self) -> bool:
        return self._publisher.subscription_count() > 0


class PostprocessingWorker:
    """A functor, its data buffer and the single thread that runs its tasks."""

    def __init__(self, node: Node, filter_chain: Sequence[Filter] | None = None) -> None:
        self.functor = PostprocessingPipelineFunctor(node, filter_chain)
        self.data_buffer: GridMap = None
        self._executor = ThreadPoolExecutor(max_workers=1)

    def submit(self, task: Callable[..., Any], *args: Any) -> Future:
        """Queue ``task`` on this worker's thread."""
        return self._executor.submit(task, *args)

    def shutdown(self) -> None:
        """Drop queued tasks and wait for the running one to finish."""
        self._executor.shutdown(wait=True, cancel_futures=True)

    def process_buffer(self) -> GridMap:
        return self.functor(self.data_buffer)

    def publish(self, grid_map: GridMap) -> None:
        self.functor.publish(grid_map)

    def has_subscribers(self) -> bool:
        return self.functor.has_subscribers()


class PostprocessorPool:
    """Runs postprocessing pipelines in parallel; maps arriving while all workers are busy are skipped."""

    def __init__(self, pool_size: int, node: Node, filter_chain: Sequence[Filter] | None = None) -> None:
        _declare_pool_parameters(node)
        self.node = node
        self._workers = [PostprocessingWorker(node, filter_chain) for _ in range(pool_size)]
        self._available: deque[int] = deque(range(pool_size))
        self._lock = threading.Lock()
        self._closed = False

    def run_task(self, grid_map: GridMap) -> bool:
        """Start processing a copy of ``grid_map``; False if no worker is free."""
        with self._lock:
            if self._closed:
                raise RuntimeError("the postprocessor pool has been shut down")
            if not self._available:
                return False
            index = self._available.pop()
        worker = self._workers[index]
        worker.data_buffer = copy.deepcopy(grid_map)
        worker.submit(self._wrap_task, index)
        return True

    def _wrap_task(self, index: int) -> None:
        worker = self._workers[index]
        try:
            worker.publish(worker.process_buffer())
        except Exception as error:
            self.node.logger.error(
                "Postprocessor pipeline, thread %d experienced an error: %s", index, error
            )
        with self._lock:
            self._available.append(index)

    def pipeline_has_subscribers(self) -> bool:
        """True if every worker's output topic has a subscriber."""
        return all(worker.has_subscribers() for worker in self._workers)

    def shutdown(self) -> None:
        """Stop all workers, dropping queued tasks and joining their threads."""
        with self._lock:
            self._closed = True
        for worker in self._workers:
            try:
                worker.shutdown()
            except Exception:
                pass

    def __enter__(self) -> "PostprocessorPool":
        return self

    def __exit__(self, *args: Any) -> None:
        self.shutdown()