"""
Async Call Façade — runs batched calls in the background.

Each submission resolves a one-shot future exactly once, with either the
result list or the exception the call raised. Submitted calls are never
cancelled: a caller who loses interest stops waiting and the call still
runs to completion.
"""

import asyncio
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional

from pydantic import BaseModel

from entity_rpc.dispatch.dispatcher import BatchDispatcher
from entity_rpc.identity.merger import IdentityMap
from entity_rpc.models.operations import Operation, QueryOperation
from entity_rpc.models.results import QueryResult

logger = logging.getLogger(__name__)


class _UncancellableFuture(Future):
    def cancel(self) -> bool:
        return False


class AsyncCaller:
    """Fan-out wrapper around a BatchDispatcher."""

    def __init__(
        self,
        dispatcher: BatchDispatcher,
        executor: Optional[ThreadPoolExecutor] = None,
        max_workers: Optional[int] = None,
    ):
        self.dispatcher = dispatcher
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="entity-rpc"
        )

    def submit(
        self,
        *operations: Operation,
        identity_map: Optional[IdentityMap] = None,
    ) -> "Future[List[BaseModel]]":
        """Start a call in the background and return its future."""
        outcome: Future = _UncancellableFuture()
        outcome.set_running_or_notify_cancel()

        def run() -> None:
            try:
                results = self.dispatcher.call(*operations, identity_map=identity_map)
            except Exception as e:
                logger.debug("Background call failed: %s", e)
                outcome.set_exception(e)
            else:
                outcome.set_result(results)

        self._executor.submit(run)
        return outcome

    def submit_query(self, expression: str) -> "Future[QueryResult]":
        """Start a single query and return a future of its QueryResult."""
        outcome: Future = _UncancellableFuture()
        outcome.set_running_or_notify_cancel()

        def unwrap(call: Future) -> None:
            error = call.exception()
            if error is not None:
                outcome.set_exception(error)
            else:
                outcome.set_result(call.result()[0])

        self.submit(QueryOperation(expression=expression)).add_done_callback(unwrap)
        return outcome

    async def call(
        self,
        *operations: Operation,
        identity_map: Optional[IdentityMap] = None,
    ) -> List[BaseModel]:
        """Await a background call from asyncio code."""
        # Cancelling the awaiter leaves the call running.
        return await asyncio.shield(
            asyncio.wrap_future(self.submit(*operations, identity_map=identity_map))
        )

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def __enter__(self) -> "AsyncCaller":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()
