"""
Batch Call Dispatcher — sends operations as one request and demultiplexes
the heterogeneous response back into typed results.

Behavioral Contract:
- Encoding failures raise before anything is sent
- Transport failures propagate unchanged; nothing is retried
- Response element i is decoded with operation i's kind, so the response
  must hold exactly one element per operation
- One identity map is threaded through the whole batch, so references
  between operations resolve to the same canonical entities
- Any failure fails the whole call; no partial results, and the
  identity map is only updated once every element has decoded
"""

import logging
from typing import List, Optional

from pydantic import BaseModel

from entity_rpc.codec.wire import encode_operations, parse_response
from entity_rpc.errors import DecodeError
from entity_rpc.identity.merger import EntityMerger, IdentityMap
from entity_rpc.models.operations import Operation
from entity_rpc.models.schema import SchemaIndex
from entity_rpc.registry.operations import OperationRegistry, default_registry
from entity_rpc.transport.http import Transport

logger = logging.getLogger(__name__)


class BatchDispatcher:
    """Synchronous batched RPC over a transport."""

    def __init__(
        self,
        transport: Transport,
        schema_index: Optional[SchemaIndex] = None,
        registry: Optional[OperationRegistry] = None,
    ):
        self.transport = transport
        self.registry = registry or default_registry()
        self.schema_index = schema_index or SchemaIndex()

    @property
    def schema_index(self) -> SchemaIndex:
        return self._schema_index

    @schema_index.setter
    def schema_index(self, index: SchemaIndex) -> None:
        # Swapped once, after bootstrap.
        self._schema_index = index
        self._merger = EntityMerger(index)

    @property
    def merger(self) -> EntityMerger:
        return self._merger

    def call(
        self,
        *operations: Operation,
        identity_map: Optional[IdentityMap] = None,
    ) -> List[BaseModel]:
        """
        Send operations as one batch and return their results in order.

        Pass `identity_map` to share canonical entities with other calls;
        by default each call gets a fresh map. A map shared between
        concurrent calls must be guarded by the caller.
        """
        if not operations:
            raise ValueError("call() needs at least one operation")

        kinds = [self.registry.kind_for(op) for op in operations]
        payload = encode_operations(operations, self.schema_index.timezone_support)

        logger.debug(
            "Sending batch of %d operation(s): %s",
            len(operations),
            ", ".join(op.action for op in operations),
        )
        body = self.transport.exchange(payload)

        elements = parse_response(body)
        if len(elements) != len(operations):
            raise DecodeError(
                f"expected {len(operations)} result(s), received {len(elements)}",
                elements,
            )

        if identity_map is None:
            identity_map = IdentityMap()

        decoded = [
            kind.decode_result(op, raw)
            for kind, op, raw in zip(kinds, operations, elements)
        ]
        staged = identity_map.staged()
        results = [
            kind.decorate(result, self._merger, staged)
            for kind, result in zip(kinds, decoded)
        ]
        staged.commit()

        logger.debug(
            "Decoded %d result(s), %d entities tracked",
            len(results),
            len(identity_map),
        )
        return results
