from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from ue_protocol.messages import NodeAttributes

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Listener = Callable[["NodeRecord"], None]


@dataclass(frozen=True)
class NodeRecord:
    """A discovered remote node as of its last pong."""

    node_id: str
    attributes: NodeAttributes
    last_seen_at: float

    @property
    def machine(self) -> Optional[str]:
        return self.attributes.machine

    @property
    def engine_version(self) -> Optional[str]:
        return self.attributes.engine_version

    @property
    def project_root(self) -> Optional[str]:
        return self.attributes.project_root

    def is_expired(self, now: float, timeout: float) -> bool:
        return self.last_seen_at + timeout < now

    def to_dict(self) -> Dict[str, Any]:
        data = self.attributes.model_dump()
        data["node_id"] = self.node_id
        return data


class NodeRegistry:
    """
    Thread-safe set of discovered nodes.

    Pong ingestion and the timeout sweep may run from different contexts, so every
    access to the table goes through one lock. Callers only ever get copies.
    """

    def __init__(self, timeout: float, clock: Clock = time.monotonic) -> None:
        self.timeout = timeout
        self._clock = clock
        self._nodes: Dict[str, NodeRecord] = {}
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        with self._lock:
            return node_id in self._nodes

    def upsert(
        self,
        node_id: str,
        attributes: Union[NodeAttributes, Mapping[str, Any], None],
        now: Optional[float] = None,
    ) -> bool:
        """Insert or replace a node. Returns True the first time `node_id` is seen."""
        if not isinstance(attributes, NodeAttributes):
            attributes = NodeAttributes.model_validate(dict(attributes or {}))
        now = self._clock() if now is None else now
        record = NodeRecord(node_id=node_id, attributes=attributes, last_seen_at=now)
        with self._lock:
            is_new = node_id not in self._nodes
            self._nodes[node_id] = record
        if is_new:
            logger.info("Found node %s: %s", node_id, attributes.model_dump(exclude_none=True))
            self._notify(_copy(record))
        return is_new

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """Drop every node that has not been seen within the timeout."""
        now = self._clock() if now is None else now
        with self._lock:
            expired = [node_id for node_id, record in self._nodes.items() if record.is_expired(now, self.timeout)]
            removed = [self._nodes.pop(node_id) for node_id in expired]
        for record in removed:
            logger.info("Lost node %s: %s", record.node_id, record.attributes.model_dump(exclude_none=True))
        return expired

    def snapshot(self) -> List[NodeRecord]:
        with self._lock:
            records = list(self._nodes.values())
        return [_copy(record) for record in records]

    def get(self, node_id: str) -> Optional[NodeRecord]:
        with self._lock:
            record = self._nodes.get(node_id)
        return _copy(record) if record is not None else None

    def clear(self) -> None:
        with self._lock:
            self._nodes.clear()

    def add_listener(self, listener: Listener) -> None:
        """Call `listener` with each newly discovered node."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, record: NodeRecord) -> None:
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as exc:
                logger.exception("Node listener failed for %s: %s", record.node_id, exc)


def _copy(record: NodeRecord) -> NodeRecord:
    return NodeRecord(
        node_id=record.node_id,
        attributes=record.attributes.model_copy(deep=True),
        last_seen_at=record.last_seen_at,
    )
