"""
Per-peer FIFO buffering of remote ICE candidates.

Candidates that arrive before a peer's remote description is committed are
held here and drained, in arrival order, once the description is set.
"""
from collections import deque
from typing import Any, Deque, Dict, List


class CandidateBuffer:
    """FIFO queue of not-yet-applicable ICE candidates for one remote peer."""

    def __init__(self):
        self._queue: Deque[Any] = deque()

    def push(self, candidate: Any):
        self._queue.append(candidate)

    def drain(self) -> List[Any]:
        """Remove and return every buffered candidate, oldest first."""
        drained = list(self._queue)
        self._queue.clear()
        return drained

    def __len__(self) -> int:
        return len(self._queue)


class CandidateBuffers:
    """Mapping of remote peer id to its candidate buffer."""

    def __init__(self):
        self._buffers: Dict[str, CandidateBuffer] = {}

    def push(self, peer_id: str, candidate: Any):
        buffer = self._buffers.get(peer_id)
        if buffer is None:
            buffer = CandidateBuffer()
            self._buffers[peer_id] = buffer
        buffer.push(candidate)

    def drain(self, peer_id: str) -> List[Any]:
        """Drain a peer's buffer. Empty or unknown peers yield an empty list."""
        buffer = self._buffers.pop(peer_id, None)
        if buffer is None:
            return []
        return buffer.drain()

    def pending(self, peer_id: str) -> int:
        buffer = self._buffers.get(peer_id)
        return len(buffer) if buffer else 0

    def discard(self, peer_id: str):
        self._buffers.pop(peer_id, None)

    def clear(self):
        self._buffers.clear()

    def __len__(self) -> int:
        return sum(len(buffer) for buffer in self._buffers.values())
