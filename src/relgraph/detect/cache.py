from __future__ import annotations

import logging
import threading

from ..source.base import Sampler
from .detector import RelationshipDetector, RelationshipIndex, detect_schema


logger = logging.getLogger(__name__)


class RelationshipCache:
    """Schema-scoped memo of one `RelationshipIndex`.

    Reads are lock-free once the index exists; computing it is serialized so
    concurrent first readers trigger a single detection run. Call
    `invalidate()` whenever the schema is re-introspected.
    """

    def __init__(
        self,
        sampler: Sampler,
        detector: RelationshipDetector | None = None,
        *,
        threshold: float = 0.5,
    ):
        self.sampler = sampler
        self.detector = detector or RelationshipDetector()
        self.threshold = float(threshold)
        self._index: RelationshipIndex | None = None
        self._lock = threading.Lock()
        self.computations = 0

    def get(self, *, cancel: threading.Event | None = None) -> RelationshipIndex:
        index = self._index
        if index is not None:
            return index
        with self._lock:
            if self._index is not None:
                return self._index
            index = detect_schema(self.sampler, self.detector, threshold=self.threshold, cancel=cancel)
            self.computations += 1
            if cancel is not None and cancel.is_set():
                # Partial detection is usable for this call but never cached.
                return index
            self._index = index
            return index

    def invalidate(self) -> None:
        with self._lock:
            self._index = None
        logger.debug("Relationship cache invalidated")

    def refresh(self) -> RelationshipIndex:
        self.invalidate()
        return self.get()
