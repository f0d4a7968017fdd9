import threading
from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Dict, Any, List, Optional


@dataclass
class DispatchCounters:
    """Counters for one destination provider."""
    issued: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def pending(self) -> int:
        return self.issued - self.succeeded - self.failed


@dataclass
class DispatchMetrics:
    """Transfer and fetch counters for a migration session.

    Outcomes are recorded from worker threads, so every mutation takes the lock.
    """
    started_at: datetime = field(default_factory=datetime.now)
    fetch_failures: int = 0
    batches: int = 0
    recent_errors: List[str] = field(default_factory=list)
    max_recent_errors: int = 20

    def __post_init__(self):
        self._lock = threading.Lock()
        self._by_destination: Dict[str, DispatchCounters] = {}

    def _counters(self, destination: str) -> DispatchCounters:
        if destination not in self._by_destination:
            self._by_destination[destination] = DispatchCounters()
        return self._by_destination[destination]

    def record_batch(self, destination: str, size: int) -> None:
        with self._lock:
            self.batches += 1
            self._counters(destination).issued += size

    def record_transfer_success(self, destination: str) -> None:
        with self._lock:
            self._counters(destination).succeeded += 1

    def record_transfer_failure(self, destination: str, error: Optional[str] = None) -> None:
        with self._lock:
            self._counters(destination).failed += 1
            self._remember(error)

    def record_fetch_failure(self, error: Optional[str] = None) -> None:
        with self._lock:
            self.fetch_failures += 1
            self._remember(error)

    def _remember(self, error: Optional[str]) -> None:
        if not error:
            return
        self.recent_errors.append(error)
        if len(self.recent_errors) > self.max_recent_errors:
            del self.recent_errors[0]

    def counters(self, destination: str) -> DispatchCounters:
        with self._lock:
            return DispatchCounters(**asdict(self._counters(destination)))

    def summary(self) -> Dict[str, Any]:
        """Snapshot suitable for JSON views."""
        with self._lock:
            return {
                'started_at': self.started_at.isoformat(),
                'batches': self.batches,
                'fetch_failures': self.fetch_failures,
                'transfers': {
                    dest: {
                        'issued': c.issued,
                        'succeeded': c.succeeded,
                        'failed': c.failed,
                        'pending': c.pending,
                    }
                    for dest, c in sorted(self._by_destination.items())
                },
                'recent_errors': list(self.recent_errors),
            }
