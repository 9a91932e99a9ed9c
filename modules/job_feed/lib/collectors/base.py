from __future__ import annotations

from abc import ABC, abstractmethod

from ..models import CollectTask, Record


class CollectorError(Exception):
    """A single task failed to retrieve or parse data."""


class BaseCollector(ABC):
    """
    Abstract collector interface.

    Contract:
      - collect(task) returns a LIST of Record for one task; [] when nothing matched.
      - May raise (CollectorError or anything else) for network/parse failures;
        the orchestrator isolates the failure to this task.
      - Do NOT dedupe, persist, notify or mutate global state: that happens upstream.
    """

    # Concrete subclasses MUST set this to a stable string, e.g. "stub", "json_feed"
    kind: str = ""

    def __init__(self, *, skip_network: bool = False) -> None:
        self.skip_network = skip_network

    @abstractmethod
    def collect(self, task: CollectTask) -> list[Record]:
        raise NotImplementedError

    def close(self) -> None:
        """Release any held resources (sessions, browsers)."""
