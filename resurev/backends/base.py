from __future__ import annotations

from abc import ABC, abstractmethod


class KeyValueBackend(ABC):
    """Flat string-keyed store with no transactions and no compare-and-swap.

    ``set``/``delete`` report failure by returning False; an unreachable
    store raises BackendUnavailable. ``list`` returns keys, or (key, value)
    pairs when *with_values* is set.
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> bool:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def list(self, prefix: str, with_values: bool = False) -> list:
        pass

    def ping(self) -> bool:
        return True
