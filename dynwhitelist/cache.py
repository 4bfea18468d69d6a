from collections.abc import Iterable
from datetime import datetime, timezone


class SnapshotCache:
    def __init__(self):
        self._snapshots: dict[str, tuple[str, ...]] = {}
        self._refreshed: dict[str, datetime] = {}

    def get(self, key: str) -> tuple[str, ...] | None:
        return self._snapshots.get(key)

    def put(self, key: str, addresses: Iterable[str]) -> None:
        # Only successful fetches land here, so a key never disappears.
        self._snapshots[key] = tuple(addresses)
        self._refreshed[key] = datetime.now(timezone.utc)

    def refreshed(self) -> dict[str, datetime]:
        return dict(self._refreshed)
