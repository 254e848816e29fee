"""
Change detectors for polled triggers.

A detector compares the latest upstream response against the cursor saved
by the previous poll and returns the delta plus the cursor to save next.
Cursors are plain JSON dicts stored in ``trigger_states``.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from ..constants import TriggerType
from ..exceptions import ErrorCode, ValidationError
from ..schemas.trigger_schemas import DetectedChange, TriggerConfig
from ..utils.hash_utils import calculate_item_hash, compare_snapshots, get_nested_value

Cursor = Dict[str, Any]


class ChangeDetector(ABC):
    """Turns consecutive upstream snapshots into change events."""

    @abstractmethod
    def detect(
        self, data: Any, cursor: Optional[Cursor], config: TriggerConfig
    ) -> Tuple[List[DetectedChange], Cursor]:
        """
        Args:
            data: Invocation result of the trigger's read action
            cursor: Cursor from the previous successful poll, None on the first
            config: The trigger's config

        Returns:
            Changes in upstream order, and the cursor to persist
        """

    @staticmethod
    def is_baseline(cursor: Optional[Cursor], config: TriggerConfig) -> bool:
        """First poll only records what exists, unless told to fire."""
        return cursor is None and not config.fire_on_first_poll


class RowCountDetector(ChangeDetector):
    """
    Spreadsheet rows appended since the last poll.

    Expects a values matrix (``{"values": [[...], ...]}`` or the bare list).
    With ``headerRow`` the first row names the columns of each emitted record.
    """

    event_type = "new-row"

    def detect(self, data, cursor, config):
        rows = data.get("values") if isinstance(data, dict) else data
        rows = rows or []
        if not isinstance(rows, list):
            raise ValidationError(
                "Sheet response does not contain a values matrix",
                field="values",
                error_code=ErrorCode.INVALID_FORMAT,
            )

        count = len(rows)
        next_cursor = {"rowCount": count}
        if self.is_baseline(cursor, config):
            return [], next_cursor

        seen = int((cursor or {}).get("rowCount", 0))
        # Rows were deleted upstream; re-anchor without firing
        if count <= seen:
            return [], next_cursor

        header = rows[0] if config.header_row and rows else []
        start = max(seen, 1 if config.header_row else 0)
        changes = []
        for index in range(start, count):
            row = rows[index] if isinstance(rows[index], list) else [rows[index]]
            changes.append(
                DetectedChange(
                    event_type=self.event_type,
                    data={
                        "rowNumber": index + 1,
                        "row": self._as_record(header, row),
                        "rawValues": row,
                    },
                )
            )
        return changes, next_cursor

    @staticmethod
    def _as_record(header: List[Any], row: List[Any]) -> Dict[str, Any]:
        if not header:
            return {str(i): value for i, value in enumerate(row)}
        # Sheets trims trailing empty cells
        return {
            str(name): row[i] if i < len(row) and row[i] is not None else ""
            for i, name in enumerate(header)
        }


class SnapshotDetector(ChangeDetector):
    """
    New and changed items of a keyed collection.

    Items are found at ``itemsPath`` (default ``items``), keyed by ``idField``
    and fingerprinted with a content hash. The cursor keeps ``{key: hash}``
    of the latest poll.
    """

    def __init__(self, new_event_type: str = "new-item", changed_event_type: str = "updated-item"):
        self.new_event_type = new_event_type
        self.changed_event_type = changed_event_type

    def _items(self, data: Any, config: TriggerConfig) -> List[Any]:
        if config.items_path:
            items = get_nested_value(data, config.items_path)
        elif isinstance(data, list):
            items = data
        else:
            items = get_nested_value(data, "items")

        if items is None:
            return []
        if not isinstance(items, list):
            raise ValidationError(
                f"'{config.items_path or 'items'}' is not a list",
                field="itemsPath",
                error_code=ErrorCode.INVALID_FORMAT,
            )
        return items

    def _key(self, item: Any, config: TriggerConfig, digest: str) -> str:
        key = get_nested_value(item, config.id_field) if isinstance(item, dict) else None
        return digest if key is None else str(key)

    def detect(self, data, cursor, config):
        items = self._items(data, config)

        current: Dict[str, str] = {}
        keyed: List[Tuple[str, Any]] = []
        for item in items:
            if item is None:
                continue
            digest = calculate_item_hash(item)
            key = self._key(item, config, digest)
            if key in current:
                continue
            current[key] = digest
            keyed.append((key, item))

        next_cursor = {"items": current}
        if self.is_baseline(cursor, config):
            return [], next_cursor

        delta = compare_snapshots((cursor or {}).get("items", {}), current)
        added = set(delta["added"])
        changed = set(delta["changed"]) if config.emit_on_change else set()

        changes = []
        for key, item in keyed:
            if key in added:
                changes.append(DetectedChange(event_type=self.new_event_type, data=item))
            elif key in changed:
                changes.append(DetectedChange(event_type=self.changed_event_type, data=item))
        return changes, next_cursor


_DETECTORS: Dict[str, ChangeDetector] = {
    TriggerType.NEW_SHEET_ROW.value: RowCountDetector(),
    TriggerType.NEW_CALENDAR_EVENT.value: SnapshotDetector(new_event_type="new-event"),
    TriggerType.NEW_DRIVE_FILE.value: SnapshotDetector(new_event_type="new-file"),
    TriggerType.NEW_ITEM.value: SnapshotDetector(),
    TriggerType.UPDATED_ITEM.value: SnapshotDetector(),
}

_DEFAULT_DETECTOR = SnapshotDetector()


def get_detector(trigger_type: str) -> ChangeDetector:
    """Detector for a trigger type; unknown types use keyed snapshots."""
    return _DETECTORS.get(trigger_type, _DEFAULT_DETECTOR)
