"""
Optimistic pending-state overlay.

The ledger itself has no "pending" state. A presentation layer that
wants to show a mutation before the server confirms it keeps the last
known-good snapshot here and stages mutations on top of it:

    overlay = PendingOverlay(accounts)
    key = overlay.stage_update(edited_account)
    ...render overlay.view()...
    overlay.reconcile(key, service_result)

On success the mutation is folded into the snapshot; on failure the
staged entry is dropped and the snapshot shows through unchanged.
"""

from enum import Enum
from typing import Any, Callable, Iterable, Optional
from uuid import uuid4

from pydantic import BaseModel

from moneyar.models.ledger import OperationResult


class PendingAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PendingItem(BaseModel):
    """One row as the UI should render it."""

    item: Any
    is_pending: bool = False
    pending_action: Optional[PendingAction] = None


def new_pending_key() -> str:
    """Temporary id for an item the server has not assigned one to yet."""
    return f"pending-{uuid4()}"


class PendingOverlay:
    """
    Snapshot of server rows plus staged, unconfirmed mutations.

    Items must expose an ``id`` attribute.
    """

    def __init__(self, snapshot: Iterable[Any] = ()):
        self._snapshot: dict[str, Any] = {}
        self._pending: dict[str, tuple[PendingAction, Any]] = {}
        self.replace_snapshot(snapshot)

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    @property
    def snapshot(self) -> list[Any]:
        return list(self._snapshot.values())

    def replace_snapshot(self, items: Iterable[Any]) -> None:
        """Install a fresh server read. Staged mutations are kept."""
        self._snapshot = {item.id: item for item in items}

    def stage_create(self, item: Any) -> str:
        self._pending[item.id] = (PendingAction.CREATE, item)
        return item.id

    def stage_update(self, item: Any) -> str:
        self._pending[item.id] = (PendingAction.UPDATE, item)
        return item.id

    def stage_delete(self, item_id: str) -> str:
        self._pending[item_id] = (PendingAction.DELETE, self._snapshot.get(item_id))
        return item_id

    def confirm(self, key: str, server_item: Optional[Any] = None) -> None:
        """Fold a successful mutation into the snapshot and drop its overlay."""
        entry = self._pending.pop(key, None)
        if entry is None:
            return
        action, staged = entry
        if action == PendingAction.DELETE:
            self._snapshot.pop(key, None)
            return
        confirmed = server_item if server_item is not None else staged
        if action == PendingAction.CREATE and confirmed.id != key:
            self._snapshot.pop(key, None)
        self._snapshot[confirmed.id] = confirmed

    def revert(self, key: str) -> None:
        """Discard a failed mutation; the snapshot is left as it was."""
        self._pending.pop(key, None)

    def reconcile(self, key: str, result: OperationResult) -> None:
        """Confirm or revert according to a ledger OperationResult."""
        if result.success:
            server_item = result.data if hasattr(result.data, "id") else None
            self.confirm(key, server_item)
        else:
            self.revert(key)

    def view(
        self,
        sort_key: Optional[Callable[[Any], Any]] = None,
        reverse: bool = False,
    ) -> list[PendingItem]:
        """
        Snapshot with the overlay applied.

        Staged deletes stay visible (flagged) until confirmed; staged
        creates are appended after the snapshot rows.
        """
        rows = []
        for key, item in self._snapshot.items():
            entry = self._pending.get(key)
            if entry is None:
                rows.append(PendingItem(item=item))
                continue
            action, staged = entry
            shown = staged if action == PendingAction.UPDATE else item
            rows.append(PendingItem(item=shown, is_pending=True, pending_action=action))

        for key, (action, staged) in self._pending.items():
            if action == PendingAction.CREATE and key not in self._snapshot:
                rows.append(PendingItem(
                    item=staged,
                    is_pending=True,
                    pending_action=PendingAction.CREATE,
                ))

        if sort_key is not None:
            rows.sort(key=lambda row: sort_key(row.item), reverse=reverse)
        return rows
