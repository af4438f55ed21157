# wellen/reconciler.py
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from .aggregation import ContainerSubmission, Row, SubmissionRow
from .client import WellenApiError, WellenClient
from .models import as_quantity

logger = logging.getLogger(__name__)

# Seconds a delete request stays armed before it must be requested again
DELETE_CONFIRM_WINDOW = 2.0


class RowState(str, Enum):
    VIEWING = "viewing"
    EDITING = "editing"
    SAVING = "saving"
    DELETING = "deleting"
    REMOVED = "removed"


class CompositeEditError(ValueError):
    """A palette / schütte row was edited as a whole instead of per product."""


@dataclass
class EditSession:
    """
    The one quantity edit in progress.

    Addresses exactly one submission: a flat row's own submission, or one
    product submission inside a container row.
    """

    row_key: str
    submission_id: str
    quantity: int
    original_quantity: int

    def adjust(self, delta: int) -> int:
        self.quantity = max(0, self.quantity + delta)
        return self.quantity

    def set_quantity(self, quantity: object) -> int:
        self.quantity = as_quantity(quantity)
        return self.quantity

    @property
    def dirty(self) -> bool:
        return self.quantity != self.original_quantity


class InlineEditReconciler:
    """
    Local view state for a list of submission rows, kept in step with the
    store.

    Only one row can be in edit at a time: the reconciler owns a single
    `EditSession`, and opening a new one closes the previous one. Changes are
    applied locally first and rolled back when the store rejects them.
    """

    def __init__(
        self,
        client: WellenClient,
        rows: Iterable[Row] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self._clock = clock
        self._armed_at = 0.0
        self._rows: Dict[str, Row] = {}
        self._states: Dict[str, RowState] = {}
        self.session: Optional[EditSession] = None
        self.pending_delete: Optional[str] = None
        self.refresh(rows)

    # ---------------------------------------------------------------
    # State
    # ---------------------------------------------------------------
    @property
    def rows(self) -> List[Row]:
        """Rows as they should be displayed right now."""
        return [
            row
            for key, row in self._rows.items()
            if self._states.get(key) not in (RowState.DELETING, RowState.REMOVED)
        ]

    def state(self, row_key: str) -> RowState:
        return self._states.get(row_key, RowState.REMOVED)

    def row(self, row_key: str) -> Row:
        row = self._rows.get(row_key)
        if row is None or self.state(row_key) == RowState.REMOVED:
            raise KeyError(row_key)
        return row

    def refresh(self, rows: Iterable[Row]) -> None:
        """Adopt server-confirmed rows; an edit on a vanished row is dropped."""
        self._rows = {row.key: row for row in rows}
        self._states = {key: RowState.VIEWING for key in self._rows}
        if self.session is not None:
            if self.session.row_key in self._rows:
                self._states[self.session.row_key] = RowState.EDITING
            else:
                self.session = None
        if self.pending_delete not in self._rows:
            self.pending_delete = None

    # ---------------------------------------------------------------
    # Editing
    # ---------------------------------------------------------------
    def start_edit(self, row_key: str, submission_id: Optional[str] = None) -> EditSession:
        row = self.row(row_key)
        if isinstance(row, ContainerSubmission):
            if submission_id is None:
                raise CompositeEditError("Palette/Schütte rows are edited one product at a time")
            quantity = row.product(submission_id).quantity
        else:
            if submission_id not in (None, row.submission.id):
                raise KeyError(submission_id)
            submission_id = row.submission.id
            quantity = row.quantity

        if self.session is not None and self.state(self.session.row_key) == RowState.EDITING:
            self._states[self.session.row_key] = RowState.VIEWING
        self.pending_delete = None
        self.session = EditSession(
            row_key=row_key,
            submission_id=submission_id,
            quantity=quantity,
            original_quantity=quantity,
        )
        self._states[row_key] = RowState.EDITING
        return self.session

    def cancel_edit(self) -> None:
        if self.session is None:
            return
        if self.state(self.session.row_key) == RowState.EDITING:
            self._states[self.session.row_key] = RowState.VIEWING
        self.session = None

    def _set_quantity(self, row: Row, submission_id: str, quantity: int) -> int:
        """Write a quantity into local state, returning the previous one."""
        if isinstance(row, SubmissionRow):
            previous = row.submission.quantity
            row.submission = row.submission.model_copy(update={"quantity": quantity})
            return previous
        ref = row.product(submission_id)
        previous = ref.quantity
        ref.quantity = quantity
        return previous

    async def save(self) -> Row:
        session = self.session
        if session is None:
            raise RuntimeError("No edit in progress")
        if session.quantity < 1:
            raise ValueError("Quantity must be at least 1; delete the entry instead")

        row = self.row(session.row_key)
        previous = self._set_quantity(row, session.submission_id, session.quantity)
        self._states[session.row_key] = RowState.SAVING
        try:
            await self.client.update_submission(session.submission_id, session.quantity)
        except WellenApiError as exc:
            self._set_quantity(row, session.submission_id, previous)
            self._states[session.row_key] = RowState.EDITING
            logger.error("[SUBMISSION_UPDATE] %s -> %s failed: %s", session.submission_id, session.quantity, exc)
            raise

        logger.info("[SUBMISSION_UPDATE] %s quantity %s -> %s", session.submission_id, previous, session.quantity)
        self._states[session.row_key] = RowState.VIEWING
        if self.session is session:
            self.session = None
        return row

    # ---------------------------------------------------------------
    # Deleting
    # ---------------------------------------------------------------
    def request_delete(self, row_key: str) -> None:
        """First half of the delete gesture; nothing is sent yet."""
        self.row(row_key)
        self.pending_delete = row_key
        self._armed_at = self._clock()

    def cancel_delete(self) -> None:
        self.pending_delete = None

    async def confirm_delete(self, row_key: str) -> List[str]:
        """
        Second half of the delete gesture.

        Sends one delete per underlying submission. The row disappears
        immediately; if a delete fails it comes back holding only the
        constituents that still exist.
        """
        if self.pending_delete == row_key and self._clock() - self._armed_at > DELETE_CONFIRM_WINDOW:
            self.pending_delete = None
        if self.pending_delete != row_key:
            raise ValueError(f"Deletion of {row_key} was not requested")
        row = self.row(row_key)
        self._states[row_key] = RowState.DELETING
        self.pending_delete = None

        deleted: List[str] = []
        try:
            for submission_id in list(row.submission_ids):
                await self.client.delete_submission(submission_id)
                deleted.append(submission_id)
        except WellenApiError as exc:
            if isinstance(row, ContainerSubmission):
                row.products = [p for p in row.products if p.submission_id not in deleted]
            self._states[row_key] = RowState.VIEWING
            logger.error("[SUBMISSION_DELETE] %s failed after %d deletes: %s", row_key, len(deleted), exc)
            raise

        logger.info("[SUBMISSION_DELETE] %s removed (%d submissions)", row_key, len(deleted))
        self._states[row_key] = RowState.REMOVED
        del self._rows[row_key]
        if self.session is not None and self.session.row_key == row_key:
            self.session = None
        return deleted
