"""
Tests for inline edit / delete of submission rows.
"""
import asyncio

import pytest

from wellen.aggregation import build_rows
from wellen.client import WellenApiError
from wellen.reconciler import DELETE_CONFIRM_WINDOW, CompositeEditError, InlineEditReconciler, RowState


@pytest.fixture
def reconciler(fake_client, wave, palette_submissions):
    return InlineEditReconciler(fake_client, build_rows(palette_submissions, wave))


class TestEditing:
    def test_start_edit_seeds_buffer(self, reconciler):
        session = reconciler.start_edit("s1")
        assert session.quantity == 2
        assert reconciler.state("s1") == RowState.EDITING

    def test_adjust_clamps_at_zero(self, reconciler):
        session = reconciler.start_edit("s1")
        session.adjust(-1)
        session.adjust(-1)
        session.adjust(-1)
        assert session.quantity == 0

    def test_only_one_row_in_edit(self, reconciler):
        reconciler.start_edit("s1")
        reconciler.start_edit("container:s2", "s2")
        assert reconciler.state("s1") == RowState.VIEWING
        assert reconciler.state("container:s2") == RowState.EDITING
        assert reconciler.session.submission_id == "s2"

    def test_cancel_leaves_row_untouched(self, reconciler, fake_client):
        session = reconciler.start_edit("s1")
        session.set_quantity(9)
        reconciler.cancel_edit()
        assert reconciler.row("s1").quantity == 2
        assert reconciler.state("s1") == RowState.VIEWING
        assert fake_client.calls == []

    def test_save_updates_value_locally(self, reconciler, fake_client):
        reconciler.start_edit("s1").set_quantity(5)
        row = asyncio.run(reconciler.save())
        assert row.quantity == 5
        assert row.value == 2500
        assert fake_client.calls == [("update_submission", "s1", 5)]
        assert reconciler.session is None

    def test_saving_same_quantity_twice_is_stable(self, reconciler, fake_client):
        reconciler.start_edit("s1").set_quantity(4)
        asyncio.run(reconciler.save())
        first = reconciler.row("s1").value
        reconciler.start_edit("s1").set_quantity(4)
        asyncio.run(reconciler.save())
        assert reconciler.row("s1").value == first
        assert reconciler.row("s1").quantity == 4

    def test_zero_is_rejected(self, reconciler, fake_client):
        reconciler.start_edit("s1").set_quantity(0)
        with pytest.raises(ValueError):
            asyncio.run(reconciler.save())
        assert fake_client.calls == []

    def test_failed_save_rolls_back(self, reconciler, fake_client):
        fake_client.fail_on["update_submission"] = None
        reconciler.start_edit("s1").set_quantity(7)
        with pytest.raises(WellenApiError):
            asyncio.run(reconciler.save())
        assert reconciler.row("s1").quantity == 2
        assert reconciler.state("s1") == RowState.EDITING


class TestCompositeRows:
    def test_whole_row_cannot_be_edited(self, reconciler):
        with pytest.raises(CompositeEditError):
            reconciler.start_edit("container:s2")

    def test_product_edit_keeps_sum_consistent(self, reconciler, fake_client):
        reconciler.start_edit("container:s2", "s3").set_quantity(1)
        row = asyncio.run(reconciler.save())
        assert row.quantity == 3 + 1
        assert row.value == 3 * 12.5 + 1 * 4
        assert fake_client.calls == [("update_submission", "s3", 1)]

    def test_unknown_product_is_rejected(self, reconciler):
        with pytest.raises(KeyError):
            reconciler.start_edit("container:s2", "s1")


class TestDeleting:
    def test_delete_needs_confirmation(self, reconciler, fake_client):
        with pytest.raises(ValueError):
            asyncio.run(reconciler.confirm_delete("s1"))
        assert fake_client.calls == []

    def test_cancelled_request_is_forgotten(self, reconciler):
        reconciler.request_delete("s1")
        reconciler.cancel_delete()
        with pytest.raises(ValueError):
            asyncio.run(reconciler.confirm_delete("s1"))

    def test_composite_delete_fans_out(self, reconciler, fake_client):
        reconciler.request_delete("container:s2")
        deleted = asyncio.run(reconciler.confirm_delete("container:s2"))
        assert deleted == ["s2", "s3"]
        assert fake_client.calls == [("delete_submission", "s2"), ("delete_submission", "s3")]
        assert [r.key for r in reconciler.rows] == ["s1"]
        with pytest.raises(KeyError):
            reconciler.row("container:s2")

    def test_partial_failure_keeps_remaining_products(self, reconciler, fake_client):
        fake_client.fail_on["delete_submission"] = {"s3"}
        reconciler.request_delete("container:s2")
        with pytest.raises(WellenApiError):
            asyncio.run(reconciler.confirm_delete("container:s2"))
        row = reconciler.row("container:s2")
        assert row.submission_ids == ["s3"]
        assert row.quantity == 5
        assert reconciler.state("container:s2") == RowState.VIEWING

    def test_request_expires_after_window(self, fake_client, wave, palette_submissions):
        now = [100.0]
        reconciler = InlineEditReconciler(fake_client, build_rows(palette_submissions, wave), clock=lambda: now[0])
        reconciler.request_delete("s1")
        now[0] += DELETE_CONFIRM_WINDOW + 0.5
        with pytest.raises(ValueError):
            asyncio.run(reconciler.confirm_delete("s1"))
        assert reconciler.pending_delete is None
        assert fake_client.calls == []

    def test_confirm_within_window(self, fake_client, wave, palette_submissions):
        now = [100.0]
        reconciler = InlineEditReconciler(fake_client, build_rows(palette_submissions, wave), clock=lambda: now[0])
        reconciler.request_delete("s1")
        now[0] += DELETE_CONFIRM_WINDOW - 0.5
        assert asyncio.run(reconciler.confirm_delete("s1")) == ["s1"]

    def test_delete_closes_edit_on_that_row(self, reconciler):
        reconciler.start_edit("s1")
        reconciler.request_delete("s1")
        asyncio.run(reconciler.confirm_delete("s1"))
        assert reconciler.session is None


class TestRefresh:
    def test_refresh_drops_edit_on_vanished_row(self, reconciler, wave, palette_submissions):
        reconciler.start_edit("s1")
        reconciler.refresh(build_rows(palette_submissions[1:], wave))
        assert reconciler.session is None

    def test_refresh_keeps_edit_on_surviving_row(self, reconciler, wave, palette_submissions):
        reconciler.start_edit("s1")
        reconciler.refresh(build_rows(palette_submissions, wave))
        assert reconciler.state("s1") == RowState.EDITING
