"""
Tests for wave parsing and line normalization.
"""
import math
from datetime import date

from conftest import submission_json, wave_json

from wellen.catalog import line_value, normalize, submission_value, unit_value_lookup
from wellen.models import ItemType, Submission, Wave, as_number, as_quantity


class TestCoercion:
    def test_unusable_numbers_become_zero(self):
        for raw in (None, "", "abc", float("nan"), float("inf"), True, [1]):
            assert as_number(raw) == 0.0

    def test_numeric_strings_are_read(self):
        assert as_number("12.5") == 12.5
        assert as_quantity("7") == 7

    def test_quantity_never_negative(self):
        assert as_quantity(-4) == 0
        assert as_quantity(3.9) == 3


class TestWaveParsing:
    def test_iso_timestamps_are_cut_to_dates(self):
        wave = Wave.model_validate(wave_json())
        assert wave.start_date == date(2024, 6, 1)
        assert wave.end_date == date(2024, 6, 30)

    def test_missing_collections_are_empty(self):
        wave = Wave.model_validate(wave_json(kartonwareItems=None, fotoTags=None))
        assert wave.kartonware_items == []
        assert wave.foto_tags == []

    def test_broken_item_numbers_fail_closed(self):
        wave = Wave.model_validate(
            wave_json(displays=[{"id": "d1", "targetNumber": "x", "currentNumber": None, "itemValue": "NaN"}])
        )
        item = wave.displays[0]
        assert item.target_quantity == 0
        assert item.current_quantity == 0
        assert item.unit_value == 0.0

    def test_unknown_keys_survive(self):
        wave = Wave.model_validate(wave_json(createdBy="admin"))
        assert wave.model_extra["createdBy"] == "admin"

    def test_goal_target_follows_goal_type(self):
        wave = Wave.model_validate(wave_json(goalType="value", goalValue=10000, goalPercentage=80))
        assert wave.goal_target == 10000


class TestSubmissionParsing:
    def test_legacy_aliases(self):
        sub = Submission.model_validate(submission_json())
        assert sub.actor_id == "gl-1"
        assert sub.location_id == "m1"
        assert sub.unit_value == 500
        assert sub.value == 1000

    def test_unit_value_recovered_from_line_value(self):
        data = submission_json(quantity=4, value=100)
        del data["valuePerUnit"]
        sub = Submission.model_validate(data)
        assert sub.unit_value == 25
        assert "reported_value" not in sub.model_dump()

    def test_naive_timestamp_is_utc(self):
        sub = Submission.model_validate(submission_json(timestamp="2024-06-03T08:00:00"))
        assert sub.timestamp.utcoffset().total_seconds() == 0


class TestNormalize:
    def test_flat_items_one_line_each(self, wave):
        lines = normalize(wave)
        display = [l for l in lines if l.item_type == ItemType.DISPLAY]
        assert len(display) == 1
        assert display[0].quantity == 8
        assert display[0].target_quantity == 10
        assert display[0].unit_value == 500

    def test_containers_one_line_per_product(self, wave):
        lines = [l for l in normalize(wave) if l.item_type == ItemType.PALETTE]
        assert [l.item_id for l in lines] == ["prod-a", "prod-b"]
        assert all(l.parent_id == "p1" for l in lines)
        assert all(l.target_quantity == 0 for l in lines)
        assert all(l.quantity == 0 for l in lines)

    def test_container_quantities_come_from_submissions(self, wave, palette_submissions):
        lines = {l.item_id: l for l in normalize(wave, palette_submissions)}
        assert lines["prod-a"].quantity == 3
        assert lines["prod-b"].quantity == 5
        # Flat items keep their own current quantity
        assert lines["d1"].quantity == 8

    def test_submission_without_parent_still_counts(self, wave):
        sub = Submission.model_validate(submission_json(id="s9", itemType="palette", itemId="prod-a", quantity=2))
        lines = {l.item_id: l for l in normalize(wave, [sub])}
        assert lines["prod-a"].quantity == 2

    def test_other_container_does_not_count(self, wave):
        sub = Submission.model_validate(
            submission_json(id="s9", itemType="palette", parentId="p-other", itemId="prod-a", quantity=2)
        )
        lines = {l.item_id: l for l in normalize(wave, [sub])}
        assert lines["prod-a"].quantity == 0

    def test_canonical_order(self):
        wave = Wave.model_validate(
            wave_json(
                displays=[],
                einzelproduktItems=[{"id": "e1", "targetNumber": 1}],
                kartonwareItems=[{"id": "k1", "targetNumber": 1}],
            )
        )
        assert [l.item_type for l in normalize(wave)] == [
            ItemType.KARTONWARE,
            ItemType.PALETTE,
            ItemType.PALETTE,
            ItemType.EINZELPRODUKT,
        ]

    def test_values(self, wave, palette_submissions):
        lines = normalize(wave, palette_submissions)
        assert math.isclose(sum(line_value(l) for l in lines), 8 * 500 + 3 * 12.5 + 5 * 4)
        assert submission_value(palette_submissions[1]) == 37.5

    def test_unit_value_lookup(self, wave):
        lookup = unit_value_lookup(wave)
        assert lookup[(ItemType.PALETTE, "prod-b")] == 4
        assert lookup[(ItemType.DISPLAY, "d1")] == 500
