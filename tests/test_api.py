"""
Tests for the HTTP surface, with the store replaced by the in-memory fake.
"""
import pytest
from fastapi.testclient import TestClient

from wellen import db
from wellen.main import app, get_client
from wellen.models import PhotoProgress


@pytest.fixture
def api(fake_client, tmp_path):
    db.reset_db()
    db.init_db(f"sqlite:///{tmp_path / 'actions.db'}")
    app.dependency_overrides[get_client] = lambda: fake_client
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
    db.reset_db()


class TestRead:
    def test_health(self, api):
        assert api.get("/health").json() == {"status": "ok"}

    def test_wave_list(self, api):
        waves = api.get("/api/waves").json()
        assert waves[0]["id"] == "w1"
        assert waves[0]["status"] in ("upcoming", "active", "past")

    def test_progress(self, api):
        body = api.get("/api/waves/w1/progress").json()
        # 8 of 10 display units; container products carry no target
        assert body["totalQuantity"] == 8 + 3 + 5
        assert body["targetQuantity"] == 10
        assert body["progressRatio"] == 160.0
        assert body["goalMet"] is True
        assert body["barRatio"] == 100.0
        assert body["participatingActors"] == 1

    def test_unknown_wave_is_bad_gateway(self, api):
        response = api.get("/api/waves/nope/progress")
        assert response.status_code == 502
        assert response.json()["upstream_status"] == 404

    def test_grouped_by_actor(self, api):
        body = api.get("/api/waves/w1/submissions", params={"group_by": "actor"}).json()
        group = body["groups"][0]
        assert group["label"] == "Anna Berger"
        assert group["showValue"] is True
        assert group["formattedTotal"] == "€1.057,50"
        assert [r["key"] for r in group["rows"]] == ["s1", "container:s2"]
        assert group["rows"][1]["products"][1]["submissionId"] == "s3"

    def test_grouped_by_day(self, api):
        body = api.get("/api/waves/w1/submissions", params={"group_by": "day"}).json()
        assert [g["groupKey"] for g in body["groups"]] == ["2024-06-03"]

    def test_bad_grouping(self, api):
        assert api.get("/api/waves/w1/submissions", params={"group_by": "week"}).status_code == 422

    def test_photo_wave_groups(self, api, fake_client, photo_wave):
        fake_client.waves[photo_wave.id] = photo_wave
        fake_client.progress[photo_wave.id] = PhotoProgress.model_validate(
            {"type": "foto", "photos": [{"id": "f1", "glId": "gl-1", "photoUrl": "u", "timestamp": "2024-06-01T10:00:00Z"}]}
        )
        body = api.get(f"/api/waves/{photo_wave.id}/submissions").json()
        assert body["type"] == "foto"
        assert body["groups"][0]["count"] == 1

    def test_locations_for_actor(self, api):
        body = api.get("/api/waves/w1/locations", params={"actor-id": "gl-1"}).json()
        assert [l["id"] for l in body["own"]] == ["m1", "m3"]
        assert [l["id"] for l in body["others"]] == ["m2"]


class TestAuthoring:
    DRAFT = {
        "types": ["display"],
        "name": "Herbstwelle",
        "startDate": "2024-09-01",
        "endDate": "2024-09-30",
        "goalType": "value",
        "goalValue": 5000,
        "displays": [{"name": "Aufsteller", "targetNumber": 10, "itemValue": 50}],
        "kwDays": [{"kw": "KW36", "days": ["mo"]}],
        "performedBy": "admin",
    }

    def test_create(self, api, fake_client):
        response = api.post("/api/waves", json=self.DRAFT)
        assert response.status_code == 201
        assert response.json()["totalSteps"] == 4
        payload = fake_client.calls[0][1]
        assert payload.goal_percentage is None
        assert payload.kw_days[0].days == ["MO"]
        assert db.get_recent_actions()[0]["action_type"] == "wave_create"

    def test_incomplete_draft(self, api, fake_client):
        response = api.post("/api/waves", json={**self.DRAFT, "displays": []})
        assert response.status_code == 422
        assert fake_client.calls == []

    def test_update_keeps_types(self, api, fake_client):
        draft = {**self.DRAFT, "types": ["display", "palette"], "paletteItems": [{"name": "Grill", "products": [{"name": "Kohle", "valuePerVE": 10}]}]}
        response = api.put("/api/waves/w1", json=draft)
        assert response.status_code == 200
        assert fake_client.calls[0][:2] == ("update_wave", "w1")
        assert fake_client.calls[0][2].name == "Herbstwelle"

    def test_update_cannot_change_types(self, api):
        assert api.put("/api/waves/w1", json=self.DRAFT).status_code == 422

    def test_delete(self, api, fake_client):
        assert api.delete("/api/waves/w1").status_code == 200
        assert fake_client.calls == [("delete_wave", "w1")]


class TestOnBehalf:
    def test_submit(self, api, fake_client):
        response = api.post(
            "/api/waves/w1/on-behalf",
            json={
                "actorId": "gl-2",
                "locationId": "m2",
                "items": [{"itemType": "palette", "itemId": "prod-a", "quantity": 4}],
                "timestamp": "2024-06-01T09:30:00",
                "performedBy": "admin",
            },
        )
        assert response.status_code == 200
        assert response.json()["itemsUpdated"] == 1
        assert response.json()["timestamp"].startswith("2024-06-01T09:30:00+02:00")
        _, wave_id, request = fake_client.calls[0]
        assert request.items[0].unit_value == 12.5
        action = db.get_recent_actions()[0]
        assert action["target_actor"] == "gl-2"
        assert action["performed_by"] == "admin"

    def test_nothing_entered(self, api):
        response = api.post("/api/waves/w1/on-behalf", json={"actorId": "gl-1", "locationId": "m1"})
        assert response.status_code == 422

    def test_unknown_actor(self, api):
        response = api.post("/api/waves/w1/on-behalf", json={"actorId": "gl-9", "locationId": "m1"})
        assert response.status_code == 404


class TestInlineEdits:
    def test_update_product_quantity(self, api, fake_client):
        response = api.put("/api/waves/w1/submissions/s3", json={"quantity": 1})
        assert response.status_code == 200
        assert response.json()["quantity"] == 4
        assert fake_client.calls == [("update_submission", "s3", 1)]

    def test_zero_quantity_rejected(self, api, fake_client):
        assert api.put("/api/waves/w1/submissions/s1", json={"quantity": 0}).status_code == 422
        assert fake_client.calls == []

    def test_delete_requires_confirm(self, api, fake_client):
        assert api.delete("/api/waves/w1/rows/container:s2").status_code == 409
        assert fake_client.calls == []

    def test_delete_row(self, api, fake_client):
        response = api.delete("/api/waves/w1/rows/container:s2", params={"confirm": "true"})
        assert response.json()["deleted"] == ["s2", "s3"]
        assert db.get_recent_actions()[0]["action_type"] == "submission_delete"

    def test_action_history(self, api):
        api.delete("/api/waves/w1", params={"performed-by": "admin"})
        actions = api.get("/api/actions").json()
        assert actions[0]["action_type"] == "wave_delete"
        assert actions[0]["performed_by"] == "admin"
