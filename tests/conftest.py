"""
Shared fixtures: sample waves in store wire form and an in-memory store.
"""
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import pytest

from wellen.client import WellenApiError
from wellen.models import Actor, BatchProgressResult, Location, PhotoProgress, Submission, Wave

VIENNA = ZoneInfo("Europe/Vienna")


def wave_json(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": "w1",
        "name": "Sommerwelle",
        "startDate": "2024-06-01T00:00:00.000Z",
        "endDate": "2024-06-30",
        "types": ["display", "palette"],
        "goalType": "percentage",
        "goalPercentage": 80,
        "goalValue": None,
        "displays": [
            {"id": "d1", "name": "Aufsteller", "targetNumber": 10, "currentNumber": 8, "itemValue": 500},
        ],
        "kartonwareItems": None,
        "paletteItems": [
            {
                "id": "p1",
                "name": "Grillpalette",
                "products": [
                    {"id": "prod-a", "name": "Kohle", "valuePerVE": 12.5, "ve": 6},
                    {"id": "prod-b", "name": "Anzünder", "valuePerVE": 4, "ve": 12},
                ],
            }
        ],
        "schutteItems": [],
        "einzelproduktItems": [],
        "kwDays": [{"kw": "KW23", "days": ["MO", "MI"]}],
        "assignedMarketIds": ["m1", "m2", "m3"],
        "fotoOnly": False,
        "fotoTags": [],
    }
    data.update(overrides)
    return data


def submission_json(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": "s1",
        "glId": "gl-1",
        "glName": "Anna Berger",
        "marketId": "m1",
        "marketName": "Billa Graz",
        "itemType": "display",
        "itemId": "d1",
        "itemName": "Aufsteller",
        "quantity": 2,
        "valuePerUnit": 500,
        "timestamp": "2024-06-03T08:00:00Z",
    }
    data.update(overrides)
    return data


@pytest.fixture
def wave() -> Wave:
    return Wave.model_validate(wave_json())


@pytest.fixture
def photo_wave() -> Wave:
    return Wave.model_validate(
        wave_json(
            id="w-foto",
            types=["display"],
            fotoOnly=True,
            paletteItems=[],
            fotoTags=[
                {"id": "t1", "name": "Platzierung", "type": "fixed"},
                {"id": "t2", "name": "Preisschild", "type": "optional"},
            ],
        )
    )


@pytest.fixture
def palette_submissions() -> List[Submission]:
    """One palette entry (two products) plus one display entry."""
    return [
        Submission.model_validate(submission_json()),
        Submission.model_validate(
            submission_json(
                id="s2", itemType="palette", parentId="p1", itemId="prod-a", itemName="Kohle",
                quantity=3, valuePerUnit=12.5, timestamp="2024-06-03T09:00:00Z",
            )
        ),
        Submission.model_validate(
            submission_json(
                id="s3", itemType="palette", parentId="p1", itemId="prod-b", itemName="Anzünder",
                quantity=5, valuePerUnit=4, timestamp="2024-06-03T09:00:00Z",
            )
        ),
    ]


@pytest.fixture
def actors() -> List[Actor]:
    return [Actor(id="gl-1", name="Anna Berger"), Actor(id="gl-2", name="Markus Huber")]


@pytest.fixture
def locations() -> List[Location]:
    return [
        Location.model_validate({"id": "m1", "name": "Billa Graz", "chain": "Billa", "postalCode": "8010", "city": "Graz", "gebietsleiterId": "gl-1"}),
        Location.model_validate({"id": "m2", "name": "Spar Linz", "chain": "Spar", "postalCode": "4020", "city": "Linz", "gebietsleiterId": "gl-2"}),
        Location.model_validate({"id": "m3", "name": "Billa Wien Mitte", "chain": "Billa", "postalCode": "1030", "city": "Wien", "gebietsleiterId": "gl-1"}),
        Location.model_validate({"id": "m9", "name": "Billa Salzburg", "chain": "Billa", "city": "Salzburg", "gebietsleiterId": "gl-1"}),
    ]


class FakeWellenClient:
    """
    In-memory stand-in for `WellenClient`.

    Records every mutating call; `fail_on` names methods that raise
    `WellenApiError` (optionally only for given ids).
    """

    def __init__(
        self,
        waves: Optional[List[Wave]] = None,
        progress: Optional[Dict[str, Any]] = None,
        actors: Optional[List[Actor]] = None,
        locations: Optional[List[Location]] = None,
    ) -> None:
        self.waves = {w.id: w for w in waves or []}
        self.progress = progress or {}
        self.actors = actors or []
        self.locations = locations or []
        self.calls: List[tuple] = []
        self.fail_on: Dict[str, Optional[set]] = {}

    def _maybe_fail(self, method: str, key: Optional[str] = None) -> None:
        if method in self.fail_on:
            ids = self.fail_on[method]
            if ids is None or key in ids:
                raise WellenApiError(f"{method} rejected", status_code=500)

    async def list_waves(self) -> List[Wave]:
        return list(self.waves.values())

    async def get_wave(self, wave_id: str) -> Wave:
        if wave_id not in self.waves:
            raise WellenApiError("Welle nicht gefunden", status_code=404)
        return self.waves[wave_id]

    async def create_wave(self, payload) -> Dict[str, Any]:
        self._maybe_fail("create_wave")
        self.calls.append(("create_wave", payload))
        return {"id": "w-new"}

    async def update_wave(self, wave_id: str, payload) -> Dict[str, Any]:
        self._maybe_fail("update_wave", wave_id)
        self.calls.append(("update_wave", wave_id, payload))
        return {"id": wave_id}

    async def delete_wave(self, wave_id: str) -> None:
        self._maybe_fail("delete_wave", wave_id)
        self.calls.append(("delete_wave", wave_id))

    async def get_all_progress(self, wave_id: str):
        data = self.progress.get(wave_id, [])
        if isinstance(data, PhotoProgress):
            return data
        return list(data)

    async def submit_batch(self, wave_id: str, request) -> BatchProgressResult:
        self._maybe_fail("submit_batch", wave_id)
        self.calls.append(("submit_batch", wave_id, request))
        return BatchProgressResult(message="ok", items_updated=len(request.items))

    async def update_submission(self, submission_id: str, quantity: int) -> None:
        self._maybe_fail("update_submission", submission_id)
        self.calls.append(("update_submission", submission_id, quantity))

    async def delete_submission(self, submission_id: str) -> None:
        self._maybe_fail("delete_submission", submission_id)
        self.calls.append(("delete_submission", submission_id))

    async def upload_image(self, image_base64: str, folder: str) -> str:
        self._maybe_fail("upload_image")
        self.calls.append(("upload_image", folder))
        return f"https://cdn.example.test/{folder}/{len(self.calls)}.jpg"

    async def list_actors(self) -> List[Actor]:
        return list(self.actors)

    async def list_locations(self) -> List[Location]:
        return list(self.locations)


@pytest.fixture
def fake_client(wave, palette_submissions, actors, locations) -> FakeWellenClient:
    return FakeWellenClient(
        waves=[wave],
        progress={wave.id: palette_submissions},
        actors=actors,
        locations=locations,
    )
