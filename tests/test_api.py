from __future__ import annotations

import base64
import json

import httpx
from fastapi.testclient import TestClient

from parklog.main import build_app

ENV = {"SUPABASE_URL": "https://proj.supabase.co", "SUPABASE_SERVICE_KEY": "svc"}

ROWS = [
    {
        "id": "E1",
        "park_id": "yose",
        "visit_date": "2024-06-01",
        "notes": "Half Dome",
        "image_url": None,
        "image_path": "u1/yose/a.jpg",
        "created_at": "2024-06-02T10:00:00Z",
    },
    {
        "id": "E2",
        "park_id": "zion",
        "visit_date": "2024-05-10",
        "notes": None,
        "image_url": None,
        "image_path": None,
        "created_at": "2024-05-11T09:00:00Z",
    },
]


class FakeSupabase:
    def __init__(self) -> None:
        self.sign_calls: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/storage/v1/object/sign/journal-images/"):
            key = path.removeprefix("/storage/v1/object/sign/journal-images/")
            self.sign_calls.append(key)
            return httpx.Response(200, json={"signedURL": f"/object/sign/journal-images/{key}?token=t{len(self.sign_calls)}"})
        if path.startswith("/storage/v1/object/journal-images/"):
            return httpx.Response(200, json={"Key": path.removeprefix("/storage/v1/object/")})
        if path == "/rest/v1/journal_entries" and request.method == "GET":
            return httpx.Response(200, json=ROWS)
        if path == "/rest/v1/journal_entries" and request.method == "POST":
            body = json.loads(request.content)
            return httpx.Response(201, json=[{"id": "E3", "created_at": "2024-06-03T00:00:00Z", **body}])
        return httpx.Response(404, json={"message": "not found"})


def _app(fake: FakeSupabase):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    return build_app(environ=ENV, http_client=http_client)


def test_health() -> None:
    with TestClient(_app(FakeSupabase())) as client:
        assert client.get("/health").json() == {"status": "ok"}


def test_open_session_attaches_signed_urls() -> None:
    fake = FakeSupabase()
    with TestClient(_app(fake)) as client:
        response = client.post("/users/u1/session")
        assert response.status_code == 200
        entries = response.json()["entries"]
        assert entries[0]["image_url"] == (
            "https://proj.supabase.co/storage/v1/object/sign/journal-images/u1/yose/a.jpg?token=t1"
        )
        assert entries[1]["image_url"] is None
        assert fake.sign_calls == ["u1/yose/a.jpg"]

        listed = client.get("/users/u1/entries").json()["entries"]
        assert listed == entries


def test_entries_without_session_is_404() -> None:
    with TestClient(_app(FakeSupabase())) as client:
        assert client.get("/users/nobody/entries").status_code == 404
        assert client.post("/users/nobody/entries/E1/refresh-image").status_code == 404


def test_refresh_image_renews_url() -> None:
    fake = FakeSupabase()
    with TestClient(_app(fake)) as client:
        client.post("/users/u1/session")
        response = client.post("/users/u1/entries/E1/refresh-image")
        assert response.status_code == 200
        body = response.json()
        assert body["outcome"] == "refreshed"
        assert body["image_url"].endswith("token=t2")

        no_image = client.post("/users/u1/entries/E2/refresh-image").json()
        assert no_image["outcome"] == "skipped"
        assert no_image["image_url"] is None
        assert len(fake.sign_calls) == 2

        assert client.post("/users/u1/entries/missing/refresh-image").status_code == 404


def test_create_and_remove_entry() -> None:
    fake = FakeSupabase()
    with TestClient(_app(fake)) as client:
        client.post("/users/u1/session")
        response = client.post(
            "/users/u1/entries",
            json={
                "park_id": "glac",
                "visit_date": "2024-07-04",
                "image_base64": base64.b64encode(b"img").decode(),
                "image_filename": "lake.png",
                "image_content_type": "image/png",
            },
        )
        assert response.status_code == 201
        created = response.json()
        assert created["id"] == "E3"
        assert created["image_path"].startswith("u1/glac/")
        assert created["image_url"] is not None

        ids = [e["id"] for e in client.get("/users/u1/entries").json()["entries"]]
        assert ids == ["E3", "E1", "E2"]

        assert client.delete("/users/u1/entries/E3").json() == {"status": "removed"}
        assert client.delete("/users/u1/entries/E3").status_code == 404


def test_create_entry_rejects_bad_image() -> None:
    with TestClient(_app(FakeSupabase())) as client:
        client.post("/users/u1/session")
        response = client.post(
            "/users/u1/entries",
            json={"park_id": "glac", "visit_date": "2024-07-04", "image_base64": "@@@"},
        )
        assert response.status_code == 422


def test_close_session() -> None:
    with TestClient(_app(FakeSupabase())) as client:
        client.post("/users/u1/session")
        assert client.delete("/users/u1/session").json() == {"status": "closed"}
        assert client.delete("/users/u1/session").json() == {"status": "not_found"}
        assert client.get("/users/u1/entries").status_code == 404
