"""Tests for deck template API endpoints."""

import pytest
from httpx import AsyncClient

from manastash.config import settings
from manastash.services import deck_generation


async def create_template(client: AsyncClient, name: str = "Artifacts", **fields) -> dict:
    body = {"name": name, "cards": [{"name": "Sol Ring", "quantity": 1, "set_code": "C21"}]}
    body.update(fields)
    response = await client.post("/api/decks", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestTemplateCrud:
    async def test_create_and_get(self, client: AsyncClient) -> None:
        created = await create_template(client, commander_name="Urza, Lord High Artificer")

        response = await client.get(f"/api/decks/{created['id']}")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Artifacts"
        assert data["format"] == "commander"
        assert data["commander_name"] == "Urza, Lord High Artificer"
        assert data["card_count"] == 1
        assert data["cards"] == [
            {"name": "Sol Ring", "quantity": 1, "set_code": "C21", "collector_number": None}
        ]

    async def test_empty_deck_is_rejected(self, client: AsyncClient) -> None:
        response = await client.post("/api/decks", json={"name": "Empty", "cards": []})

        assert response.status_code == 422
        assert response.json()["error"]["kind"] == "validation_failed"

    async def test_list(self, client: AsyncClient) -> None:
        await create_template(client, "Artifacts")
        await create_template(client, "Elves")

        response = await client.get("/api/decks")

        assert sorted(t["name"] for t in response.json()) == ["Artifacts", "Elves"]

    async def test_update(self, client: AsyncClient) -> None:
        created = await create_template(client)

        response = await client.put(
            f"/api/decks/{created['id']}",
            json={"description": "Mana rocks", "cards": [{"name": "Arcane Signet"}]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Artifacts"
        assert data["description"] == "Mana rocks"
        assert [c["name"] for c in data["cards"]] == ["Arcane Signet"]

    async def test_delete(self, client: AsyncClient) -> None:
        created = await create_template(client)

        response = await client.delete(f"/api/decks/{created['id']}")

        assert response.status_code == 204
        assert (await client.get(f"/api/decks/{created['id']}")).status_code == 404

    async def test_unknown_template(self, client: AsyncClient) -> None:
        response = await client.get("/api/decks/999")

        assert response.status_code == 404


class TestImportExport:
    async def test_import(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/decks/import",
            json={"name": "Elves", "text": "1 Sol Ring (C21)\n// Creatures\n4 Llanowar Elves"},
        )

        assert response.status_code == 201
        data = response.json()
        assert [(c["name"], c["quantity"]) for c in data["cards"]] == [
            ("Sol Ring", 1),
            ("Llanowar Elves", 4),
        ]
        assert data["card_count"] == 5

    async def test_export(self, client: AsyncClient) -> None:
        created = await create_template(
            client,
            cards=[
                {"name": "Sol Ring", "quantity": 1, "set_code": "C21"},
                {"name": "Forest", "quantity": 36},
            ],
        )

        response = await client.get(f"/api/decks/{created['id']}/export")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "1 Sol Ring (C21)\n36 Forest"


class TestBuild:
    async def test_build_with_custom_name(self, client: AsyncClient) -> None:
        created = await create_template(client)

        response = await client.post(f"/api/decks/{created['id']}/build", json={"name": "Copy"})

        assert response.status_code == 200
        data = response.json()
        assert data["deck"]["name"] == "Copy"
        assert data["deck"]["templateId"] == created["id"]
        assert data["reservedCount"] == 0
        assert data["missingCount"] == 1

    async def test_build_unknown_template(self, client: AsyncClient) -> None:
        response = await client.post("/api/decks/999/build")

        assert response.status_code == 404


class TestGenerate:
    async def test_generate_stores_template(
        self, client: AsyncClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def fake_request(prompt: str, format: str, commander: str | None = None) -> str:
            return "Here you go:\n1 Sol Ring\n35 Forest\n"

        monkeypatch.setattr(deck_generation, "request_decklist", fake_request)

        response = await client.post("/api/decks/generate", json={"prompt": "Mono green ramp"})

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Mono green ramp"
        assert data["card_count"] == 36
        assert data["description"] == "Generated from: Mono green ramp"

    async def test_generate_not_configured(
        self, client: AsyncClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "anthropic_api_key", "")

        response = await client.post("/api/decks/generate", json={"prompt": "Mono green ramp"})

        assert response.status_code == 503
        assert response.json()["error"]["kind"] == "service_unavailable"
        assert (await client.get("/api/decks")).json() == []
