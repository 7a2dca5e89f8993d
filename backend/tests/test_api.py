"""HTTP and WebSocket endpoint tests."""
import asyncio

import pytest
from fastapi import WebSocketDisconnect

from campus_connect.chat.backend import set_backend
from campus_connect.identity.service import derive_identity_id
from campus_connect.realtime.router import changes_endpoint


def _login(client, name="Asha", credential="9999999999"):
    response = client.post("/auth/login", json={"name": name, "credential": credential})
    assert response.status_code == 200
    return response.json()


def _rooms(client):
    rooms = client.post("/rooms/defaults").json()
    return {r["type"]: r for r in rooms}


class TestHealth:
    def test_health(self, api_client):
        response = api_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestAuthEndpoints:
    """Tests for /auth and /profiles."""

    def test_login_creates_and_marks_online(self, api_client):
        body = _login(api_client)

        assert body["user"]["id"] == derive_identity_id("9999999999")
        assert body["user"]["name"] == "Asha"
        assert body["user"]["isAdmin"] is False
        assert body["profile"]["is_online"] is True

    def test_relogin_keeps_id_with_new_name(self, api_client):
        first = _login(api_client, "Asha")
        second = _login(api_client, "Asha Verma")

        assert second["user"]["id"] == first["user"]["id"]
        assert second["user"]["name"] == "Asha Verma"
        assert second["profile"]["full_name"] == "Asha"

    def test_bad_credential_is_400(self, api_client):
        response = api_client.post("/auth/login", json={"name": "Asha", "credential": "123"})

        assert response.status_code == 400
        assert response.json()["kind"] == "InputValidationError"

    def test_logout_marks_offline(self, api_client):
        user_id = _login(api_client)["user"]["id"]

        response = api_client.post(f"/auth/logout/{user_id}")

        assert response.json() == {"id": user_id, "is_online": False}

    def test_logout_unknown_is_404(self, api_client):
        assert api_client.post("/auth/logout/missing").status_code == 404

    def test_search_profiles(self, api_client):
        _login(api_client, "Asha Verma", "1111111111")
        _login(api_client, "Ravi Kumar", "2222222222")

        names = [p["full_name"] for p in api_client.get("/profiles/search", params={"q": "ravi"}).json()]

        assert names == ["Ravi Kumar"]
        assert len(api_client.get("/profiles").json()) == 2


class TestRoomEndpoints:
    """Tests for /rooms."""

    def test_defaults_are_seeded_once(self, api_client):
        api_client.post("/rooms/defaults")
        api_client.post("/rooms/defaults")

        assert len(api_client.get("/rooms").json()) == 2

    def test_dm_is_order_independent(self, api_client):
        a = api_client.post("/rooms/dm", json={"self_id": "u1", "other_id": "u2"}).json()
        b = api_client.post("/rooms/dm", json={"self_id": "u2", "other_id": "u1"}).json()

        assert a["id"] == b["id"]
        assert a["name"] == "u1:u2"

    def test_dm_with_self_is_400(self, api_client):
        response = api_client.post("/rooms/dm", json={"self_id": "u1", "other_id": "u1"})
        assert response.status_code == 400

    def test_delete_room(self, api_client):
        user_id = _login(api_client)["user"]["id"]
        group = _rooms(api_client)["group"]
        api_client.post(f"/rooms/{group['id']}/messages", json={"sender_id": user_id, "content": "hi"})

        response = api_client.delete(f"/rooms/{group['id']}")

        assert response.json()["messages_deleted"] == 1
        assert api_client.get(f"/rooms/{group['id']}/messages").status_code == 404


class TestMessageEndpoints:
    """Tests for message send, history and purge."""

    def test_send_to_anonymous_room(self, api_client):
        user_id = _login(api_client)["user"]["id"]
        anonymous = _rooms(api_client)["anonymous"]

        response = api_client.post(
            f"/rooms/{anonymous['id']}/messages", json={"sender_id": user_id, "content": "hello"}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["is_anonymous"] is True
        assert body["sender_id"] == user_id
        assert body["content"] == "hello"

    def test_history_in_order(self, api_client):
        user_id = _login(api_client)["user"]["id"]
        group = _rooms(api_client)["group"]
        for text in ("one", "two"):
            api_client.post(f"/rooms/{group['id']}/messages", json={"sender_id": user_id, "content": text})

        history = api_client.get(f"/rooms/{group['id']}/messages", params={"lookback_hours": 1}).json()

        assert [m["content"] for m in history] == ["one", "two"]
        assert history[0]["sender_name"] == "Asha"

    def test_empty_message_is_400(self, api_client):
        user_id = _login(api_client)["user"]["id"]
        group = _rooms(api_client)["group"]

        response = api_client.post(f"/rooms/{group['id']}/messages", json={"sender_id": user_id, "content": " "})

        assert response.status_code == 400

    def test_send_to_unknown_room_is_404(self, api_client):
        user_id = _login(api_client)["user"]["id"]
        response = api_client.post("/rooms/nope/messages", json={"sender_id": user_id, "content": "x"})
        assert response.status_code == 404

    def test_purge_requires_positive_age(self, api_client):
        assert api_client.post("/messages/purge", json={"older_than_days": 0}).status_code == 422

    def test_purge_keeps_recent(self, api_client):
        user_id = _login(api_client)["user"]["id"]
        group = _rooms(api_client)["group"]
        api_client.post(f"/rooms/{group['id']}/messages", json={"sender_id": user_id, "content": "new"})

        response = api_client.post("/messages/purge", json={"older_than_days": 7})

        assert response.json()["deleted"] == 0
        assert len(api_client.get(f"/rooms/{group['id']}/messages").json()) == 1


class TestPresenceAndNotices:
    def test_presence_put_and_heartbeat(self, api_client):
        user_id = _login(api_client)["user"]["id"]

        assert api_client.put(f"/presence/{user_id}", json={"online": False}).json()["is_online"] is False
        assert api_client.post(f"/presence/{user_id}/heartbeat").json()["is_online"] is True

    def test_notice_crud(self, api_client):
        created = api_client.post("/notices", json={"title": "Exams", "color": "red"})
        assert created.status_code == 201
        notice_id = created.json()["id"]

        updated = api_client.put(f"/notices/{notice_id}", json={"content": "Hall B"}).json()
        assert updated["title"] == "Exams"
        assert updated["content"] == "Hall B"

        assert [n["id"] for n in api_client.get("/notices").json()] == [notice_id]
        assert api_client.delete(f"/notices/{notice_id}").status_code == 200
        assert api_client.delete(f"/notices/{notice_id}").status_code == 404


class TestChangesWebSocket:
    """Tests for /ws/changes/{table}."""

    def test_room_filtered_message_stream(self, api_client):
        user_id = _login(api_client)["user"]["id"]
        rooms = _rooms(api_client)
        group, anonymous = rooms["group"], rooms["anonymous"]

        with api_client.websocket_connect(f"/ws/changes/messages?room_id={group['id']}") as ws:
            assert ws.receive_json() == {"type": "subscribed", "table": "messages", "room_id": group["id"]}

            api_client.post(f"/rooms/{anonymous['id']}/messages", json={"sender_id": user_id, "content": "elsewhere"})
            api_client.post(f"/rooms/{group['id']}/messages", json={"sender_id": user_id, "content": "here"})

            frame = ws.receive_json()
            assert frame["type"] == "change"
            assert frame["eventType"] == "insert"
            assert frame["new"]["content"] == "here"

    def test_notice_stream(self, api_client):
        with api_client.websocket_connect("/ws/changes/notices") as ws:
            ws.receive_json()
            api_client.post("/notices", json={"title": "Holiday"})

            frame = ws.receive_json()
            assert frame["table"] == "notices"
            assert frame["new"]["title"] == "Holiday"

    def test_unknown_table_is_refused(self, api_client):
        with pytest.raises(WebSocketDisconnect):
            with api_client.websocket_connect("/ws/changes/secrets") as ws:
                ws.receive_json()

    def test_subscription_released_on_disconnect(self, api_client, backend):
        with api_client.websocket_connect("/ws/changes/rooms") as ws:
            ws.receive_json()
            assert backend.feed.subscriber_count("rooms") == 1

        api_client.get("/health")
        assert backend.feed.subscriber_count("rooms") == 0


class _IdleSocket:
    """Accepts, records frames and never hears from the client."""

    def __init__(self):
        self.accepted = asyncio.Event()
        self.frames = []

    async def accept(self):
        self.accepted.set()

    async def send_json(self, data):
        self.frames.append(data)

    async def receive_text(self):
        await asyncio.Event().wait()

    async def close(self, code=1000):
        pass


class TestChangesEndpointCancellation:
    """The endpoint coroutine driven directly, cancelled by the server."""

    @pytest.mark.asyncio
    async def test_repeated_cancellation_still_releases(self, backend):
        set_backend(backend)
        try:
            socket = _IdleSocket()
            task = asyncio.create_task(changes_endpoint(socket, "rooms", room_id=None))
            await socket.accepted.wait()
            assert backend.feed.subscriber_count("rooms") == 1

            task.cancel()
            await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            assert backend.feed.subscriber_count("rooms") == 0
        finally:
            set_backend(None)
