"""Tests for CometChatClient against an httpx mock transport."""

import httpx
import orjson
import pytest

from hangbridge.chat import CometChatClient, extract_sender, extract_text, to_chat_message
from hangbridge.errors import ChatServiceError

BASE = "https://chat.test"


def record(msg_id, sent_at, sender="u1", text="/ping"):
    return {
        "id": msg_id,
        "sentAt": sent_at,
        "sender": sender,
        "data": {"text": text},
    }


def make_client(handler, **kwargs):
    requests = []

    def recording(request):
        requests.append(request)
        return handler(request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    client = CometChatClient(
        "app", "auth", "bot", group_id="room", base_url=BASE, client=http, **kwargs
    )
    return client, requests


def json_response(body, status=200):
    return httpx.Response(status, content=orjson.dumps(body))


class TestRecords:
    def test_sender_variants(self):
        assert extract_sender({"sender": {"uid": "a"}}) == "a"
        assert extract_sender({"sender": "b"}) == "b"
        assert extract_sender({"data": {"entities": {"sender": {"entity": {"uid": "c"}}}}}) == "c"
        assert extract_sender({"data": {"metadata": {"chatMessage": {"userUuid": "d"}}}}) == "d"
        assert extract_sender({}) == ""

    def test_text_fallback(self):
        assert extract_text({"data": {"text": " hi "}}) == "hi"
        assert extract_text({"data": {"metadata": {"chatMessage": {"message": "yo"}}}}) == "yo"
        assert extract_text({}) == ""

    def test_record_without_id(self):
        with pytest.raises(ChatServiceError):
            to_chat_message({"sentAt": 1})


class TestFetch:
    @pytest.mark.asyncio
    async def test_group_messages_sorted(self):
        client, requests = make_client(
            lambda r: json_response({"data": [record(2, 20), record(1, 10)]})
        )
        messages = await client.fetch_group_messages(from_timestamp=11, last_id="1")
        assert [m.id for m in messages] == ["1", "2"]
        request = requests[0]
        assert request.url.path == "/v3.0/groups/room/messages"
        assert request.url.params["withMessageId"] == "1"
        assert request.url.params["updatedAt"] == "11"
        assert request.headers["appid"] == "app"
        assert request.headers["onBehalfOf"] == "bot"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_filter_commands(self):
        client, _ = make_client(
            lambda r: json_response({"data": [record(1, 10, text="hi"), record(2, 20)]})
        )
        messages = await client.fetch_group_messages(filter_commands=True)
        assert [m.id for m in messages] == ["2"]

    @pytest.mark.asyncio
    async def test_http_error(self):
        client, _ = make_client(lambda r: httpx.Response(503, text="unavailable"))
        with pytest.raises(ChatServiceError) as info:
            await client.fetch_group_messages()
        assert info.value.status_code == 503
        assert client.get_stats() == {"requests": 1, "failures": 1}

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def fail(request):
            raise httpx.ConnectError("down", request=request)

        client, _ = make_client(fail)
        with pytest.raises(ChatServiceError, match="down"):
            await client.fetch_group_messages()

    @pytest.mark.asyncio
    async def test_private_messages(self):
        client, requests = make_client(
            lambda r: json_response({"data": [record(5, 50, sender={"uid": "u1"})]})
        )
        messages = await client.fetch_private_messages("u1", last_timestamp=40)
        assert messages[0].is_private_message
        assert messages[0].recipient_id == "u1"
        assert messages[0].sender_id == "u1"
        params = requests[0].url.params
        assert params["sender"] == "u1"
        assert params["receiverType"] == "user"
        assert params["fromTimestamp"] == "41"

    @pytest.mark.asyncio
    async def test_private_without_return_data(self):
        client, _ = make_client(lambda r: json_response({"data": [record(5, 50)]}))
        assert await client.fetch_private_messages("u1", return_data=False) == []

    @pytest.mark.asyncio
    async def test_latest_message_looks_back(self):
        calls = []

        def handler(request):
            calls.append(int(request.url.params["updatedAt"]))
            if len(calls) < 3:
                return json_response({"data": []})
            return json_response({"data": [record(8, 1), record(9, 2)]})

        client, _ = make_client(handler, clock=lambda: 10_000)
        assert await client.latest_group_message_id() == "9"
        assert calls == [10_000, 9_940, 9_880]

    @pytest.mark.asyncio
    async def test_latest_message_none(self):
        client, requests = make_client(lambda r: json_response({"data": []}))
        assert await client.latest_group_message_id() is None
        assert len(requests) == 11


class TestJoinGroup:
    @pytest.mark.asyncio
    async def test_join(self):
        client, requests = make_client(lambda r: json_response({"data": {}}))
        await client.join_group()
        assert requests[0].url.path == "/v3/groups/room/members"
        assert orjson.loads(requests[0].content) == {"participants": ["bot"]}

    @pytest.mark.asyncio
    async def test_already_joined_ok(self):
        client, _ = make_client(
            lambda r: json_response({"error": {"code": "ERR_ALREADY_JOINED"}}, status=400)
        )
        await client.join_group("room")

    @pytest.mark.asyncio
    async def test_other_error_raised(self):
        client, _ = make_client(lambda r: httpx.Response(401, text="unauthorized"))
        with pytest.raises(ChatServiceError):
            await client.join_group()


class TestSend:
    @pytest.mark.asyncio
    async def test_private_reply(self):
        client, requests = make_client(lambda r: json_response({"data": {}}))
        ok = await client.send_response("pong", is_private_message=True, sender="u1")
        assert ok
        body = orjson.loads(requests[0].content)
        assert body["receiver"] == "u1"
        assert body["receiverType"] == "user"
        assert body["data"]["text"] == "pong"
        assert body["data"]["metadata"]["chatMessage"]["userUuid"] == "bot"

    @pytest.mark.asyncio
    async def test_public_channel_forces_group(self):
        client, requests = make_client(lambda r: json_response({"data": {}}))
        await client.send_response(
            "hi", response_channel="public", is_private_message=True, sender="u1"
        )
        body = orjson.loads(requests[0].content)
        assert body["receiver"] == "room"
        assert body["receiverType"] == "group"

    @pytest.mark.asyncio
    async def test_profile_merged(self):
        client, requests = make_client(
            lambda r: json_response({"data": {}}), profile={"userName": "Bridge"}
        )
        await client.send_group_message("hi")
        chat_message = orjson.loads(requests[0].content)["data"]["metadata"]["chatMessage"]
        assert chat_message["userName"] == "Bridge"

    @pytest.mark.asyncio
    async def test_send_failure_returns_false(self):
        client, _ = make_client(lambda r: httpx.Response(500, text="oops"))
        assert await client.send_group_message("hi") is False

    @pytest.mark.asyncio
    async def test_empty_text_not_sent(self):
        client, requests = make_client(lambda r: json_response({}))
        assert await client.send_group_message("") is False
        assert requests == []
