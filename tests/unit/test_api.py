"""Unit tests for the HTTP and WebSocket surface."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from bidfeed.auction.models import Comment
from bidfeed.config import get_server_config
from bidfeed.main import app
from bidfeed.sources import CommentSourceError
from bidfeed.sources.poller import CommentPoller

AUCTION_COMMENTS = {
    "comments": [
        {"id": "c1", "text": "50", "author_name": "Alice"},
        {"id": "c2", "text": "I bid 75", "author_name": "John"},
        {"id": "c3", "text": "$60", "author_name": "Sarah"},
        {"id": "c4", "text": "90 please", "author_name": "Mike"},
    ]
}


def _page_comment(post_id, message, name):
    page_id = post_id.split("_")[0]
    change = {
        "field": "feed",
        "value": {
            "item": "comment",
            "verb": "add",
            "post_id": post_id,
            "comment_id": f"{post_id}_9",
            "message": message,
            "from": {"id": "9", "name": name},
        },
    }
    return {"object": "page", "entry": [{"id": page_id, "time": 1700000000, "changes": [change]}]}


@pytest.fixture
def client(monkeypatch):
    """Test client with Graph access disabled and a known webhook token."""
    monkeypatch.delenv("FACEBOOK_ACCESS_TOKEN", raising=False)
    monkeypatch.delenv("BIDFEED_CONFIG_PATH", raising=False)
    monkeypatch.setenv("FACEBOOK_WEBHOOK_VERIFY_TOKEN", "hub-secret")
    get_server_config.cache_clear()
    with TestClient(app) as test_client:
        yield test_client
    get_server_config.cache_clear()


@pytest.fixture
def restricted_client(monkeypatch, tmp_path):
    """Test client that only accepts one browser origin."""
    config_path = tmp_path / "server.yaml"
    config_path.write_text("broadcast:\n  allowed_origins:\n    - https://shop.example\n")
    monkeypatch.setenv("BIDFEED_CONFIG_PATH", str(config_path))
    monkeypatch.delenv("FACEBOOK_ACCESS_TOKEN", raising=False)
    get_server_config.cache_clear()
    with TestClient(app) as test_client:
        yield test_client
    get_server_config.cache_clear()


class TestMetaEndpoints:
    """Service metadata."""

    def test_root(self, client):
        """Test the service summary."""
        body = client.get("/").json()
        assert body["service"] == "bidfeed"
        assert body["graph"]["configured"] is False
        assert body["broadcast"]["transports"] == ["duplex-socket", "push-stream"]

    def test_health(self, client):
        """Test the liveness check."""
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["timestamp"].endswith("Z")


class TestAuctionEndpoints:
    """Comment ingestion and leader queries."""

    def test_push_comments(self, client):
        """Test that pushed comments produce the expected leader."""
        response = client.post("/auctions/1_2/comments", json=AUCTION_COMMENTS)
        assert response.status_code == 200
        assert response.json() == {"topic": "1_2", "currentBid": 90.0, "leadingBidder": "Mike"}

        assert client.get("/auctions/1_2").json()["leadingBidder"] == "Mike"
        assert client.get("/auctions").json() == [{"topic": "1_2", "currentBid": 90.0, "leadingBidder": "Mike"}]

    def test_unknown_auction(self, client):
        """Test that unknown topics return 404."""
        assert client.get("/auctions/404_404").status_code == 404

    def test_invalid_comment_batch(self, client):
        """Test that comments without text are rejected."""
        response = client.post("/auctions/1_2/comments", json={"comments": [{"author_name": "Alice"}]})
        assert response.status_code == 422


class TestByUrl:
    """Resolving a post URL and polling it on demand."""

    def test_missing_url(self, client):
        """Test that the url parameter is required."""
        response = client.get("/auctions/by-url")
        assert response.status_code == 400
        assert "Missing url" in response.json()["detail"]

    def test_invalid_url(self, client):
        """Test that unrecognised URLs are rejected."""
        response = client.get("/auctions/by-url", params={"url": "https://example.com/nothing"})
        assert response.status_code == 400

    def test_graph_not_configured(self, client):
        """Test that polling needs Graph credentials."""
        response = client.get("/auctions/by-url", params={"url": "https://www.facebook.com/page/posts/333"})
        assert response.status_code == 503

    def test_polls_graph(self, client):
        """Test that the resolved post is polled and folded."""
        source = AsyncMock()
        source.poll.return_value = [Comment(text="$120", author_name="Dana", comment_id="c1")]
        app.state.graph_source = source

        response = client.get("/auctions/by-url", params={"url": "https://www.facebook.com/groups/111/posts/222/"})

        assert response.status_code == 200
        assert response.json() == {"topic": "111_222", "currentBid": 120.0, "leadingBidder": "Dana"}
        source.poll.assert_awaited_once_with("111_222")

    def test_graph_failure(self, client):
        """Test that upstream failures map to 502."""
        source = AsyncMock()
        source.poll.side_effect = CommentSourceError("graph error 190 (OAuthException): expired")
        app.state.graph_source = source
        response = client.get("/auctions/by-url", params={"url": "123_456"})
        assert response.status_code == 502

    def test_page_url_joins_webhook_topic(self, client):
        """Test that a page post URL reuses the page-scoped topic the webhook created."""
        client.post("/webhook/facebook", json=_page_comment("1_333", "$40", "Priya"))
        source = AsyncMock()
        source.poll.return_value = [Comment(text="$55", author_name="Dana", comment_id="c9")]
        app.state.graph_source = source

        response = client.get("/auctions/by-url", params={"url": "https://www.facebook.com/page/posts/333"})

        assert response.status_code == 200
        assert response.json() == {"topic": "1_333", "currentBid": 55.0, "leadingBidder": "Dana"}
        source.poll.assert_awaited_once_with("1_333")
        assert client.get("/auctions/1_333").json()["leadingBidder"] == "Dana"

    def test_bare_post_id_warns(self, client):
        """Test that an unscoped post id is served with a warning about webhook keys."""
        source = AsyncMock()
        source.poll.return_value = []
        app.state.graph_source = source

        body = client.get("/auctions/by-url", params={"url": "https://www.facebook.com/page/posts/333"}).json()

        assert body["topic"] == "333"
        assert "{pageId}_333" in body["warning"]


class TestTracking:
    """Registering posts for periodic polling."""

    def test_requires_graph(self, client):
        """Test that tracking without Graph access is unavailable."""
        assert client.post("/auctions/123_456/track").status_code == 503

    def test_track_and_untrack(self, client):
        """Test that tracking seeds the leader and registers the topic."""
        poller = CommentPoller(app.state.auction_runner, AsyncMock(), interval_seconds=60)
        app.state.poller = poller

        response = client.post("/auctions/123_456/track", json={"starting_price": 20})
        assert response.status_code == 201
        assert response.json() == {"topic": "123_456", "tracked": True, "currentBid": 20.0, "leadingBidder": ""}
        assert poller.tracked() == ["123_456"]

        response = client.delete("/auctions/123_456/track")
        assert response.json() == {"topic": "123_456", "tracked": False}
        assert poller.tracked() == []

    def test_track_validation(self, client):
        """Test malformed ids and negative starting prices."""
        app.state.poller = CommentPoller(app.state.auction_runner, AsyncMock(), interval_seconds=60)
        assert client.post("/auctions/abc/track").status_code == 400
        assert client.post("/auctions/123/track", json={"starting_price": -1}).status_code == 422

    def test_starting_price_on_running_auction(self, client):
        """Test that a running auction rejects a new starting price but can still be tracked."""
        app.state.poller = CommentPoller(app.state.auction_runner, AsyncMock(), interval_seconds=60)
        client.post("/auctions/123_456/comments", json=AUCTION_COMMENTS)

        response = client.post("/auctions/123_456/track", json={"starting_price": 200})
        assert response.status_code == 409
        assert app.state.poller.tracked() == []

        response = client.post("/auctions/123_456/track")
        assert response.status_code == 201
        assert response.json() == {"topic": "123_456", "tracked": True, "currentBid": 90.0, "leadingBidder": "Mike"}


class TestWebhook:
    """Facebook page feed webhook."""

    def test_verification(self, client):
        """Test the subscription handshake."""
        params = {"hub.mode": "subscribe", "hub.verify_token": "hub-secret", "hub.challenge": "1158201444"}
        response = client.get("/webhook/facebook", params=params)
        assert response.status_code == 200
        assert response.text == "1158201444"

        params["hub.verify_token"] = "wrong"
        assert client.get("/webhook/facebook", params=params).status_code == 403

    def test_delivery(self, client):
        """Test that delivered comments update the leader."""
        payload = {
            "object": "page",
            "entry": [
                {
                    "id": "1",
                    "time": 1700000000,
                    "changes": [
                        {
                            "field": "feed",
                            "value": {
                                "item": "comment",
                                "verb": "add",
                                "post_id": "1_2",
                                "comment_id": "1_2_3",
                                "message": "$65",
                                "from": {"id": "9", "name": "Priya"},
                            },
                        }
                    ],
                }
            ],
        }
        response = client.post("/webhook/facebook", json=payload)
        assert response.json() == {"status": "received", "batches": {"1_2": 1}}
        assert client.get("/auctions/1_2").json()["leadingBidder"] == "Priya"

    def test_invalid_delivery(self, client):
        """Test that malformed webhook bodies are rejected."""
        assert client.post("/webhook/facebook", json={"entry": []}).status_code == 422


class TestSubscriberChannels:
    """Live delivery over the duplex socket."""

    def test_socket_receives_snapshot_and_updates(self, client):
        """Test priming on connect followed by a live leader change."""
        client.post("/auctions/1_2/comments", json=AUCTION_COMMENTS)
        with client.websocket_connect("/ws?topic=1_2") as websocket:
            snapshot = websocket.receive_json()
            assert snapshot["type"] == "leader"
            assert (snapshot["currentBid"], snapshot["leadingBidder"]) == (90.0, "Mike")

            client.post(
                "/auctions/1_2/comments",
                json={"comments": [{"id": "c5", "text": "$100", "author_name": "Alice"}]},
            )
            update = websocket.receive_json()
            assert (update["topic"], update["currentBid"], update["leadingBidder"]) == ("1_2", 100.0, "Alice")

    def test_socket_topic_filter(self, client):
        """Test that a socket only hears its own topics."""
        client.post("/auctions/9_9/comments", json={"comments": [{"text": "5", "author_name": "Lee"}]})
        with client.websocket_connect("/ws?topic=9_9") as websocket:
            assert websocket.receive_json()["currentBid"] == 5.0
            client.post("/auctions/1_2/comments", json=AUCTION_COMMENTS)
            client.post("/auctions/9_9/comments", json={"comments": [{"text": "7", "author_name": "Kim"}]})
            event = websocket.receive_json()
            assert (event["topic"], event["leadingBidder"]) == ("9_9", "Kim")

    def test_rejected_origin(self, restricted_client):
        """Test that both channel kinds refuse unknown origins."""
        response = restricted_client.get("/stream", headers={"origin": "https://evil.example"})
        assert response.status_code == 403
        with pytest.raises(WebSocketDisconnect):
            with restricted_client.websocket_connect("/ws", headers={"origin": "https://evil.example"}):
                pass


class TestAdminEndpoints:
    """Operational endpoints."""

    def test_health_and_stats(self, client):
        """Test uptime and aggregate counters."""
        client.post("/auctions/1_2/comments", json=AUCTION_COMMENTS)
        health = client.get("/admin/health").json()
        assert health["status"] == "healthy"
        assert health["poller_running"] is False

        stats = client.get("/admin/stats").json()
        assert stats["total_auctions"] == 1
        assert stats["highest_bid"] == 90.0
        assert stats["subscribers_by_kind"] == {"duplex-socket": 0, "push-stream": 0}

    def test_config_hides_secrets(self, client):
        """Test that tokens are reported only as configured flags."""
        body = client.get("/admin/config").json()
        assert body["webhook_configured"] is True
        assert "hub-secret" not in str(body)

    def test_subscribers(self, client):
        """Test the live channel inventory."""
        client.post("/auctions/1_2/comments", json=AUCTION_COMMENTS)
        with client.websocket_connect("/ws?topic=1_2") as websocket:
            websocket.receive_json()
            [entry] = client.get("/admin/subscribers").json()
            assert entry["kind"] == "duplex-socket"
            assert entry["topics"] == ["1_2"]
