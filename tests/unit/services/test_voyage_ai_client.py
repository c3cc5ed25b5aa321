"""Unit tests for VoyageAIClient retry handling, with the HTTP layer mocked."""

from typing import Any, Dict, List
from unittest.mock import patch

import httpx
import pytest

from codevec.config import VoyageAIConfig
from codevec.errors import EmbeddingError
from codevec.services.voyage_ai import VoyageAIClient

ENDPOINT = "https://api.voyageai.com/v1/embeddings"


def response(status: int, body: Any = None, headers: Dict[str, str] = None) -> httpx.Response:
    return httpx.Response(
        status,
        json=body if body is not None else {},
        headers=headers,
        request=httpx.Request("POST", ENDPOINT),
    )


def embeddings_body(texts: List[str], dim: int = 4) -> Dict[str, Any]:
    # Reverse order to check the client sorts by index
    data = [
        {"index": i, "embedding": [float(i)] * dim} for i in range(len(texts))
    ]
    return {"data": list(reversed(data))}


@pytest.fixture
def client(monkeypatch) -> VoyageAIClient:
    monkeypatch.setenv("VOYAGE_API_KEY", "test-key")
    config = VoyageAIConfig(max_retries=2, retry_delay=0.5, batch_size=2)
    return VoyageAIClient(config)


class TestVoyageAIClient:
    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("VOYAGE_API_KEY", raising=False)

        with pytest.raises(ValueError, match="VOYAGE_API_KEY"):
            VoyageAIClient(VoyageAIConfig())

    def test_results_are_ordered_by_index(self, client):
        with patch.object(
            client, "_post", return_value=response(200, embeddings_body(["a", "b"]))
        ):
            vectors = client.get_embeddings_batch(["a", "b"])

        assert vectors == [[0.0] * 4, [1.0] * 4]

    def test_batches_by_batch_size(self, client):
        sent = []

        def fake_post(payload):
            sent.append(payload["input"])
            return response(200, embeddings_body(payload["input"]))

        with patch.object(client, "_post", side_effect=fake_post):
            vectors = client.get_embeddings_batch(["a", "b", "c", "d", "e"])

        assert sent == [["a", "b"], ["c", "d"], ["e"]]
        assert len(vectors) == 5

    def test_empty_batch_makes_no_request(self, client):
        with patch.object(client, "_post") as post:
            assert client.get_embeddings_batch([]) == []
        post.assert_not_called()

    @patch("codevec.services.voyage_ai.time.sleep")
    def test_rate_limit_honours_retry_after(self, sleep, client):
        replies = [
            response(429, {"detail": "slow down"}, headers={"retry-after": "3"}),
            response(200, embeddings_body(["a"])),
        ]
        with patch.object(client, "_post", side_effect=replies):
            assert client.get_embedding("a") == [0.0] * 4

        sleep.assert_called_once_with(3.0)

    @patch("codevec.services.voyage_ai.time.sleep")
    def test_http_date_retry_after_uses_backoff(self, sleep, client):
        replies = [
            response(
                429,
                {"detail": "slow down"},
                headers={"retry-after": "Wed, 21 Oct 2026 07:28:00 GMT"},
            ),
            response(200, embeddings_body(["a"])),
        ]
        with patch.object(client, "_post", side_effect=replies):
            assert client.get_embedding("a") == [0.0] * 4

        sleep.assert_called_once_with(0.5)

    @patch("codevec.services.voyage_ai.time.sleep")
    def test_server_errors_back_off_then_fail(self, sleep, client):
        with patch.object(client, "_post", return_value=response(503)) as post:
            with pytest.raises(EmbeddingError, match="HTTP 503"):
                client.get_embedding("a")

        assert post.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    @patch("codevec.services.voyage_ai.time.sleep")
    def test_client_errors_are_not_retried(self, sleep, client):
        with patch.object(client, "_post", return_value=response(401)) as post:
            with pytest.raises(EmbeddingError, match="Invalid VoyageAI API key"):
                client.get_embedding("a")

        assert post.call_count == 1
        sleep.assert_not_called()

    @patch("codevec.services.voyage_ai.time.sleep")
    def test_transport_errors_are_retried(self, sleep, client):
        replies = [
            httpx.ConnectError("connection refused"),
            response(200, embeddings_body(["a"])),
        ]
        with patch.object(client, "_post", side_effect=replies):
            assert client.get_embedding("a") == [0.0] * 4

        assert sleep.call_count == 1

    def test_count_mismatch_raises(self, client):
        with patch.object(client, "_post", return_value=response(200, {"data": []})):
            with pytest.raises(EmbeddingError, match="0 embeddings for 1"):
                client.get_embedding("a")

    def test_item_without_embedding_raises(self, client):
        body = {"data": [{"index": 0, "vector": [0.0] * 4}]}
        with patch.object(client, "_post", return_value=response(200, body)):
            with pytest.raises(EmbeddingError, match="Malformed"):
                client.get_embedding("a")

    def test_post_sends_bearer_token(self, client):
        with patch("codevec.services.voyage_ai.httpx.Client") as client_cls:
            http = client_cls.return_value.__enter__.return_value
            http.post.return_value = response(200, embeddings_body(["a"]))

            client.get_embedding("a")

        headers = client_cls.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer test-key"
        http.post.assert_called_once_with(
            ENDPOINT, json={"input": ["a"], "model": "voyage-code-3"}
        )

    def test_model_info(self, client):
        assert client.get_dimensions() == 1024
        assert client.get_provider_name() == "voyage-ai"
        assert client.get_current_model() == "voyage-code-3"
