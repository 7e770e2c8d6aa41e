from __future__ import annotations

import json
import math

import httpx
import pytest

from docqa.config import Settings
from docqa.embeddings import (
    HashingEmbeddingClient,
    MistralEmbeddingClient,
    get_embedding_client,
    merge_usage,
    similarity,
    usage_counts,
)
from docqa.errors import DimensionMismatchError, EmbeddingServiceError
from docqa.ingest.models import Passage


def _embedding_handler(requests: list[dict]):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append(body)
        data = [
            {"object": "embedding", "index": index, "embedding": [float(len(text)), float(index), 1.0]}
            for index, text in enumerate(body["input"])
        ]
        # return items out of order; the client must restore input order
        data.reverse()
        return httpx.Response(
            200,
            json={
                "model": body["model"],
                "data": data,
                "usage": {"prompt_tokens": len(body["input"]), "total_tokens": len(body["input"])},
            },
        )

    return handler


@pytest.mark.anyio
async def test_embed_empty_input_makes_no_request() -> None:
    requests: list[dict] = []
    client = MistralEmbeddingClient("key", transport=httpx.MockTransport(_embedding_handler(requests)))

    assert await client.embed([]) == []
    assert requests == []
    await client.aclose()


@pytest.mark.anyio
async def test_embed_batches_and_preserves_order() -> None:
    requests: list[dict] = []
    client = MistralEmbeddingClient(
        "key",
        batch_size=2,
        batch_delay=0.0,
        transport=httpx.MockTransport(_embedding_handler(requests)),
    )

    texts = ["a", "bb", "ccc", "dddd", "eeeee"]
    vectors, usage = await client.embed_with_usage(texts)

    assert [len(batch["input"]) for batch in requests] == [2, 2, 1]
    assert [vector[0] for vector in vectors] == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert all(batch["model"] == "mistral-embed" for batch in requests)
    assert usage == {"prompt_tokens": 5, "total_tokens": 5}
    await client.aclose()


@pytest.mark.anyio
async def test_embed_sends_bearer_token() -> None:
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["path"] = request.url.path
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})

    client = MistralEmbeddingClient("secret", transport=httpx.MockTransport(handler))
    await client.embed_one("hello")

    assert seen == {"auth": "Bearer secret", "path": "/v1/embeddings"}
    await client.aclose()


@pytest.mark.anyio
async def test_non_success_response_raises_with_upstream_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "Invalid API key"}})

    client = MistralEmbeddingClient("bad", transport=httpx.MockTransport(handler))
    with pytest.raises(EmbeddingServiceError) as exc_info:
        await client.embed(["text"])

    assert exc_info.value.status_code == 401
    assert exc_info.value.upstream_message == "Invalid API key"
    assert "401" in str(exc_info.value)
    await client.aclose()


@pytest.mark.anyio
async def test_non_json_error_body_uses_raw_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream unavailable")

    client = MistralEmbeddingClient("key", transport=httpx.MockTransport(handler))
    with pytest.raises(EmbeddingServiceError) as exc_info:
        await client.embed(["text"])

    assert exc_info.value.upstream_message == "upstream unavailable"
    await client.aclose()


@pytest.mark.anyio
async def test_transport_error_has_no_status_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = MistralEmbeddingClient("key", transport=httpx.MockTransport(handler))
    with pytest.raises(EmbeddingServiceError) as exc_info:
        await client.embed(["text"])

    assert exc_info.value.status_code is None
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
    await client.aclose()


@pytest.mark.anyio
async def test_vector_count_mismatch_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})

    client = MistralEmbeddingClient("key", transport=httpx.MockTransport(handler))
    with pytest.raises(EmbeddingServiceError):
        await client.embed(["one", "two"])
    await client.aclose()


def test_batch_size_is_limited() -> None:
    with pytest.raises(ValueError):
        MistralEmbeddingClient("key", batch_size=101)


@pytest.mark.anyio
async def test_embed_passages_pairs_vectors_with_passages() -> None:
    passages = [
        Passage(
            id=f"doc-page1-chunk{index}",
            document_id="doc",
            document_name="doc.txt",
            page_number=1,
            chunk_index=index,
            text=text,
            char_start=0,
            char_end=len(text),
            word_count=len(text.split()),
        )
        for index, text in enumerate(["rain today", "sunny weather"])
    ]
    embedded = await HashingEmbeddingClient().embed_passages(passages)

    assert [item.id for item in embedded] == ["doc-page1-chunk0", "doc-page1-chunk1"]
    assert all(item.embedding_model == "hashing-fallback" for item in embedded)


@pytest.mark.anyio
async def test_hashing_embeddings_are_deterministic_and_lexical() -> None:
    client = HashingEmbeddingClient(dimension=128)
    first, again, related, unrelated = await client.embed(
        [
            "payment terms of the invoice",
            "payment terms of the invoice",
            "invoice payment is due",
            "weather forecast for tomorrow",
        ]
    )

    assert first == again
    assert len(first) == 128
    assert similarity(first, related) > similarity(first, unrelated)


def test_factory_uses_fallback_without_key() -> None:
    assert isinstance(get_embedding_client(Settings(api_key=None)), HashingEmbeddingClient)


def test_factory_uses_remote_client_with_key() -> None:
    client = get_embedding_client(Settings(api_key="key", embedding_batch_size=50))
    assert isinstance(client, MistralEmbeddingClient)
    assert client.model_name == "mistral-embed"


@pytest.mark.parametrize(
    ("vec_a", "vec_b"),
    [
        ([1.0, 2.0, 3.0], [3.0, -1.0, 0.5]),
        ([0.2, 0.4], [0.9, -0.1]),
        ([-1.0, -1.0, 2.0], [4.0, 4.0, -8.0]),
    ],
)
def test_similarity_is_symmetric_and_bounded(vec_a: list[float], vec_b: list[float]) -> None:
    forward = similarity(vec_a, vec_b)
    assert forward == pytest.approx(similarity(vec_b, vec_a))
    assert -1.0 <= forward <= 1.0


def test_similarity_of_vector_with_itself_is_one() -> None:
    assert similarity([0.3, 0.4, 12.0], [0.3, 0.4, 12.0]) == pytest.approx(1.0)


def test_similarity_with_zero_vector_is_zero() -> None:
    assert similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
    assert similarity([0.0, 0.0], [0.0, 0.0]) == 0.0


def test_similarity_of_opposite_vectors() -> None:
    assert math.isclose(similarity([1.0, 0.0], [-1.0, 0.0]), -1.0)


def test_similarity_dimension_mismatch() -> None:
    with pytest.raises(DimensionMismatchError) as exc_info:
        similarity([1.0, 2.0], [1.0, 2.0, 3.0])
    assert (exc_info.value.expected, exc_info.value.actual) == (2, 3)
    assert isinstance(exc_info.value, ValueError)


def test_usage_counts_keeps_numeric_counters_only() -> None:
    payload = {"usage": {"prompt_tokens": 7, "total_tokens": 9.0, "note": "x", "cached": True}}
    assert usage_counts(payload) == {"prompt_tokens": 7, "total_tokens": 9}
    assert usage_counts({"data": []}) == {}
    assert usage_counts(None) == {}


def test_merge_usage_sums_per_key() -> None:
    assert merge_usage({"a": 1}, {"a": 2, "b": 3}, {}) == {"a": 3, "b": 3}
    assert merge_usage() == {}


@pytest.mark.anyio
async def test_default_embed_with_usage_reports_no_counters() -> None:
    vectors, usage = await HashingEmbeddingClient(dimension=8).embed_with_usage(["payment terms"])
    assert len(vectors) == 1 and len(vectors[0]) == 8
    assert usage == {}
