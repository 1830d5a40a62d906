"""Tests for the PostgREST-backed stores."""
import json
import httpx
import pytest
from escrow.errors import StoreConflict, StoreUnavailable, UpstreamFailure
from escrow.models.transaction import OPEN_STATUSES, TransactionStatus
from escrow.storage.fallback import FallbackArtifactStore, FallbackTransactionStore
from escrow.storage.rest import RestArtifactStore, RestTransactionStore
from conftest import BUYER, SELLER, make_transaction

BASE_URL = "http://store.test"


def _store(handler) -> RestTransactionStore:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return RestTransactionStore(BASE_URL, api_key="anon-key", client=client)


def _row(**overrides):
    return make_transaction(**overrides).model_dump(mode="json")


@pytest.mark.asyncio
async def test_create_posts_row():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json=[json.loads(request.content)])

    store = _store(handler)
    created = await store.create(make_transaction())

    assert created.transaction_id == "TXN20240115-000001"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/rest/v1/transactions"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Prefer"] == "return=representation"
    assert json.loads(request.content)["status"] == "payment_pending"


@pytest.mark.asyncio
async def test_missing_table_is_unavailable():
    def handler(request):
        return httpx.Response(
            404,
            json={"code": "42P01", "message": 'relation "public.transactions" does not exist'},
        )

    with pytest.raises(StoreUnavailable):
        await _store(handler).create(make_transaction())


@pytest.mark.asyncio
async def test_missing_table_falls_back_to_local():
    def handler(request):
        return httpx.Response(404, json={"code": "PGRST205", "message": "Could not find the table"})

    store = FallbackTransactionStore(_store(handler))
    created = await store.create(make_transaction())
    assert created.is_local


@pytest.mark.asyncio
async def test_unique_violation_is_conflict():
    def handler(request):
        return httpx.Response(409, json={"code": "23505", "message": "duplicate key value"})

    with pytest.raises(StoreConflict):
        await _store(handler).create(make_transaction())


@pytest.mark.asyncio
async def test_server_error_is_upstream_failure():
    def handler(request):
        return httpx.Response(500, text="internal error")

    store = FallbackTransactionStore(_store(handler))
    with pytest.raises(UpstreamFailure):
        await store.create(make_transaction())


@pytest.mark.asyncio
async def test_network_error_is_upstream_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamFailure):
        await _store(handler).get("rec-1")


@pytest.mark.asyncio
async def test_update_uses_compare_and_set():
    seen = []

    def handler(request):
        seen.append(request)
        body = json.loads(request.content)
        return httpx.Response(200, json=[_row(status=body["status"], payment_proof=body["payment_proof"])])

    updated = await _store(handler).update(
        "rec-1",
        {"status": TransactionStatus.PAID, "payment_proof": "https://cdn/proof.png"},
        expected_status=TransactionStatus.PAYMENT_PENDING,
    )

    assert updated.status is TransactionStatus.PAID
    params = seen[0].url.params
    assert seen[0].method == "PATCH"
    assert params["id"] == "eq.rec-1"
    assert params["status"] == "eq.payment_pending"


@pytest.mark.asyncio
async def test_update_conflict_when_status_moved():
    def handler(request):
        if request.method == "PATCH":
            return httpx.Response(200, json=[])
        return httpx.Response(200, json=[_row(status="cancelled")])

    with pytest.raises(StoreConflict):
        await _store(handler).update(
            "rec-1",
            {"status": TransactionStatus.PAID},
            expected_status=TransactionStatus.PAYMENT_PENDING,
        )


@pytest.mark.asyncio
async def test_find_queries_both_orientations():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[_row()])

    found = await _store(handler).find(BUYER, SELLER, statuses=OPEN_STATUSES)

    assert found.buyer_id == BUYER
    params = seen[0].url.params
    assert f"buyer_id.eq.{BUYER}" in params["or"]
    assert f"buyer_id.eq.{SELLER}" in params["or"]
    assert params["order"] == "created_at.desc"
    assert params["status"].startswith("in.(")
    assert "payment_pending" in params["status"]
    assert "cancelled" not in params["status"]


@pytest.mark.asyncio
async def test_get_returns_none_for_empty_result():
    def handler(request):
        return httpx.Response(200, json=[])

    assert await _store(handler).get("rec-1") is None


@pytest.mark.asyncio
async def test_artifact_upload_returns_public_url(proof):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"Key": "transaction-files/payment-proofs/rec-1.png"})

    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    artifacts = RestArtifactStore(BASE_URL, api_key="anon-key", client=client)

    reference = await artifacts.upload("payment-proofs/rec-1.png", proof)

    assert reference == f"{BASE_URL}/storage/v1/object/public/transaction-files/payment-proofs/rec-1.png"
    assert seen[0].url.path == "/storage/v1/object/transaction-files/payment-proofs/rec-1.png"
    assert seen[0].headers["content-type"] == "image/png"
    assert seen[0].content == proof.content


@pytest.mark.asyncio
async def test_missing_bucket_falls_back_to_data_url(proof):
    def handler(request):
        return httpx.Response(
            400,
            json={"statusCode": "404", "error": "Bucket not found", "message": "Bucket not found"},
        )

    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    artifacts = FallbackArtifactStore(RestArtifactStore(BASE_URL, client=client))

    reference = await artifacts.upload("payment-proofs/rec-1.png", proof)
    assert reference.startswith("data:image/png;base64,")
