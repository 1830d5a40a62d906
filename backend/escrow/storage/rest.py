"""Transaction and artifact stores backed by a PostgREST-style HTTP API."""
import logging
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import httpx
from pydantic_core import to_jsonable_python

from escrow.errors import NotFound, StoreConflict, StoreUnavailable, UpstreamFailure
from escrow.models.artifact import ArtifactUpload
from escrow.models.transaction import Transaction, TransactionStatus
from escrow.storage.base import ArtifactStore, TransactionStore

logger = logging.getLogger(__name__)

# Error codes meaning the table/function/bucket was never provisioned
MISSING_RELATION_CODES = {"42P01", "PGRST205", "PGRST202", "PGRST106"}
UNIQUE_VIOLATION_CODES = {"23505", "23P01"}


def _error_body(resp: httpx.Response) -> Dict[str, Any]:
    if resp.headers.get("content-type", "").startswith("application/json"):
        try:
            body = resp.json()
        except ValueError:
            return {"message": resp.text}
        if isinstance(body, dict):
            return body
    return {"message": resp.text}


def _is_missing(resp: httpx.Response, body: Dict[str, Any], code: str, message: str) -> bool:
    if resp.status_code == 404 or code in MISSING_RELATION_CODES:
        return True
    # Object storage reports a missing bucket as 400 with an embedded 404
    return str(body.get("statusCode")) == "404" or "bucket not found" in message.lower()


def raise_for_response(resp: httpx.Response, what: str) -> None:
    """Translate a failed response into the store error taxonomy."""
    if resp.is_success:
        return
    body = _error_body(resp)
    code = str(body.get("code") or body.get("error") or "")
    message = str(body.get("message") or body.get("msg") or resp.text)

    if _is_missing(resp, body, code, message):
        raise StoreUnavailable(f"{what} not provisioned: {code} {message}".strip())
    if resp.status_code == 409 or code in UNIQUE_VIOLATION_CODES:
        raise StoreConflict(f"{what} conflict: {message}")
    logger.error("Store API error %s on %s: %s", resp.status_code, what, message)
    raise UpstreamFailure(f"{what} failed with HTTP {resp.status_code}: {message}")


def _row_to_transaction(row: Dict[str, Any]) -> Transaction:
    data = dict(row)
    data["work_artifacts"] = data.get("work_artifacts") or []
    data["buyer_approved"] = bool(data.get("buyer_approved"))
    return Transaction.model_validate(data)


class RestTransactionStore(TransactionStore):
    """Transactions table exposed through a PostgREST endpoint (e.g. Supabase)."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        table: str = "transactions",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not base_url and client is None:
            raise ValueError("REST store requires a base URL")
        self.table = table
        headers = {"Prefer": "return=representation"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        self._headers = headers
        self._path = f"/rest/v1/{table}"

    async def _request(self, method: str, what: str, **kwargs) -> List[Dict[str, Any]]:
        try:
            resp = await self.client.request(method, self._path, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Store API unreachable during %s: %s", what, e)
            raise UpstreamFailure(f"{what} failed: {e}")
        raise_for_response(resp, what)
        if not resp.content:
            return []
        body = resp.json()
        return body if isinstance(body, list) else [body]

    async def create(self, transaction: Transaction) -> Transaction:
        rows = await self._request(
            "POST",
            "create transaction",
            json=transaction.model_dump(mode="json"),
        )
        return _row_to_transaction(rows[0]) if rows else transaction

    async def update(
        self,
        record_id: str,
        changes: Dict[str, Any],
        expected_status: Optional[TransactionStatus] = None,
    ) -> Transaction:
        params = {"id": f"eq.{record_id}"}
        if expected_status is not None:
            params["status"] = f"eq.{expected_status.value}"
        rows = await self._request(
            "PATCH",
            "update transaction",
            params=params,
            json=to_jsonable_python(changes),
        )
        if rows:
            return _row_to_transaction(rows[0])

        current = await self.get(record_id)
        if current is None:
            raise NotFound(f"Transaction {record_id} not found")
        raise StoreConflict(
            f"Transaction {current.transaction_id} is {current.status.value}, "
            f"expected {expected_status.value if expected_status else 'any'}"
        )

    async def _select_one(self, what: str, params: Dict[str, str]) -> Optional[Transaction]:
        rows = await self._request("GET", what, params={"select": "*", "limit": "1", **params})
        return _row_to_transaction(rows[0]) if rows else None

    async def get(self, record_id: str) -> Optional[Transaction]:
        return await self._select_one("get transaction", {"id": f"eq.{record_id}"})

    async def find(
        self,
        user_id: str,
        counterpart_id: str,
        post_id: Optional[str] = None,
        statuses: Optional[Iterable[TransactionStatus]] = None,
    ) -> Optional[Transaction]:
        params = {
            "or": (
                f"(and(buyer_id.eq.{user_id},seller_id.eq.{counterpart_id}),"
                f"and(buyer_id.eq.{counterpart_id},seller_id.eq.{user_id}))"
            ),
            "order": "created_at.desc",
        }
        if post_id:
            params["post_id"] = f"eq.{post_id}"
        if statuses is not None:
            wanted = sorted(s.value for s in statuses)
            if not wanted:
                return None
            params["status"] = f"in.({','.join(wanted)})"
        return await self._select_one("find transaction", params)

    async def find_by_transaction_id(self, transaction_id: str) -> Optional[Transaction]:
        return await self._select_one("find transaction", {"transaction_id": f"eq.{transaction_id}"})

    async def close(self) -> None:
        await self.client.aclose()


class RestArtifactStore(ArtifactStore):
    """Object storage API (bucket/path) returning public URLs."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        bucket: str = "transaction-files",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not base_url and client is None:
            raise ValueError("REST artifact store requires a base URL")
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        headers = {}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._headers = headers
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(path)}"

    async def upload(self, path: str, artifact: ArtifactUpload) -> str:
        try:
            resp = await self.client.post(
                f"/storage/v1/object/{self.bucket}/{quote(path)}",
                content=artifact.content,
                headers={**self._headers, "Content-Type": artifact.content_type},
            )
        except httpx.HTTPError as e:
            logger.error("Storage API unreachable uploading %s: %s", path, e)
            raise UpstreamFailure(f"Upload of {path} failed: {e}")
        raise_for_response(resp, f"bucket {self.bucket}")
        return self.public_url(path)

    async def close(self) -> None:
        await self.client.aclose()
