"""FastAPI main application."""
import logging
from contextlib import asynccontextmanager
from typing import List, Optional
from fastapi import Depends, FastAPI, File, Form, Header, Query, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from escrow import __version__
from escrow.config import settings
from escrow.errors import (
    AlreadyActive,
    EscrowError,
    InvalidInput,
    InvalidTransition,
    NotFound,
    StoreConflict,
    StoreUnavailable,
    Unauthorized,
    UpstreamFailure,
)
from escrow.models.api import ApproveRequest, DisputeRequest, ErrorResponse, InitiateRequest, TransactionView
from escrow.models.artifact import ArtifactUpload
from escrow.models.role import PostContext, RoleAssignment
from escrow.services.escrow import EscrowService
from escrow.storage.factory import get_artifact_store, get_transaction_store

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)

_escrow_service: Optional[EscrowService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the stores on shutdown."""
    yield
    if _escrow_service is not None:
        await _escrow_service.store.close()
        await _escrow_service.artifacts.close()


app = FastAPI(title=settings.app_name, debug=settings.debug, version=__version__, lifespan=lifespan)

# Most specific first
STATUS_CODES = (
    (InvalidInput, 422),
    (Unauthorized, 403),
    (NotFound, 404),
    (InvalidTransition, 409),
    (AlreadyActive, 409),
    (StoreConflict, 409),
    (StoreUnavailable, 503),
    (UpstreamFailure, 502),
)


def get_escrow_service() -> EscrowService:
    """Get the escrow service instance."""
    global _escrow_service
    if _escrow_service is None:
        _escrow_service = EscrowService(get_transaction_store(), get_artifact_store())
    return _escrow_service


def current_user(x_user_id: str = Header(..., description="Authenticated user identifier")) -> str:
    user_id = x_user_id.strip()
    if not user_id:
        raise Unauthorized("Missing user identity")
    return user_id


async def to_artifact(upload: UploadFile) -> ArtifactUpload:
    return ArtifactUpload(
        filename=upload.filename or "upload",
        content_type=upload.content_type or "application/octet-stream",
        content=await upload.read(),
    )


@app.exception_handler(EscrowError)
async def escrow_error_handler(request: Request, exc: EscrowError):
    status_code = next((code for cls, code in STATUS_CODES if isinstance(exc, cls)), 400)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(detail=exc.message, code=exc.code.value).model_dump(),
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Student Services Escrow API", "version": __version__}


@app.post("/transactions", response_model=TransactionView, status_code=201)
async def initiate_transaction(
    request: InitiateRequest,
    user_id: str = Depends(current_user),
    service: EscrowService = Depends(get_escrow_service),
):
    """
    Open an escrow transaction with a helper.

    The caller must be the buyer for the pair: the post author when the pair
    has no transaction history. Repeating the same request while payment is
    pending returns the existing transaction.
    """
    transaction = await service.initiate_transaction(
        user_id,
        request.counterpart_id,
        request.payee_identifier,
        request.amount,
        post_context=request.post_context,
        work_description=request.work_description,
    )
    return service.view(transaction, user_id)


@app.get("/transactions/{record_id}", response_model=TransactionView)
async def get_transaction(
    record_id: str,
    user_id: str = Depends(current_user),
    service: EscrowService = Depends(get_escrow_service),
):
    """Get a transaction as seen by the caller (role, step and next actions)."""
    transaction = await service.get_transaction(user_id, record_id)
    return service.view(transaction, user_id)


@app.get("/transactions/{record_id}/payment-code")
async def get_payment_code(
    record_id: str,
    user_id: str = Depends(current_user),
    service: EscrowService = Depends(get_escrow_service),
):
    """Get the payment request as a scannable PNG QR code."""
    png = await service.payment_code(user_id, record_id)
    return Response(content=png, media_type="image/png")


@app.post("/transactions/{record_id}/payment-proof", response_model=TransactionView)
async def submit_payment_proof(
    record_id: str,
    file: UploadFile = File(...),
    user_id: str = Depends(current_user),
    service: EscrowService = Depends(get_escrow_service),
):
    """Upload proof of payment (screenshot or receipt)."""
    transaction = await service.submit_payment_proof(user_id, record_id, await to_artifact(file))
    return service.view(transaction, user_id)


@app.post("/transactions/{record_id}/work", response_model=TransactionView)
async def submit_work(
    record_id: str,
    files: List[UploadFile] = File(...),
    preview_url: Optional[str] = Form(None),
    user_id: str = Depends(current_user),
    service: EscrowService = Depends(get_escrow_service),
):
    """Upload the completed work files, with an optional preview link."""
    artifacts = [await to_artifact(f) for f in files]
    transaction = await service.submit_work(user_id, record_id, artifacts, preview=preview_url)
    return service.view(transaction, user_id)


@app.post("/transactions/{record_id}/approve", response_model=TransactionView)
async def approve_work(
    record_id: str,
    request: Optional[ApproveRequest] = None,
    user_id: str = Depends(current_user),
    service: EscrowService = Depends(get_escrow_service),
):
    """Approve the submitted work and release payment to the helper."""
    feedback = request.feedback if request else None
    transaction = await service.approve_work(user_id, record_id, feedback=feedback)
    return service.view(transaction, user_id)


@app.post("/transactions/{record_id}/dispute", response_model=TransactionView)
async def file_dispute(
    record_id: str,
    request: DisputeRequest,
    user_id: str = Depends(current_user),
    service: EscrowService = Depends(get_escrow_service),
):
    """Reject the submitted work. A reason is required."""
    transaction = await service.file_dispute(user_id, record_id, request.reason)
    return service.view(transaction, user_id)


@app.post("/transactions/{record_id}/cancel", response_model=TransactionView)
async def cancel_transaction(
    record_id: str,
    user_id: str = Depends(current_user),
    service: EscrowService = Depends(get_escrow_service),
):
    """Cancel the transaction before the work is approved."""
    transaction = await service.cancel_transaction(user_id, record_id)
    return service.view(transaction, user_id)


def post_context(
    post_id: Optional[str] = Query(None, description="Originating post"),
    post_author_id: Optional[str] = Query(None, description="Author of the post (the buyer)"),
    conversation_initiator_id: Optional[str] = Query(None, description="User who opened the conversation"),
) -> Optional[PostContext]:
    if not (post_id or post_author_id or conversation_initiator_id):
        return None
    return PostContext(
        post_id=post_id,
        post_author_id=post_author_id,
        conversation_initiator_id=conversation_initiator_id,
    )


@app.get("/roles", response_model=RoleAssignment)
async def resolve_role(
    counterpart_id: str = Query(..., description="The other user in the conversation"),
    context: Optional[PostContext] = Depends(post_context),
    user_id: str = Depends(current_user),
    service: EscrowService = Depends(get_escrow_service),
):
    """Resolve whether the caller is the buyer or the seller towards a counterpart."""
    return await service.resolve_role(user_id, counterpart_id, context)


@app.get("/conversations/{counterpart_id}/transaction", response_model=TransactionView)
async def get_pair_transaction(
    counterpart_id: str,
    context: Optional[PostContext] = Depends(post_context),
    user_id: str = Depends(current_user),
    service: EscrowService = Depends(get_escrow_service),
):
    """Current transaction between the caller and a counterpart, if any."""
    return await service.pair_view(user_id, counterpart_id, context)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
