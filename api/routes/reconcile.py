"""Reconciliation endpoints.

Accepts a bank deposit CSV upload and returns per-row match proposals
against the acting account's unpaid invoices. Nothing is written back.
"""

from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, File, Header, Request, UploadFile
from fastapi.responses import JSONResponse

from core.config import Settings, get_settings
from core.observability.logging import get_logger
from core.observability.metrics import get_metrics
from remittance.collaborators import ColumnInference, Transliterator, build_collaborators
from remittance.db import InvoiceStore, SqliteInvoiceStore
from remittance.errors import ReconcileError, RejectedInputError, UnauthenticatedError
from remittance.pipeline import reconcile_upload


logger = get_logger(__name__)

router = APIRouter()

GENERIC_FAILURE_MESSAGE = "Reconciliation failed due to an internal error"


# =============================================================================
# Dependencies
# =============================================================================

def get_invoice_store(settings: Settings = Depends(get_settings)) -> InvoiceStore:
    """Invoice snapshot source for the current request."""
    return SqliteInvoiceStore(settings.db_path)


def get_collaborators(request: Request) -> Tuple[Optional[ColumnInference], Optional[Transliterator]]:
    """Text collaborators over the process-wide client opened at startup.

    (None, None) when no API key is configured.
    """
    return build_collaborators(getattr(request.app.state, "text_client", None))


def error_response(error: ReconcileError, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error.message, "code": error.code},
    )


# =============================================================================
# Endpoints
# =============================================================================

@router.post("")
async def reconcile(
    file: Optional[UploadFile] = File(None),
    x_account_id: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    invoice_store: InvoiceStore = Depends(get_invoice_store),
    collaborators: Tuple[Optional[ColumnInference], Optional[Transliterator]] = Depends(get_collaborators),
):
    """Reconcile an uploaded deposit CSV.

    Returns one result per kept row in file order. Results are proposals;
    confirming a payment is a separate step.
    """
    if not x_account_id or not x_account_id.strip():
        error = UnauthenticatedError("Authentication required")
        get_metrics().record_run_rejected(error.code)
        return error_response(error, 401)

    content = await file.read() if file is not None else None
    column_inference, transliterator = collaborators

    try:
        report = await reconcile_upload(
            content,
            account_id=x_account_id.strip(),
            invoice_store=invoice_store,
            filename=file.filename if file is not None else None,
            content_type=file.content_type if file is not None else None,
            column_inference=column_inference,
            transliterator=transliterator,
            options=settings.pipeline_options(),
        )
    except RejectedInputError as e:
        return error_response(e, 400)
    except Exception:
        logger.exception("Reconciliation failed")
        return error_response(ReconcileError(GENERIC_FAILURE_MESSAGE), 500)

    meta: Dict[str, Any] = {
        "run_id": report.run_id,
        "unpaid_invoice_count": report.unpaid_invoice_count,
        "total_rows": report.total_rows,
        "dropped_rows": report.dropped_rows,
        "column_map": report.column_map.model_dump(),
        "summary": report.summary,
    }
    return {
        "success": True,
        "data": [result.model_dump(mode="json") for result in report.results],
        "meta": meta,
    }
