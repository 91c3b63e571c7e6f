import asyncio
import base64
import binascii
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from medblock.constants import LOG_LEVEL
from medblock.errors import AccessDenied, MedBlockError, NotFound, ValidationError
from medblock.models import (
    DocumentUploadRequest, EmergencyAccessRequest, MedicalRecord, RecordCreateRequest
)
from medblock.service import MedBlockService

# Setup logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

ERROR_STATUS = {
    ValidationError: 400,
    AccessDenied: 403,
    NotFound: 404
}


# Standard API response helpers
def success_response(data=None, message=None):
    """
    Create a standardized success response.

    Args:
        data: Optional data to include in the response
        message: Optional message to include in the response

    Returns:
        dict: A standardized success response
    """
    response = {"status": "success"}

    if data is not None:
        response["data"] = data

    if message is not None:
        response["message"] = message

    return response


def error_response(message, status_code=400):
    """
    Create a standardized error response and raise an HTTPException.

    Args:
        message: Error message
        status_code: HTTP status code

    Raises:
        HTTPException: With the specified status code and error details
    """
    raise HTTPException(
        status_code=status_code,
        detail={"status": "error", "error": message}
    )


def handle_error(e: Exception):
    """Translate a core error into an HTTP error response"""
    if isinstance(e, MedBlockError):
        for error_type, status_code in ERROR_STATUS.items():
            if isinstance(e, error_type):
                error_response(str(e), status_code)
    logger.exception(f"Unexpected error: {e}")
    error_response(str(e), 500)


def get_service(request: Request) -> MedBlockService:
    return request.app.state.service


# Health check endpoint
@router.get("/health")
async def health_check():
    """Health check endpoint for Docker healthcheck"""
    return success_response(
        data={"timestamp": int(time.time())},
        message="Service is healthy"
    )


@router.post("/records")
async def create_record(body: RecordCreateRequest, service: MedBlockService = Depends(get_service)):
    """
    Mine a record onto the ledger.

    Mining runs on the service worker; this handler only awaits the result.
    """
    try:
        record = MedicalRecord(
            id=body.id or f"record-{uuid.uuid4().hex[:12]}",
            patient_id=body.patient_id,
            doctor_id=body.doctor_id,
            kind=body.kind,
            title=body.title,
            description=body.description,
            file_name=body.file_name,
            file_reference=body.file_reference,
            timestamp=service.now()
        )
        if not record.title.strip():
            raise ValidationError("A record title is required")

        ledger_hash = await asyncio.wrap_future(service.submit_record(record))
        record = record.model_copy(update={"ledger_hash": ledger_hash})
        return success_response(data=record.model_dump(mode="json"), message="Record added to ledger")
    except HTTPException:
        raise
    except Exception as e:
        handle_error(e)


@router.get("/records/patient/{patient_id}")
async def patient_records(patient_id: str, requester_id: str, requester_role: str, kind: Optional[str] = None,
                          service: MedBlockService = Depends(get_service)):
    try:
        records = service.patient_records(patient_id, requester_id, requester_role, kind=kind)
        return success_response(data=[r.model_dump(mode="json") for r in records])
    except HTTPException:
        raise
    except Exception as e:
        handle_error(e)


@router.get("/records/doctor/{doctor_id}")
async def doctor_records(doctor_id: str, kind: Optional[str] = None,
                         service: MedBlockService = Depends(get_service)):
    try:
        records = service.doctor_records(doctor_id, kind=kind)
        return success_response(data=[r.model_dump(mode="json") for r in records])
    except Exception as e:
        handle_error(e)


@router.get("/chain")
async def chain_info(service: MedBlockService = Depends(get_service)):
    """Ledger length, validity and tip"""
    try:
        return success_response(data=service.chain_info().model_dump(mode="json"))
    except Exception as e:
        handle_error(e)


@router.get("/chain/proof/{sequence_index}")
async def inclusion_proof(sequence_index: int, service: MedBlockService = Depends(get_service)):
    try:
        return success_response(data=service.ledger.inclusion_proof(sequence_index).model_dump(mode="json"))
    except HTTPException:
        raise
    except Exception as e:
        handle_error(e)


@router.post("/documents")
def upload_document(body: DocumentUploadRequest, service: MedBlockService = Depends(get_service)):
    """
    Upload a document and record it on the ledger.

    Declared sync so FastAPI runs it in its threadpool while the worker mines.
    """
    try:
        try:
            content = base64.b64decode(body.content, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("content must be base64 encoded")

        document, record = service.upload_document(
            content,
            body.file_name,
            body.file_type,
            body.patient_id,
            body.title,
            description=body.description,
            kind=body.kind,
            doctor_id=body.doctor_id
        )
        return success_response(
            data={
                "document": document.model_dump(mode="json"),
                "record": record.model_dump(mode="json")
            },
            message="Document stored and recorded on the ledger"
        )
    except HTTPException:
        raise
    except Exception as e:
        handle_error(e)


@router.get("/documents/stats")
async def storage_stats(service: MedBlockService = Depends(get_service)):
    return success_response(data=service.documents.stats().model_dump(mode="json"))


@router.get("/storage/info")
async def storage_info(service: MedBlockService = Depends(get_service)):
    return success_response(data=service.documents.storage_info().model_dump(mode="json"))


@router.get("/documents/patient/{patient_id}")
async def patient_documents(patient_id: str, service: MedBlockService = Depends(get_service)):
    documents = service.documents.list_for_patient(patient_id)
    return success_response(data=[d.model_dump(mode="json") for d in documents])


@router.get("/documents/doctor/{doctor_id}")
async def doctor_documents(doctor_id: str, service: MedBlockService = Depends(get_service)):
    documents = service.documents.list_for_doctor(doctor_id)
    return success_response(data=[d.model_dump(mode="json") for d in documents])


@router.get("/documents/{document_id}")
async def get_document(document_id: str, requester_id: str, requester_role: str,
                       service: MedBlockService = Depends(get_service)):
    """Decrypted document content (base64) for an authorised requester"""
    try:
        document, content = service.documents.get(document_id, requester_id, requester_role)
        return success_response(data={
            "document": document.model_dump(mode="json"),
            "content": base64.b64encode(content).decode("utf-8")
        })
    except HTTPException:
        raise
    except Exception as e:
        handle_error(e)


@router.delete("/documents/{document_id}")
async def delete_document(document_id: str, requester_id: str, requester_role: str,
                          service: MedBlockService = Depends(get_service)):
    try:
        if not service.documents.delete(document_id, requester_id, requester_role):
            raise NotFound(f"Document {document_id} not found")
        return success_response(message=f"Document {document_id} deleted")
    except HTTPException:
        raise
    except Exception as e:
        handle_error(e)


@router.post("/emergency-access")
async def request_emergency_access(body: EmergencyAccessRequest, service: MedBlockService = Depends(get_service)):
    """Grant a doctor time-bounded access; the grant is audited on the ledger"""
    try:
        grant = await asyncio.wrap_future(service.submit_emergency_access(
            body.doctor_id,
            body.patient_id,
            body.reason,
            access_level=body.access_level,
            duration_minutes=body.duration_minutes
        ))
        return success_response(data=grant.model_dump(mode="json"), message="Emergency access granted")
    except HTTPException:
        raise
    except Exception as e:
        handle_error(e)


@router.get("/emergency-access/doctor/{doctor_id}")
async def active_emergency_access(doctor_id: str, service: MedBlockService = Depends(get_service)):
    now = service.emergency.now()
    grants = service.emergency.active_grants(doctor_id=doctor_id, now=now)
    return success_response(data=[
        {
            **g.model_dump(mode="json"),
            "seconds_remaining": int(g.time_remaining(now).total_seconds())
        }
        for g in grants
    ])


def create_app(service: Optional[MedBlockService] = None) -> FastAPI:
    """Build the API around a service (one is built from the environment if omitted)"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.service.shutdown()

    app = FastAPI(title="MedBlock Ledger API", lifespan=lifespan)

    # Enable CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.service = service or MedBlockService.from_env()
    app.include_router(router)
    return app
