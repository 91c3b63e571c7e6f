from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional, Literal
import datetime

RecordKind = Literal["prescription", "test_report", "diagnosis", "emergency_access"]
AccessLevel = Literal["basic", "full"]


def utc_now() -> datetime.datetime:
    """Current wall-clock time as an aware UTC datetime"""
    return datetime.datetime.now(datetime.timezone.utc)


class MedicalRecord(BaseModel):
    """Model for a medical record carried as a block payload"""
    model_config = ConfigDict(frozen=True)

    id: str
    patient_id: str
    doctor_id: str = ""
    kind: RecordKind
    title: str
    description: str = ""
    file_name: Optional[str] = None
    file_reference: Optional[str] = None
    ledger_hash: str = ""
    timestamp: datetime.datetime = Field(default_factory=utc_now)
    is_emergency_access: Optional[bool] = None
    emergency_expiry: Optional[datetime.datetime] = None


class Block(BaseModel):
    """Model for one mined ledger entry"""
    model_config = ConfigDict(frozen=True)

    sequence_index: int
    hash: str
    previous_hash: str
    timestamp: datetime.datetime
    payload: MedicalRecord
    nonce: int = 0


class StoredDocument(BaseModel):
    """Model for document metadata held by the document store"""
    id: str
    file_name: str
    file_type: str = ""
    file_size: int
    upload_date: datetime.datetime
    content_address: str
    encryption_key: Optional[str] = None
    patient_id: str
    doctor_id: Optional[str] = None
    is_encrypted: bool = True

    def redacted(self) -> "StoredDocument":
        """Copy of the metadata without the encryption key"""
        return self.model_copy(update={"encryption_key": None})


class EmergencyAccessGrant(BaseModel):
    """Model for a time-bounded emergency access grant"""
    model_config = ConfigDict(frozen=True)

    id: str
    patient_id: str
    doctor_id: str
    access_level: AccessLevel = "basic"
    reason: str
    created_at: datetime.datetime
    expires_at: datetime.datetime
    # Snapshot at creation; use active_at() for the authoritative answer
    is_active: bool = True
    ledger_hash: str = ""

    def active_at(self, now: datetime.datetime) -> bool:
        return now < self.expires_at

    def time_remaining(self, now: datetime.datetime) -> datetime.timedelta:
        remaining = self.expires_at - now
        if remaining < datetime.timedelta(0):
            return datetime.timedelta(0)
        return remaining


class ChainInfo(BaseModel):
    """Summary of the ledger state"""
    length: int
    is_valid: bool
    last_block: Block
    difficulty: int
    fingerprint: str
    merkle_root: str


class StorageStats(BaseModel):
    """Aggregate view of the document store"""
    total_documents: int
    total_size: int
    counts_by_type: Dict[str, int]


class StorageInfo(BaseModel):
    """Static description of where documents live"""
    location: str
    encryption: str
    backup: str
    access: str
    retention: str


# Request models for the HTTP surface

class RecordCreateRequest(BaseModel):
    """Model for appending a record to the ledger"""
    id: Optional[str] = None
    patient_id: str
    doctor_id: str = ""
    kind: RecordKind
    title: str
    description: str = ""
    file_name: Optional[str] = None
    file_reference: Optional[str] = None


class DocumentUploadRequest(BaseModel):
    """Model for a document upload; content is base64 encoded"""
    file_name: str
    file_type: str = ""
    content: str
    patient_id: str
    doctor_id: Optional[str] = None
    title: str
    description: str = ""
    kind: RecordKind = "test_report"


class EmergencyAccessRequest(BaseModel):
    """Model for an emergency access request by a doctor"""
    doctor_id: str
    patient_id: str
    reason: str
    access_level: AccessLevel = "basic"
    duration_minutes: Optional[int] = None


class ProofStep(BaseModel):
    position: Literal["left", "right"]
    data: str


class InclusionProof(BaseModel):
    """Merkle proof that a block hash belongs to the chain"""
    sequence_index: int
    block_hash: str
    root: str
    steps: List[ProofStep]
