"""
Content-addressed, encrypted document store.

Every upload is encrypted with its own random AES key and stored under a new
document id. Metadata and blobs live only in process memory. Reads are gated
by medblock.access; only the owning patient ever gets the key back after
upload.
"""

import logging
import uuid
from collections import Counter
from typing import Callable, Dict, List, Optional, Tuple, Union

from medblock.access import can_delete, check_access
from medblock.constants import CONTENT_ADDRESSING, FINGERPRINT_SCHEME, ROLES, STORAGE_INFO
from medblock.crypto import aes
from medblock.crypto.fingerprint import Fingerprint, get_fingerprint
from medblock.errors import AccessDenied, NotFound, ValidationError
from medblock.locking import ReadWriteLock
from medblock.models import StorageInfo, StorageStats, StoredDocument, utc_now

logger = logging.getLogger(__name__)

CONTENT_ADDRESSING_MODES = ("content", "attributes")


class DocumentStore:
    def __init__(self, grants=None, fingerprint: Optional[Fingerprint] = None,
                 content_addressing: str = CONTENT_ADDRESSING, clock: Callable = utc_now):
        if content_addressing not in CONTENT_ADDRESSING_MODES:
            raise ValueError(f"Unknown content addressing mode: {content_addressing}")
        self.grants = grants
        self.fingerprint = fingerprint or get_fingerprint(FINGERPRINT_SCHEME)
        self.content_addressing = content_addressing
        self._clock = clock
        self._lock = ReadWriteLock()
        self._documents: Dict[str, StoredDocument] = {}
        self._blobs: Dict[str, bytes] = {}

    def _content_address(self, file_bytes: bytes, file_name: str, file_size: int, upload_date) -> str:
        if self.content_addressing == "attributes":
            # Legacy scheme: identical bytes uploaded twice get different addresses
            return self.fingerprint.digest(file_name, file_size, upload_date)
        return self.fingerprint.digest(file_bytes)

    def upload(self, file_bytes: Union[bytes, str], file_name: str, file_type: str = "",
               file_size: Optional[int] = None, patient_id: str = "",
               doctor_id: Optional[str] = None) -> StoredDocument:
        """
        Encrypt and store a document for a patient.

        Args:
            file_bytes: Raw document content
            file_name: Original file name
            file_type: MIME type, may be empty
            file_size: Declared size; defaults to len(file_bytes)
            patient_id: Owning patient
            doctor_id: Assigned doctor, if any

        Returns:
            StoredDocument: Metadata including the document's encryption key
        """
        if not patient_id:
            raise ValidationError("patient_id is required")
        if not file_name:
            raise ValidationError("file_name is required")
        if isinstance(file_bytes, str):
            file_bytes = file_bytes.encode("utf-8")
        if file_size is None:
            file_size = len(file_bytes)

        upload_date = self._clock()
        key = aes.generate_key()
        document = StoredDocument(
            id=f"doc-{int(upload_date.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}",
            file_name=file_name,
            file_type=file_type or "",
            file_size=file_size,
            upload_date=upload_date,
            content_address=self._content_address(file_bytes, file_name, file_size, upload_date),
            encryption_key=key,
            patient_id=patient_id,
            doctor_id=doctor_id or None,
            is_encrypted=True
        )
        blob = aes.encrypt(file_bytes, key)

        with self._lock.write_locked():
            self._documents[document.id] = document
            self._blobs[document.id] = blob

        logger.info(f"Stored document {document.id} ({file_size} bytes) for patient {patient_id}")
        return document.model_copy()

    def get(self, document_id: str, requester_id: str, requester_role: str) -> Tuple[StoredDocument, bytes]:
        """
        Decrypt a document for an authorised requester.

        Raises:
            NotFound: If the document id is unknown
            AccessDenied: If check_access refuses the requester
        """
        with self._lock.read_locked():
            document = self._documents.get(document_id)
            blob = self._blobs.get(document_id)

        if document is None or blob is None:
            raise NotFound(f"Document {document_id} not found")

        if not check_access(document, requester_id, requester_role, self.grants, now=self._clock()):
            logger.warning(f"Access denied: {requester_role} {requester_id} requested document {document_id}")
            raise AccessDenied("Access denied: Insufficient permissions")

        content = aes.decrypt(blob, document.encryption_key)

        if requester_role == ROLES["PATIENT"] and document.patient_id == requester_id:
            return document.model_copy(), content
        return document.redacted(), content

    @staticmethod
    def _newest_first(documents: List[StoredDocument]) -> List[StoredDocument]:
        return [d.redacted() for d in sorted(documents, key=lambda d: d.upload_date, reverse=True)]

    def list_for_patient(self, patient_id: str) -> List[StoredDocument]:
        with self._lock.read_locked():
            documents = [d for d in self._documents.values() if d.patient_id == patient_id]
        return self._newest_first(documents)

    def list_for_doctor(self, doctor_id: str) -> List[StoredDocument]:
        """Documents assigned to the doctor plus those of patients under an active emergency grant"""
        granted = set()
        if self.grants is not None:
            granted = self.grants.patients_with_active_grant(doctor_id, now=self._clock())

        with self._lock.read_locked():
            documents = [
                d for d in self._documents.values()
                if (d.doctor_id and d.doctor_id == doctor_id) or d.patient_id in granted
            ]
        return self._newest_first(documents)

    def find_by_address(self, content_address: str) -> List[StoredDocument]:
        with self._lock.read_locked():
            documents = [d for d in self._documents.values() if d.content_address == content_address]
        return self._newest_first(documents)

    def delete(self, document_id: str, requester_id: str, requester_role: str) -> bool:
        """
        Remove a document and its blob.

        Returns:
            bool: False if the document did not exist

        Raises:
            AccessDenied: Unless the requester is the owning patient
        """
        with self._lock.write_locked():
            document = self._documents.get(document_id)
            if document is None:
                return False

            if not can_delete(document, requester_id, requester_role):
                logger.warning(f"Delete denied: {requester_role} {requester_id} on document {document_id}")
                raise AccessDenied("Access denied: Only patients can delete their own documents")

            del self._documents[document_id]
            self._blobs.pop(document_id, None)

        logger.info(f"Deleted document {document_id}")
        return True

    def stats(self) -> StorageStats:
        with self._lock.read_locked():
            documents = list(self._documents.values())
        return StorageStats(
            total_documents=len(documents),
            total_size=sum(d.file_size for d in documents),
            counts_by_type=dict(Counter(d.file_type or "unknown" for d in documents))
        )

    @staticmethod
    def storage_info() -> StorageInfo:
        return StorageInfo(**STORAGE_INFO)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._documents)
