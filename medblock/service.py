"""
Service object wiring the ledger, emergency registry and document store.

One MedBlockService is built at process start and handed to whatever needs it
(the API, scripts, tests). All mining goes through a single worker thread, so
appends are serialised and never run on a request-handling thread.
"""

import logging
import os
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple, Union

from medblock.access import check_record_access
from medblock.constants import (
    CONTENT_ADDRESSING, FINGERPRINT_SCHEME, LEDGER_DIFFICULTY, LEDGER_SNAPSHOT_PATH, RECORD_KINDS, ROLES
)
from medblock.crypto.fingerprint import Fingerprint, get_fingerprint
from medblock.documents import DocumentStore
from medblock.emergency import EmergencyAccessRegistry
from medblock.errors import AccessDenied, ValidationError
from medblock.ledger import Ledger
from medblock.models import ChainInfo, EmergencyAccessGrant, MedicalRecord, StoredDocument, utc_now

logger = logging.getLogger(__name__)


class MedBlockService:
    def __init__(self, difficulty: int = LEDGER_DIFFICULTY, fingerprint: Optional[Fingerprint] = None,
                 content_addressing: str = CONTENT_ADDRESSING, clock: Callable = utc_now,
                 ledger: Optional[Ledger] = None, snapshot_path: Optional[str] = None):
        self._clock = clock
        self.ledger = ledger or Ledger(difficulty=difficulty, fingerprint=fingerprint, clock=clock)
        self.emergency = EmergencyAccessRegistry(self.ledger, clock=clock)
        self.documents = DocumentStore(
            grants=self.emergency,
            fingerprint=self.ledger.fingerprint,
            content_addressing=content_addressing,
            clock=clock
        )
        self.snapshot_path = snapshot_path
        self._miner = ThreadPoolExecutor(max_workers=1, thread_name_prefix="medblock-miner")

    @classmethod
    def from_env(cls) -> "MedBlockService":
        """Build a service from medblock.constants, resuming a snapshot if one exists"""
        snapshot_path = LEDGER_SNAPSHOT_PATH or None
        if snapshot_path and os.path.exists(snapshot_path):
            ledger = Ledger.load_snapshot(snapshot_path, difficulty=LEDGER_DIFFICULTY)
        else:
            ledger = Ledger(difficulty=LEDGER_DIFFICULTY, fingerprint=get_fingerprint(FINGERPRINT_SCHEME))
        logger.info(
            f"Ledger ready: {len(ledger)} blocks, difficulty {ledger.difficulty}, "
            f"fingerprint {ledger.fingerprint.name}"
        )
        return cls(ledger=ledger, content_addressing=CONTENT_ADDRESSING, snapshot_path=snapshot_path)

    def now(self):
        """Current time on the service clock"""
        return self._clock()

    def _persist(self) -> None:
        # Runs after the block is committed, so a failed write is only logged
        if not self.snapshot_path:
            return
        try:
            self.ledger.save_snapshot(self.snapshot_path)
        except OSError:
            logger.exception(f"Could not save ledger snapshot to {self.snapshot_path}")

    def _append(self, record: MedicalRecord) -> str:
        digest = self.ledger.append(record)
        self._persist()
        return digest

    def _grant(self, **kwargs) -> EmergencyAccessGrant:
        grant = self.emergency.grant(**kwargs)
        self._persist()
        return grant

    def submit_record(self, record: MedicalRecord) -> Future:
        """Queue a record for mining; the future resolves to its block hash"""
        return self._miner.submit(self._append, record)

    def add_record(self, record: MedicalRecord) -> str:
        """Mine a record and wait for its block hash"""
        return self.submit_record(record).result()

    def upload_document(self, file_bytes: Union[bytes, str], file_name: str, file_type: str, patient_id: str,
                        title: str, description: str = "", kind: str = RECORD_KINDS["TEST_REPORT"],
                        doctor_id: Optional[str] = None) -> Tuple[StoredDocument, MedicalRecord]:
        """
        Store a document and record it on the ledger.

        Returns:
            tuple: (StoredDocument with its key, MedicalRecord with ledger_hash set)
        """
        if not title or not title.strip():
            raise ValidationError("A record title is required")
        if kind not in RECORD_KINDS.values():
            raise ValidationError(f"Invalid record kind: {kind}")

        document = self.documents.upload(file_bytes, file_name, file_type, None, patient_id, doctor_id)

        record = MedicalRecord(
            id=f"record-{uuid.uuid4().hex[:12]}",
            patient_id=patient_id,
            doctor_id=doctor_id or "",
            kind=kind,
            title=title.strip(),
            description=(description or "").strip(),
            file_name=document.file_name,
            file_reference=document.content_address,
            timestamp=self._clock()
        )
        digest = self.add_record(record)
        return document, record.model_copy(update={"ledger_hash": digest})

    def submit_emergency_access(self, doctor_id: str, patient_id: str, reason: str,
                                access_level: str = "basic", duration_minutes: Optional[int] = None) -> Future:
        return self._miner.submit(
            self._grant,
            doctor_id=doctor_id,
            patient_id=patient_id,
            reason=reason,
            access_level=access_level,
            duration_minutes=duration_minutes
        )

    def request_emergency_access(self, doctor_id: str, patient_id: str, reason: str,
                                 access_level: str = "basic",
                                 duration_minutes: Optional[int] = None) -> EmergencyAccessGrant:
        return self.submit_emergency_access(doctor_id, patient_id, reason, access_level, duration_minutes).result()

    def patient_records(self, patient_id: str, requester_id: str, requester_role: str,
                        kind: Optional[str] = None) -> List[MedicalRecord]:
        """
        A patient's ledger records as seen by a requester.

        The patient always passes. A doctor passes when assigned on any of the
        patient's records or holding an active emergency grant for the patient,
        and then sees only the records check_record_access allows. Everyone
        else is refused whether or not the patient has records.

        Raises:
            AccessDenied: If the requester may not view the patient's records
        """
        now = self._clock()
        all_records = self.ledger.records_by_patient(patient_id)

        if requester_role == ROLES["PATIENT"] and requester_id and requester_id == patient_id:
            allowed = True
        elif requester_role == ROLES["DOCTOR"] and requester_id:
            allowed = (
                any(r.doctor_id == requester_id for r in all_records)
                or self.emergency.has_active_grant(requester_id, patient_id, now=now)
            )
        else:
            allowed = False

        if not allowed:
            logger.warning(f"Access denied: {requester_role} {requester_id} requested records of {patient_id}")
            raise AccessDenied("Access denied: Insufficient permissions")

        return [
            r for r in all_records
            if (kind is None or r.kind == kind)
            and check_record_access(r, requester_id, requester_role, self.emergency, now=now)
        ]

    def doctor_records(self, doctor_id: str, kind: Optional[str] = None) -> List[MedicalRecord]:
        return self.ledger.records_by_doctor(doctor_id, kind)

    def chain_info(self) -> ChainInfo:
        return self.ledger.chain_info()

    def shutdown(self) -> None:
        self._miner.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
