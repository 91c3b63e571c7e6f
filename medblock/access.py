"""
Role-based access control for documents and ledger records.

Decisions are made fresh on every call: ownership and assignment come from the
document or record itself and emergency grants are evaluated against `now`.
"""

import datetime
import logging
from typing import Optional

from medblock.constants import ROLES
from medblock.models import MedicalRecord, StoredDocument

logger = logging.getLogger(__name__)


def _has_emergency_access(grants, doctor_id: str, patient_id: str, now: Optional[datetime.datetime]) -> bool:
    if grants is None or not patient_id:
        return False
    return grants.has_active_grant(doctor_id, patient_id, now=now)


def check_access(document: StoredDocument, requester_id: str, requester_role: str,
                 grants=None, now: Optional[datetime.datetime] = None) -> bool:
    """
    Decide whether a requester may read a document.

    Args:
        document: The document metadata
        requester_id: Id of the user asking
        requester_role: "patient" or "doctor"
        grants: EmergencyAccessRegistry used for emergency overrides
        now: Evaluation instant (defaults to the registry clock)

    Returns:
        bool: True if the requester owns the document, is its assigned doctor,
        or is a doctor holding an active emergency grant for its patient
    """
    if not requester_id:
        return False

    if requester_role == ROLES["PATIENT"]:
        return document.patient_id == requester_id

    if requester_role == ROLES["DOCTOR"]:
        if document.doctor_id and document.doctor_id == requester_id:
            return True
        return _has_emergency_access(grants, requester_id, document.patient_id, now)

    logger.warning(f"Unknown role {requester_role} requested document {document.id}")
    return False


def check_record_access(record: MedicalRecord, requester_id: str, requester_role: str,
                        grants=None, now: Optional[datetime.datetime] = None) -> bool:
    """Same matrix as check_access, applied to a ledger record"""
    if not requester_id:
        return False

    if requester_role == ROLES["PATIENT"]:
        return record.patient_id == requester_id

    if requester_role == ROLES["DOCTOR"]:
        if record.doctor_id and record.doctor_id == requester_id:
            return True
        return _has_emergency_access(grants, requester_id, record.patient_id, now)

    return False


def can_delete(document: StoredDocument, requester_id: str, requester_role: str) -> bool:
    """Only the owning patient may delete a document"""
    return requester_role == ROLES["PATIENT"] and document.patient_id == requester_id
