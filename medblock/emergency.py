"""
Emergency access grants.

A doctor who gives a justification receives a grant that is active while
now < expires_at. Activity is always recomputed from expires_at; the is_active
field on a grant is only the snapshot taken when it was created. Every grant is
audited by appending an emergency_access record to the ledger through the same
mining path as any other record.
"""

import datetime
import logging
import uuid
from typing import Callable, List, Optional, Set

from medblock.constants import ACCESS_LEVELS, DEFAULT_EMERGENCY_MINUTES, RECORD_KINDS
from medblock.errors import ValidationError
from medblock.locking import ReadWriteLock
from medblock.models import EmergencyAccessGrant, MedicalRecord, utc_now

logger = logging.getLogger(__name__)


class EmergencyAccessRegistry:
    """In-memory store of emergency grants, audited on the ledger"""

    def __init__(self, ledger, clock: Callable = utc_now):
        self.ledger = ledger
        self._clock = clock
        self._lock = ReadWriteLock()
        self._grants: List[EmergencyAccessGrant] = []

    def now(self) -> datetime.datetime:
        return self._clock()

    def grant(self, doctor_id: str, patient_id: str, reason: str, access_level: str = ACCESS_LEVELS["BASIC"],
              duration_minutes: Optional[int] = None) -> EmergencyAccessGrant:
        """
        Grant a doctor temporary access to a patient's records and documents.

        Existing grants for the same pair are left untouched; access is the
        union of all active grants.

        Args:
            doctor_id: The doctor requesting access
            patient_id: The patient whose data is needed
            reason: Justification, recorded on the ledger
            access_level: "basic" or "full"
            duration_minutes: Lifetime of the grant

        Returns:
            EmergencyAccessGrant: The new grant

        Raises:
            ValidationError: If a required field is empty or out of range
        """
        if duration_minutes is None:
            duration_minutes = DEFAULT_EMERGENCY_MINUTES
        if not doctor_id or not patient_id:
            raise ValidationError("Both doctor_id and patient_id are required")
        if not reason or not reason.strip():
            raise ValidationError("Emergency access requires a justification")
        if access_level not in ACCESS_LEVELS.values():
            raise ValidationError(f"Invalid access level: {access_level}")
        if duration_minutes <= 0:
            raise ValidationError("Emergency access duration must be positive")

        created_at = self._clock()
        expires_at = created_at + datetime.timedelta(minutes=duration_minutes)
        suffix = uuid.uuid4().hex[:12]

        record = MedicalRecord(
            id=f"emergency-record-{suffix}",
            patient_id=patient_id,
            doctor_id=doctor_id,
            kind=RECORD_KINDS["EMERGENCY_ACCESS"],
            title="Emergency Access Granted",
            description=f"Emergency access granted: {reason.strip()}",
            timestamp=created_at,
            is_emergency_access=True,
            emergency_expiry=expires_at
        )
        # Mine outside the registry lock so access checks are not held up
        ledger_hash = self.ledger.append(record)

        grant = EmergencyAccessGrant(
            id=f"emergency-{suffix}",
            patient_id=patient_id,
            doctor_id=doctor_id,
            access_level=access_level,
            reason=reason.strip(),
            created_at=created_at,
            expires_at=expires_at,
            is_active=True,
            ledger_hash=ledger_hash
        )
        with self._lock.write_locked():
            self._grants.append(grant)

        logger.info(
            f"Emergency access ({access_level}) granted to {doctor_id} for {patient_id} "
            f"until {expires_at.isoformat()}"
        )
        return grant

    def grants_for(self, doctor_id: Optional[str] = None, patient_id: Optional[str] = None) -> List[EmergencyAccessGrant]:
        """All grants matching the filters, expired ones included"""
        with self._lock.read_locked():
            return [
                g for g in self._grants
                if (doctor_id is None or g.doctor_id == doctor_id)
                and (patient_id is None or g.patient_id == patient_id)
            ]

    def active_grants(self, doctor_id: Optional[str] = None, patient_id: Optional[str] = None,
                      now: Optional[datetime.datetime] = None) -> List[EmergencyAccessGrant]:
        if now is None:
            now = self._clock()
        return [g for g in self.grants_for(doctor_id, patient_id) if g.active_at(now)]

    def has_active_grant(self, doctor_id: str, patient_id: str, now: Optional[datetime.datetime] = None) -> bool:
        return bool(self.active_grants(doctor_id=doctor_id, patient_id=patient_id, now=now))

    def patients_with_active_grant(self, doctor_id: str, now: Optional[datetime.datetime] = None) -> Set[str]:
        return {g.patient_id for g in self.active_grants(doctor_id=doctor_id, now=now)}

    def purge_expired(self, now: Optional[datetime.datetime] = None) -> int:
        """Forget expired grants; their audit records stay on the ledger"""
        if now is None:
            now = self._clock()
        with self._lock.write_locked():
            before = len(self._grants)
            self._grants = [g for g in self._grants if g.active_at(now)]
            removed = before - len(self._grants)
        if removed:
            logger.info(f"Purged {removed} expired emergency grants")
        return removed
