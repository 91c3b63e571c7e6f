#!/usr/bin/env python3
"""
Create sample records on a fresh ledger and optionally save a snapshot.

Mines a handful of records for the demo patients, stores one encrypted lab
report, grants an emergency access and prints the resulting chain summary.

Usage:
    python scripts/create_sample_records.py [snapshot_path]
"""

import os
import sys
import logging

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from medblock.constants import LOG_LEVEL
from medblock.models import MedicalRecord
from medblock.service import MedBlockService

logging.basicConfig(level=LOG_LEVEL)

# Demo users
PATIENT_1 = "patient-1"
PATIENT_2 = "patient-2"
DOCTOR_1 = "doctor-1"
DOCTOR_2 = "doctor-2"

# Sample records
sample_records = [
    {
        "patient_id": PATIENT_1,
        "doctor_id": DOCTOR_1,
        "kind": "diagnosis",
        "title": "Hypertension",
        "description": "Blood pressure 140/90 mmHg. Advised to reduce sodium intake."
    },
    {
        "patient_id": PATIENT_1,
        "doctor_id": DOCTOR_1,
        "kind": "prescription",
        "title": "Lisinopril 10mg",
        "description": "Once daily. Review in three months."
    },
    {
        "patient_id": PATIENT_1,
        "doctor_id": DOCTOR_1,
        "kind": "test_report",
        "title": "Lipid panel",
        "description": "Cholesterol 190 mg/dL."
    },
    {
        "patient_id": PATIENT_2,
        "doctor_id": "",
        "kind": "diagnosis",
        "title": "Seasonal allergies",
        "description": "Self-reported, awaiting assignment to a doctor."
    }
]


def create_sample_records(service):
    """Mine the sample records and demo flows onto the service's ledger."""
    for i, fields in enumerate(sample_records):
        record = MedicalRecord(id=f"sample-record-{i + 1}", **fields)
        ledger_hash = service.add_record(record)
        print(f"Mined sample record {i + 1}/{len(sample_records)}: {ledger_hash}")

    document, record = service.upload_document(
        b"Hemoglobin: 13.2 g/dL\nWhite cells: 6.1 x10^9/L\n",
        "blood_panel.txt",
        "text/plain",
        PATIENT_2,
        "Blood panel",
        description="Routine blood work"
    )
    print(f"Stored document {document.id} at {document.content_address[:16]}... (record {record.ledger_hash[:16]}...)")

    grant = service.request_emergency_access(
        DOCTOR_2, PATIENT_2, "Unconscious patient admitted to ER", access_level="full", duration_minutes=15
    )
    print(f"Emergency access {grant.id} for {grant.doctor_id} expires at {grant.expires_at.isoformat()}")


if __name__ == "__main__":
    snapshot_path = sys.argv[1] if len(sys.argv) > 1 else None

    with MedBlockService(snapshot_path=snapshot_path) as service:
        create_sample_records(service)
        info = service.chain_info()
        print(f"Chain length: {info.length}, valid: {info.is_valid}, merkle root: {info.merkle_root}")
