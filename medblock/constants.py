"""
Constants for the MedBlock ledger and document store.

This module defines the role, record kind and access level tables used
throughout the package, and reads runtime configuration from the environment
(a local .env file is honoured).
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Role definitions
ROLES = {
    "PATIENT": "patient",
    "DOCTOR": "doctor"
}

# Medical record kinds
RECORD_KINDS = {
    "PRESCRIPTION": "prescription",
    "TEST_REPORT": "test_report",
    "DIAGNOSIS": "diagnosis",
    "EMERGENCY_ACCESS": "emergency_access"
}

# Emergency access levels
ACCESS_LEVELS = {
    "BASIC": "basic",
    "FULL": "full"
}

# Proof-of-work difficulty: number of leading zero hex digits per block hash
LEDGER_DIFFICULTY = int(os.getenv("LEDGER_DIFFICULTY", "2"))

# Fingerprint scheme used for mining and content addressing ("sha256" or "rolling")
FINGERPRINT_SCHEME = os.getenv("FINGERPRINT_SCHEME", "sha256")

# Content address derivation ("content" hashes the bytes, "attributes" hashes name+size+time)
CONTENT_ADDRESSING = os.getenv("CONTENT_ADDRESSING", "content")

# Default lifetime of an emergency access grant, in minutes
DEFAULT_EMERGENCY_MINUTES = int(os.getenv("DEFAULT_EMERGENCY_MINUTES", "60"))

# Optional path of a JSON ledger snapshot; empty means in-memory only
LEDGER_SNAPSHOT_PATH = os.getenv("LEDGER_SNAPSHOT_PATH", "")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# API server
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

# Description of the document store, shown to patients on upload
STORAGE_INFO = {
    "location": "In-process encrypted blob store (content addressed)",
    "encryption": "AES-256-GCM with a random key per document",
    "backup": "None; state lives for the lifetime of the process unless a ledger snapshot is saved",
    "access": "Owning patient, assigned doctor, or doctor holding an active emergency grant",
    "retention": "Kept until the owning patient deletes the document"
}
