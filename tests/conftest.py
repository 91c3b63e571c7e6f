import os
import sys

import pytest

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from medblock.crypto.fingerprint import Sha256Fingerprint
from medblock.documents import DocumentStore
from medblock.emergency import EmergencyAccessRegistry
from medblock.ledger import Ledger
from medblock.service import MedBlockService
from helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    return Ledger(difficulty=2, fingerprint=Sha256Fingerprint(), clock=clock)


@pytest.fixture
def registry(ledger, clock):
    return EmergencyAccessRegistry(ledger, clock=clock)


@pytest.fixture
def store(registry, clock):
    return DocumentStore(grants=registry, fingerprint=Sha256Fingerprint(), content_addressing="content", clock=clock)


@pytest.fixture
def service(clock):
    service = MedBlockService(difficulty=2, fingerprint=Sha256Fingerprint(), content_addressing="content", clock=clock)
    yield service
    service.shutdown()
