"""
Append-only, hash-linked ledger of medical records.

Each block seals one MedicalRecord. A block's hash is the fingerprint of
(sequence_index, previous_hash, timestamp, payload, nonce) and, for every block
after genesis, must start with `difficulty` zero hex digits. The nonce that
satisfies the target is found by brute force (see mine()).
"""

import json
import logging
import os
import tempfile
import threading
from typing import Callable, List, Optional, Tuple, Union

from medblock.constants import LEDGER_DIFFICULTY, FINGERPRINT_SCHEME
from medblock.crypto.fingerprint import Fingerprint, get_fingerprint, leading_zeros
from medblock.crypto.merkle import MerkleTree, verify_proof
from medblock.errors import ChainIntegrityError, MiningExhausted, NotFound
from medblock.locking import ReadWriteLock
from medblock.models import (
    Block, ChainInfo, InclusionProof, MedicalRecord, ProofStep, RecordKind, utc_now
)

logger = logging.getLogger(__name__)

GENESIS_RECORD_ID = "genesis"
GENESIS_TITLE = "Genesis Block"


def mine(seal: Callable[[int], str], difficulty: int, max_nonce: Optional[int] = None) -> Tuple[int, str]:
    """
    Search for a nonce whose sealed digest meets the difficulty target.

    Args:
        seal: Maps a nonce to the block digest
        difficulty: Required number of leading zero hex digits
        max_nonce: Highest nonce to try, or None to search without bound

    Returns:
        tuple: (nonce, digest)

    Raises:
        MiningExhausted: If max_nonce is reached without meeting the target
    """
    nonce = 0
    while True:
        nonce += 1
        if max_nonce is not None and nonce > max_nonce:
            raise MiningExhausted(f"No nonce up to {max_nonce} meets difficulty {difficulty}")
        digest = seal(nonce)
        if leading_zeros(digest) >= difficulty:
            return nonce, digest


def verify_inclusion(block_hash: str, proof: Union[InclusionProof, List[dict]], root: str) -> bool:
    """Check that block_hash is part of the chain summarised by root"""
    if isinstance(proof, InclusionProof):
        steps = [step.model_dump() for step in proof.steps]
    else:
        steps = proof
    return verify_proof(block_hash, steps, root)


class Ledger:
    """Single-writer proof-of-work hash chain"""

    def __init__(self, difficulty: int = LEDGER_DIFFICULTY, fingerprint: Optional[Fingerprint] = None,
                 clock: Callable = utc_now):
        self.fingerprint = fingerprint or get_fingerprint(FINGERPRINT_SCHEME)
        if difficulty < 0 or difficulty > self.fingerprint.width:
            raise ValueError(
                f"Difficulty must be between 0 and {self.fingerprint.width} for {self.fingerprint.name}"
            )
        self.difficulty = difficulty
        self._clock = clock
        # Readers share _lock; appends are serialised by _append_lock and only
        # take the write side of _lock to publish the mined block
        self._lock = ReadWriteLock()
        self._append_lock = threading.Lock()
        self._chain: List[Block] = [self._create_genesis_block()]

    def _seal(self, sequence_index: int, previous_hash: str, timestamp, payload: MedicalRecord, nonce: int) -> str:
        return self.fingerprint.digest(sequence_index, previous_hash, timestamp, payload, nonce)

    def _create_genesis_block(self) -> Block:
        now = self._clock()
        payload = MedicalRecord(
            id=GENESIS_RECORD_ID,
            patient_id="",
            doctor_id="",
            kind="diagnosis",
            title=GENESIS_TITLE,
            description="Healthcare Blockchain Genesis Block",
            timestamp=now
        )
        return Block(
            sequence_index=0,
            hash=self._seal(0, "", now, payload, 0),
            previous_hash="",
            timestamp=now,
            payload=payload,
            nonce=0
        )

    def append(self, record: MedicalRecord) -> str:
        """
        Seal a record into a new block on top of the chain.

        Mining is CPU bound and has no iteration cap; callers that need to stay
        responsive should run this on a worker (see MedBlockService).

        Returns:
            str: The new block's hash
        """
        payload = record.model_copy(update={"ledger_hash": ""}) if record.ledger_hash else record

        with self._append_lock:
            previous = self._chain[-1]
            sequence_index = previous.sequence_index + 1
            timestamp = self._clock()

            nonce, digest = mine(
                lambda n: self._seal(sequence_index, previous.hash, timestamp, payload, n),
                self.difficulty
            )
            block = Block(
                sequence_index=sequence_index,
                hash=digest,
                previous_hash=previous.hash,
                timestamp=timestamp,
                payload=payload,
                nonce=nonce
            )

            with self._lock.write_locked():
                self._chain.append(block)

        logger.info(f"Mined block {sequence_index} for record {payload.id} (nonce={nonce}, hash={digest[:16]})")
        return digest

    @staticmethod
    def _with_ledger_hash(block: Block) -> MedicalRecord:
        return block.payload.model_copy(update={"ledger_hash": block.hash})

    def _records_where(self, predicate) -> List[MedicalRecord]:
        with self._lock.read_locked():
            # Genesis is a sentinel, not a record
            return [self._with_ledger_hash(b) for b in self._chain[1:] if predicate(b.payload)]

    def records_by_patient(self, patient_id: str, kind: Optional[RecordKind] = None) -> List[MedicalRecord]:
        """Records for a patient in chain order, each carrying its block hash"""
        return self._records_where(
            lambda r: r.patient_id == patient_id and (kind is None or r.kind == kind)
        )

    def records_by_doctor(self, doctor_id: str, kind: Optional[RecordKind] = None) -> List[MedicalRecord]:
        """Records for a doctor in chain order, each carrying its block hash"""
        return self._records_where(
            lambda r: r.doctor_id == doctor_id and (kind is None or r.kind == kind)
        )

    def get_record(self, record_id: str) -> MedicalRecord:
        with self._lock.read_locked():
            for block in self._chain[1:]:
                if block.payload.id == record_id:
                    return self._with_ledger_hash(block)
        raise NotFound(f"Record {record_id} not found")

    def blocks(self) -> Tuple[Block, ...]:
        with self._lock.read_locked():
            return tuple(self._chain)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._chain)

    def _check_chain(self, chain: List[Block]) -> bool:
        if not chain:
            return False

        genesis = chain[0]
        if genesis.sequence_index != 0 or genesis.previous_hash != "":
            return False
        if genesis.hash != self._seal(0, "", genesis.timestamp, genesis.payload, genesis.nonce):
            return False

        for i in range(1, len(chain)):
            current = chain[i]
            previous = chain[i - 1]

            if current.sequence_index != i:
                return False

            recalculated = self._seal(
                current.sequence_index,
                current.previous_hash,
                current.timestamp,
                current.payload,
                current.nonce
            )
            if current.hash != recalculated:
                return False

            if current.previous_hash != previous.hash:
                return False

            if leading_zeros(current.hash) < self.difficulty:
                return False

        return True

    def verify(self) -> bool:
        """Rescan the whole chain; True only if every block is sealed and linked"""
        with self._lock.read_locked():
            chain = list(self._chain)
        valid = self._check_chain(chain)
        if not valid:
            logger.warning("Ledger verification failed")
        return valid

    def merkle_root(self) -> str:
        with self._lock.read_locked():
            return MerkleTree([b.hash for b in self._chain]).get_root()

    def inclusion_proof(self, sequence_index: int) -> InclusionProof:
        """Merkle proof that the block at sequence_index belongs to the chain"""
        with self._lock.read_locked():
            hashes = [b.hash for b in self._chain]
        if sequence_index < 0 or sequence_index >= len(hashes):
            raise NotFound(f"Block {sequence_index} not found")
        tree = MerkleTree(hashes)
        return InclusionProof(
            sequence_index=sequence_index,
            block_hash=hashes[sequence_index],
            root=tree.get_root(),
            steps=[ProofStep(**step) for step in tree.get_proof(sequence_index)]
        )

    def chain_info(self) -> ChainInfo:
        with self._lock.read_locked():
            chain = list(self._chain)
        return ChainInfo(
            length=len(chain),
            is_valid=self._check_chain(chain),
            last_block=chain[-1],
            difficulty=self.difficulty,
            fingerprint=self.fingerprint.name,
            merkle_root=MerkleTree([b.hash for b in chain]).get_root()
        )

    def save_snapshot(self, path: str) -> None:
        """
        Write the chain to a JSON file.

        The snapshot is written to a temporary file next to `path` and renamed
        over it, so readers never see a partial file.

        Raises:
            OSError: If the file cannot be written
        """
        snapshot = {
            "difficulty": self.difficulty,
            "fingerprint": self.fingerprint.name,
            "blocks": [b.model_dump(mode="json") for b in self.blocks()]
        }
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".ledger-", suffix=".json.tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(snapshot, f, indent=2)
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.info(f"Saved ledger snapshot with {len(snapshot['blocks'])} blocks to {path}")

    @classmethod
    def load_snapshot(cls, path: str, difficulty: Optional[int] = None,
                      fingerprint: Optional[Fingerprint] = None, clock: Callable = utc_now) -> "Ledger":
        """
        Rebuild a ledger from a JSON snapshot.

        The difficulty and fingerprint recorded in the snapshot are used unless
        overridden.

        Raises:
            ChainIntegrityError: If the snapshot is unreadable or does not verify
        """
        try:
            with open(path, "r") as f:
                snapshot = json.load(f)
            blocks = [Block.model_validate(b) for b in snapshot["blocks"]]
            if difficulty is None:
                difficulty = snapshot["difficulty"]
            if fingerprint is None:
                fingerprint = get_fingerprint(snapshot["fingerprint"])
            ledger = cls(difficulty=difficulty, fingerprint=fingerprint, clock=clock)
        except (OSError, KeyError, TypeError, ValueError) as e:
            raise ChainIntegrityError(f"Could not load ledger snapshot {path}: {e}")

        if not ledger._check_chain(blocks):
            raise ChainIntegrityError(f"Ledger snapshot {path} failed verification")
        ledger._chain = blocks
        logger.info(f"Loaded ledger snapshot with {len(blocks)} blocks from {path}")
        return ledger
