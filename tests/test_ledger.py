import json
import threading

import pytest

from medblock.crypto.fingerprint import RollingFingerprint, Sha256Fingerprint, leading_zeros
from medblock.errors import ChainIntegrityError, MiningExhausted, NotFound
from medblock.ledger import GENESIS_TITLE, Ledger, mine, verify_inclusion
from helpers import DOCTOR_1, DOCTOR_2, PATIENT_1, PATIENT_2, FakeClock, make_record


def seal_of(ledger, block):
    return ledger.fingerprint.digest(
        block.sequence_index, block.previous_hash, block.timestamp, block.payload, block.nonce
    )


def tamper(ledger, index, **fields):
    ledger._chain[index] = ledger._chain[index].model_copy(update=fields)


@pytest.fixture
def filled(ledger):
    ledger.append(make_record("r1", patient_id=PATIENT_1, doctor_id=DOCTOR_1))
    ledger.append(make_record("r2", patient_id=PATIENT_2, doctor_id=DOCTOR_2))
    ledger.append(make_record("r3", patient_id=PATIENT_1, doctor_id=DOCTOR_2, kind="prescription"))
    ledger.append(make_record("r4", patient_id=PATIENT_2, doctor_id=""))
    return ledger


def test_genesis_block(ledger):
    blocks = ledger.blocks()
    assert len(blocks) == 1
    genesis = blocks[0]
    assert genesis.sequence_index == 0
    assert genesis.previous_hash == ""
    assert genesis.payload.title == GENESIS_TITLE
    assert genesis.hash == seal_of(ledger, genesis)
    assert ledger.verify()


def test_append_links_and_mines(filled):
    blocks = filled.blocks()
    assert len(blocks) == 5
    for i in range(1, len(blocks)):
        block = blocks[i]
        assert block.sequence_index == i
        assert block.previous_hash == blocks[i - 1].hash
        assert block.hash == seal_of(filled, block)
        assert leading_zeros(block.hash) >= filled.difficulty
        assert block.nonce >= 1


def test_append_returns_block_hash(ledger):
    digest = ledger.append(make_record("r1"))
    assert ledger.blocks()[-1].hash == digest


def test_stored_payload_has_no_ledger_hash(ledger):
    ledger.append(make_record("r1", ledger_hash="caller-supplied"))
    assert ledger.blocks()[-1].payload.ledger_hash == ""
    assert ledger.verify()


def test_records_by_patient_in_append_order(filled):
    records = filled.records_by_patient(PATIENT_1)
    assert [r.id for r in records] == ["r1", "r3"]
    blocks = {b.payload.id: b.hash for b in filled.blocks()}
    for record in records:
        assert record.ledger_hash == blocks[record.id]


def test_records_by_doctor(filled):
    assert [r.id for r in filled.records_by_doctor(DOCTOR_2)] == ["r2", "r3"]
    # Unassigned records have an empty doctor id; genesis is never returned
    assert [r.id for r in filled.records_by_doctor("")] == ["r4"]


def test_records_filtered_by_kind(filled):
    assert [r.id for r in filled.records_by_patient(PATIENT_1, kind="prescription")] == ["r3"]
    assert filled.records_by_doctor(DOCTOR_1, kind="prescription") == []


def test_unknown_patient_has_no_records(filled):
    assert filled.records_by_patient("patient-404") == []


def test_interleaved_appends_keep_per_patient_order(ledger):
    expected = {PATIENT_1: [], PATIENT_2: []}
    for i in range(12):
        patient = PATIENT_1 if i % 3 else PATIENT_2
        ledger.append(make_record(f"r{i}", patient_id=patient))
        expected[patient].append(f"r{i}")
    for patient, ids in expected.items():
        assert [r.id for r in ledger.records_by_patient(patient)] == ids


def test_get_record(filled):
    assert filled.get_record("r2").patient_id == PATIENT_2
    with pytest.raises(NotFound):
        filled.get_record("missing")


def test_verify_detects_payload_tampering(filled):
    assert filled.verify()
    block = filled.blocks()[2]
    tamper(filled, 2, payload=block.payload.model_copy(update={"title": "Edited"}))
    assert not filled.verify()


def test_verify_detects_timestamp_tampering(filled):
    block = filled.blocks()[3]
    tamper(filled, 3, timestamp=block.timestamp.replace(year=2020))
    assert not filled.verify()


def test_verify_detects_broken_link(filled):
    tamper(filled, 2, previous_hash="0" * 64)
    assert not filled.verify()


def test_verify_detects_genesis_tampering(filled):
    genesis = filled.blocks()[0]
    tamper(filled, 0, payload=genesis.payload.model_copy(update={"description": "rewritten"}))
    assert not filled.verify()


def test_verify_detects_resealed_block(filled):
    # Rewriting a block and recomputing its own hash still breaks the next link
    block = filled.blocks()[2]
    payload = block.payload.model_copy(update={"title": "Edited"})
    edited = block.model_copy(update={"payload": payload})
    nonce, digest = mine(
        lambda n: filled.fingerprint.digest(edited.sequence_index, edited.previous_hash, edited.timestamp, payload, n),
        filled.difficulty
    )
    tamper(filled, 2, payload=payload, nonce=nonce, hash=digest)
    assert not filled.verify()


def test_verify_detects_missing_proof_of_work(clock):
    ledger = Ledger(difficulty=2, fingerprint=Sha256Fingerprint(), clock=clock)
    ledger.append(make_record("r1"))
    block = ledger.blocks()[1]
    unmined = ledger.fingerprint.digest(block.sequence_index, block.previous_hash, block.timestamp, block.payload, 0)
    if leading_zeros(unmined) < 2:
        tamper(ledger, 1, nonce=0, hash=unmined)
        assert not ledger.verify()


def test_chain_info(filled):
    info = filled.chain_info()
    assert info.length == 5
    assert info.is_valid
    assert info.last_block.payload.id == "r4"
    assert info.difficulty == 2
    assert info.fingerprint == "sha256"
    assert info.merkle_root == filled.merkle_root()


def test_chain_info_reports_invalid_chain(filled):
    tamper(filled, 1, previous_hash="bogus")
    assert filled.chain_info().is_valid is False


def test_inclusion_proofs(filled):
    root = filled.merkle_root()
    for block in filled.blocks():
        proof = filled.inclusion_proof(block.sequence_index)
        assert proof.root == root
        assert verify_inclusion(block.hash, proof, root)
    assert not verify_inclusion("f" * 64, filled.inclusion_proof(1), root)
    with pytest.raises(NotFound):
        filled.inclusion_proof(99)


def test_mine_bounded_search():
    with pytest.raises(MiningExhausted):
        mine(lambda n: "f" * 64, difficulty=1, max_nonce=10)


def test_mine_zero_difficulty_takes_first_nonce():
    assert mine(lambda n: f"f{n}", difficulty=0) == (1, "f1")


def test_mine_finds_first_matching_nonce():
    nonce, digest = mine(lambda n: "00" if n == 5 else "ff", difficulty=2)
    assert (nonce, digest) == (5, "00")


def test_invalid_difficulty():
    with pytest.raises(ValueError):
        Ledger(difficulty=9, fingerprint=RollingFingerprint())
    with pytest.raises(ValueError):
        Ledger(difficulty=-1)


def test_rolling_fingerprint_ledger():
    ledger = Ledger(difficulty=1, fingerprint=RollingFingerprint(), clock=FakeClock())
    for i in range(5):
        digest = ledger.append(make_record(f"r{i}"))
        assert len(digest) == 8
        assert digest.startswith("0")
    assert ledger.verify()


def test_snapshot_round_trip(filled, tmp_path):
    path = str(tmp_path / "snapshots" / "ledger.json")
    filled.save_snapshot(path)
    restored = Ledger.load_snapshot(path)
    assert restored.blocks() == filled.blocks()
    assert restored.verify()
    assert [r.id for r in restored.records_by_patient(PATIENT_1)] == ["r1", "r3"]
    restored.append(make_record("r5"))
    assert restored.verify()


def test_tampered_snapshot_is_rejected(filled, tmp_path):
    path = tmp_path / "ledger.json"
    filled.save_snapshot(str(path))
    snapshot = json.loads(path.read_text())
    snapshot["blocks"][2]["payload"]["title"] = "Edited"
    path.write_text(json.dumps(snapshot))
    with pytest.raises(ChainIntegrityError):
        Ledger.load_snapshot(str(path))


def test_missing_snapshot_is_rejected(tmp_path):
    with pytest.raises(ChainIntegrityError):
        Ledger.load_snapshot(str(tmp_path / "nope.json"))


def test_concurrent_appends_stay_linked(ledger):
    def worker(n):
        for i in range(5):
            ledger.append(make_record(f"t{n}-{i}", patient_id=f"patient-{n}"))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    blocks = ledger.blocks()
    assert len(blocks) == 31
    assert [b.sequence_index for b in blocks] == list(range(31))
    assert ledger.verify()
    for n in range(6):
        assert [r.id for r in ledger.records_by_patient(f"patient-{n}")] == [f"t{n}-{i}" for i in range(5)]


def test_snapshot_replaces_file_without_leftovers(filled, tmp_path):
    path = tmp_path / "ledger.json"
    path.write_text("{\"truncated\": ")
    filled.save_snapshot(str(path))
    assert Ledger.load_snapshot(str(path)).blocks() == filled.blocks()
    assert [p.name for p in tmp_path.iterdir()] == ["ledger.json"]


def test_snapshot_write_to_directory_fails_cleanly(filled, tmp_path):
    with pytest.raises(OSError):
        filled.save_snapshot(str(tmp_path))
    assert list(tmp_path.iterdir()) == []


def test_snapshot_with_out_of_range_difficulty_is_rejected(filled, tmp_path):
    path = tmp_path / "ledger.json"
    filled.save_snapshot(str(path))
    snapshot = json.loads(path.read_text())
    snapshot["difficulty"] = 65
    path.write_text(json.dumps(snapshot))
    with pytest.raises(ChainIntegrityError):
        Ledger.load_snapshot(str(path))
