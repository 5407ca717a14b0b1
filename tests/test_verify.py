# tests/test_verify.py
import copy
import json
import pytest
from datetime import timedelta

from echoledger.chain.builder import append_chunk, begin_chain, sign, signing_message
from echoledger.chain.session import FINAL_FILE_NAME, RecordingSession
from echoledger.core.types import GenesisRevision, ProofBundle, SignatureRevision
from echoledger.crypto.keys import SignerKeyPair
from echoledger.verify.report import extract_report
from echoledger.verify.verifier import ChainVerifier, FileStatus

TS = "20260131140000"
CHUNKS = [b"chunk-zero", b"chunk-one", b"chunk-two"]


def broadcast(content, tags, private_key):
    chunk = dict(tags)["chunk"]
    return {"event_id": f"ev{chunk}", "endpoints": ["wss://relay.example"]}


@pytest.fixture
def keys():
    return SignerKeyPair.generate()


@pytest.fixture
def bundle(keys):
    session = RecordingSession(
        keys.sign_message,
        broadcast=broadcast,
        anchor_identity="npub-anchor",
        witness_interval=2,
        clock=lambda: TS,
    )
    session.start()
    for chunk in CHUNKS:
        session.process_chunk(chunk)
    session.stop()
    return session.export()


@pytest.fixture
def verifier():
    return ChainVerifier()


def categories(result):
    return {f.category for f in result.failures}


def hash_of(data, predicate):
    """Revision hash of the first serialized revision matching predicate."""
    for h, rev in data["aquaTree"]["revisions"].items():
        if predicate(rev):
            return h
    raise AssertionError("no matching revision")


def test_valid_bundle(verifier, bundle):
    result = verifier.verify(bundle)
    assert result.structure_valid
    assert result.is_valid
    assert bool(result)
    assert not result.failures
    assert "valid" in str(result)


def test_json_roundtrip_stays_valid(verifier, bundle):
    text = bundle.dumps()
    assert verifier.verify(text).is_valid
    assert verifier.verify(text.encode("utf-8")).is_valid

    reloaded = ProofBundle.loads(text)
    assert list(reloaded.chain.revisions) == list(bundle.chain.revisions)
    assert verifier.verify(reloaded).is_valid


def test_metadata_only_without_files(verifier, bundle):
    result = verifier.verify(bundle)
    assert not result.content_checked
    assert {c.status for c in result.files.values()} == {FileStatus.METADATA_ONLY}
    assert FINAL_FILE_NAME in result.files


def test_unaltered_file(verifier, bundle):
    result = verifier.verify(bundle, {FINAL_FILE_NAME: b"".join(CHUNKS), "chunk_0001.webm": CHUNKS[1]})
    assert result.content_checked
    assert result.is_valid
    assert result.files[FINAL_FILE_NAME].status is FileStatus.UNALTERED
    assert result.files["chunk_0001.webm"].status is FileStatus.UNALTERED
    # Files not supplied stay unproven
    assert result.files["chunk_0000.webm"].status is FileStatus.METADATA_ONLY


def test_single_bit_flip_is_tampered(verifier, bundle):
    audio = bytearray(b"".join(CHUNKS))
    audio[5] ^= 0x01
    result = verifier.verify(bundle, [(FINAL_FILE_NAME, bytes(audio))])

    assert result.structure_valid
    assert not result.content_valid
    assert not result.is_valid
    assert result.tampered_files == [FINAL_FILE_NAME]
    check = result.files[FINAL_FILE_NAME]
    assert check.expected_hash != check.actual_hash


def test_unknown_file_name(verifier, bundle):
    result = verifier.verify(bundle, {"other.webm": b"data"})
    assert result.files["other.webm"].status is FileStatus.NOT_INDEXED
    assert not result.is_valid


def test_embedded_content_tamper(verifier, bundle):
    data = bundle.to_dict()
    h = hash_of(data, lambda r: r["revision_type"] == "content")
    data["aquaTree"]["revisions"][h]["content"] = {"__bytes__": "Zm9yZ2Vk"}

    result = verifier.verify(data)
    assert not result.structure_valid
    assert categories(result) == {"content_hash_mismatch"}
    assert result.first_failure.revision_hash == h


def test_signature_tamper(verifier, bundle, keys):
    data = bundle.to_dict()
    h = hash_of(data, lambda r: r["revision_type"] == "signature")
    other, _ = keys.sign_message("something else")
    data["aquaTree"]["revisions"][h]["signature"] = other

    result = verifier.verify(data)
    assert "invalid_signature" in categories(result)
    assert "revision_hash" in categories(result)


def test_forged_signer(verifier, bundle):
    impostor = SignerKeyPair.generate()
    data = bundle.to_dict()
    h = hash_of(data, lambda r: r["revision_type"] == "signature")
    data["aquaTree"]["revisions"][h]["signature_wallet_address"] = impostor.address

    result = verifier.verify(data)
    assert "invalid_signature" in categories(result)


def test_link_break(verifier, bundle):
    data = bundle.to_dict()
    h = hash_of(data, lambda r: r["revision_type"] == "content")
    data["aquaTree"]["revisions"][h]["previous_verification_hash"] = "0x" + "00" * 32

    result = verifier.verify(data)
    assert not result.structure_valid
    assert "chain_discontinuity" in categories(result)
    assert "revision_hash" in categories(result)
    assert result.report is None


def test_removed_revision(verifier, bundle):
    data = bundle.to_dict()
    h = hash_of(data, lambda r: r["revision_type"] == "signature")
    del data["aquaTree"]["revisions"][h]

    result = verifier.verify(data)
    assert "chain_discontinuity" in categories(result)


def test_reordered_revisions(verifier, bundle):
    data = bundle.to_dict()
    items = list(data["aquaTree"]["revisions"].items())
    items[1], items[2] = items[2], items[1]
    data["aquaTree"]["revisions"] = dict(items)

    result = verifier.verify(data)
    assert "chain_discontinuity" in categories(result)


def test_second_genesis(verifier, bundle):
    data = bundle.to_dict()
    genesis = hash_of(data, lambda r: r["revision_type"] == "genesis")
    data["aquaTree"]["revisions"]["0xextra"] = copy.deepcopy(data["aquaTree"]["revisions"][genesis])

    result = verifier.verify(data)
    assert "chain_discontinuity" in categories(result)


def test_malformed_base64_does_not_raise(verifier, bundle):
    data = bundle.to_dict()
    h = hash_of(data, lambda r: "content" in r)
    data["aquaTree"]["revisions"][h]["content"] = {"__bytes__": "%%% not base64 %%%"}

    result = verifier.verify(data, {FINAL_FILE_NAME: b"x"})
    assert not result.structure_valid
    assert categories(result) == {"malformed_wire"}
    assert result.files[FINAL_FILE_NAME].status is FileStatus.NOT_INDEXED


def test_depth_bomb_is_rejected(bundle):
    data = bundle.to_dict()
    bomb = "leaf"
    for _ in range(200):
        bomb = {"x": bomb}
    data["metadata"]["extra"] = bomb

    result = ChainVerifier(max_wire_depth=64).verify(data)
    assert categories(result) == {"malformed_wire"}


def test_garbage_input(verifier):
    assert categories(verifier.verify("{not json")) == {"malformed_wire"}
    assert categories(verifier.verify({"nothing": 1})) == {"malformed_wire"}
    assert categories(verifier.verify(json.dumps({"aquaTree": {"revisions": {}, "file_index": {}}}))) == {
        "chain_discontinuity"
    }


def test_report(verifier, bundle, keys):
    report = verifier.verify(bundle).report

    assert report.signer_address == keys.address
    # 3 chunks plus the whole-file revision, each signed
    assert report.content_revisions == 4
    assert report.signature_revisions == 4
    assert report.final_revision == bundle.chain.final_hash
    assert report.chunk_count == 3
    assert report.total_duration == 6.0
    assert report.anchor_identity == "npub-anchor"
    assert [w.chunk_number for w in report.witnesses] == [2, 3]
    assert report.witness_lines()[0] == "Chunk 2: event ev2 via wss://relay.example"
    assert report.estimated_capture_start == report.started_at - timedelta(seconds=2.0)


def test_report_skips_malformed_timestamps(keys):
    chain = begin_chain(b"a", "a.webm", timestamp="20260131140010")
    chain = sign(chain, chain.tip, *keys.sign_message(signing_message(chain.tip)), timestamp="yesterday")
    chain = append_chunk(chain, b"b", "b.webm", chain.tip, timestamp="20260131140000")

    report = extract_report(ProofBundle(chain=chain, chunk_count=2, chunk_duration=2.0))
    assert len(report.timestamps) == 2
    assert report.started_at < report.ended_at
    assert report.final_revision == chain.tip


def test_imported_chain_types(bundle):
    reloaded = ProofBundle.loads(bundle.dumps())
    revisions = [r for _, r in reloaded.chain]
    assert isinstance(revisions[0], GenesisRevision)
    assert isinstance(revisions[-1], SignatureRevision)
    assert revisions[0].content == CHUNKS[0]
    assert reloaded.chain.last_file_hash == bundle.chain.final_hash


def test_name_indexed_twice_matches_any_revision(verifier, bundle):
    data = bundle.to_dict()
    index = data["aquaTree"]["file_index"]
    for h, name in list(index.items()):
        if name in ("chunk_0000.webm", "chunk_0001.webm"):
            index[h] = "chunk.webm"

    assert verifier.verify(data).structure_valid
    for authentic in CHUNKS[:2]:
        result = verifier.verify(data, {"chunk.webm": authentic})
        assert result.files["chunk.webm"].status is FileStatus.UNALTERED
        assert result.is_valid
    forged = verifier.verify(data, {"chunk.webm": b"forged"})
    assert forged.files["chunk.webm"].status is FileStatus.TAMPERED


def test_file_index_pointing_at_signature(verifier, bundle):
    data = bundle.to_dict()
    h = hash_of(data, lambda r: r["revision_type"] == "signature")
    data["aquaTree"]["file_index"][h] = "signature.webm"

    result = verifier.verify(data)
    assert categories(result) == {"chain_discontinuity"}
    assert result.first_failure.revision_hash == h
    assert "signature.webm" not in result.files
    assert FINAL_FILE_NAME in result.files

    with_files = verifier.verify(data, {"signature.webm": b"x", FINAL_FILE_NAME: b"".join(CHUNKS)})
    assert with_files.files["signature.webm"].status is FileStatus.NOT_INDEXED
    assert with_files.files[FINAL_FILE_NAME].status is FileStatus.UNALTERED


@pytest.mark.parametrize("metadata", [
    {"duration": None},
    {"totalChunks": "three", "chunkDuration": [2]},
    {"signer": 42, "witnesses": "none"},
    {"witnesses": [{"chunkIndex": "x"}, {"chunkIndex": 1, "eventId": "ev2"}]},
    None,
    "not an object",
])
def test_bad_metadata_does_not_block_structure_check(verifier, bundle, metadata):
    data = bundle.to_dict()
    if isinstance(metadata, dict):
        data["metadata"].update(metadata)
    else:
        data["metadata"] = metadata

    result = verifier.verify(data, {FINAL_FILE_NAME: b"".join(CHUNKS)})
    assert result.structure_valid, str(result)
    assert result.is_valid
    assert result.report is not None


def test_bad_metadata_falls_back_to_defaults(bundle):
    data = bundle.to_dict()
    data["metadata"].update({"duration": None, "totalChunks": "three", "signer": 42})
    data["metadata"]["witnesses"].append({"chunkIndex": "x"})

    reloaded = ProofBundle.from_dict(data)
    assert reloaded.total_duration == 0.0
    assert reloaded.chunk_count == 0
    assert reloaded.signer_identity is None
    assert reloaded.chunk_duration == bundle.chunk_duration
    assert reloaded.witnesses == bundle.witnesses


def test_minimum_wire_depth_accepts_real_bundles(bundle):
    from echoledger.config import MIN_WIRE_DEPTH
    result = ChainVerifier(max_wire_depth=MIN_WIRE_DEPTH).verify(bundle.dumps())
    assert result.is_valid, str(result)
