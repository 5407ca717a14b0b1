# tests/test_cli.py
import json
from pathlib import Path

import httpx
import pytest
from typer.testing import CliRunner

from echoledger.cli.main import app

runner = CliRunner()

CHUNKS = [b"chunk-a" * 10, b"chunk-b" * 10, b"chunk-c" * 10]


@pytest.fixture
def chunk_files(tmp_path: Path):
    paths = []
    for i, data in enumerate(CHUNKS):
        path = tmp_path / f"chunk_{i:04d}.webm"
        path.write_bytes(data)
        paths.append(path)
    return paths


@pytest.fixture
def sealed(tmp_path: Path, chunk_files):
    """Proof JSON sealed from three chunk files."""
    proof = tmp_path / "proof.json"
    result = runner.invoke(app, ["seal", *map(str, chunk_files), "-o", str(proof)])
    assert result.exit_code == 0, result.output
    return proof


@pytest.fixture
def combined(tmp_path: Path):
    path = tmp_path / "combined.webm"
    path.write_bytes(b"".join(CHUNKS))
    return path


def test_seal(sealed):
    data = json.loads(sealed.read_text())
    assert data["metadata"]["totalChunks"] == 3
    assert len(data["aquaTree"]["revisions"]) == 8
    assert "chunk_0001.webm" in data["aquaTree"]["file_index"].values()


def test_seal_tree_mode(tmp_path, chunk_files):
    proof = tmp_path / "tree.json"
    result = runner.invoke(app, ["seal", *map(str, chunk_files), "-o", str(proof), "--mode", "tree"])
    assert result.exit_code == 0, result.output
    genesis = next(iter(json.loads(proof.read_text())["aquaTree"]["revisions"].values()))
    assert genesis["hashing_mode"] == "tree"


def test_seal_missing_chunk(tmp_path):
    result = runner.invoke(app, ["seal", str(tmp_path / "nope.webm"), "-o", str(tmp_path / "p.json")])
    assert result.exit_code == 1


def test_verify_metadata_only(sealed):
    result = runner.invoke(app, ["verify", str(sealed)])
    assert result.exit_code == 0, result.output
    assert "Proof structure is valid" in result.output
    assert "metadata only" in result.output


def test_verify_unaltered_audio(sealed, combined):
    result = runner.invoke(app, ["verify", str(sealed), "--audio", str(combined)])
    assert result.exit_code == 0, result.output
    assert "unaltered" in result.output


def test_verify_tampered_audio(sealed, combined):
    audio = bytearray(combined.read_bytes())
    audio[0] ^= 0x01
    combined.write_bytes(bytes(audio))

    result = runner.invoke(app, ["verify", str(sealed), "--audio", str(combined)])
    assert result.exit_code == 1
    assert "TAMPERED" in result.output


def test_verify_single_chunk_file(sealed, chunk_files):
    arg = f"chunk_0002.webm={chunk_files[2]}"
    result = runner.invoke(app, ["verify", str(sealed), "-f", arg])
    assert result.exit_code == 0, result.output


def test_verify_bad_file_arg(sealed):
    result = runner.invoke(app, ["verify", str(sealed), "-f", "no-equals-sign"])
    assert result.exit_code == 2


def test_verify_broken_chain(sealed):
    data = json.loads(sealed.read_text())
    revisions = data["aquaTree"]["revisions"]
    second = list(revisions)[1]
    del revisions[second]
    sealed.write_text(json.dumps(data))

    result = runner.invoke(app, ["verify", str(sealed)])
    assert result.exit_code == 1
    assert "chain_discontinuity" in result.output


def test_verify_missing_bundle(tmp_path):
    result = runner.invoke(app, ["verify", str(tmp_path / "missing.json")])
    assert result.exit_code == 1


def test_inspect(sealed):
    result = runner.invoke(app, ["inspect", str(sealed)])
    assert result.exit_code == 0, result.output
    assert "genesis" in result.output
    assert "Witnesses: 0" in result.output


def test_inspect_garbage(tmp_path):
    path = tmp_path / "garbage.json"
    path.write_text("{not json")
    result = runner.invoke(app, ["inspect", str(path)])
    assert result.exit_code == 1


def test_fetch_without_gateway(tmp_path, monkeypatch):
    monkeypatch.delenv("ECHO_GATEWAY_URL", raising=False)
    result = runner.invoke(app, ["fetch", "bafy", "-o", str(tmp_path / "out.bin")])
    assert result.exit_code == 2
    assert "No gateway configured" in result.output


def test_invalid_config(tmp_path, monkeypatch):
    monkeypatch.setenv("ECHO_FETCH_ATTEMPTS", "many")
    result = runner.invoke(app, ["fetch", "bafy", "-o", str(tmp_path / "out.bin"), "--gateway", "https://gw"])
    assert result.exit_code == 2


@pytest.fixture
def mock_gateway(monkeypatch):
    """Route every gateway client through an in-memory transport."""
    blobs = {"media": b"\x1a\x45\xdf\xa3", "proof": {"aquaTree": {"revisions": {}, "file_index": {}}}}

    def handler(request):
        key = request.url.path.rsplit("/", 1)[-1]
        if key == "slow":
            return httpx.Response(503)
        if key not in blobs:
            return httpx.Response(404)
        blob = blobs[key]
        if isinstance(blob, dict):
            return httpx.Response(200, json=blob)
        return httpx.Response(200, content=blob, headers={"content-type": "application/octet-stream"})

    real_client = httpx.Client

    def client_factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_client(*args, **kwargs)

    monkeypatch.setattr("echoledger.retrieval.gateway.httpx.Client", client_factory)
    monkeypatch.setenv("ECHO_FETCH_BASE_DELAY", "0")
    return blobs


def test_fetch_media(tmp_path, mock_gateway):
    out = tmp_path / "media.webm"
    result = runner.invoke(app, ["fetch", "media", "-o", str(out), "--gateway", "https://gw.example"])
    assert result.exit_code == 0, result.output
    assert out.read_bytes() == mock_gateway["media"]


def test_fetch_proof(tmp_path, mock_gateway):
    out = tmp_path / "proof.json"
    result = runner.invoke(app, ["fetch", "proof", "--proof", "-o", str(out), "--gateway", "https://gw.example"])
    assert result.exit_code == 0, result.output
    assert json.loads(out.read_text()) == mock_gateway["proof"]


def test_fetch_not_found(tmp_path, mock_gateway):
    result = runner.invoke(app, ["fetch", "gone", "-o", str(tmp_path / "x"), "--gateway", "https://gw.example"])
    assert result.exit_code == 1
    assert "Not found" in result.output


def test_fetch_not_yet_available(tmp_path, mock_gateway):
    result = runner.invoke(app, ["fetch", "slow", "-o", str(tmp_path / "x"), "--gateway", "https://gw.example"])
    assert result.exit_code == 2
    assert "Try again shortly" in result.output


def test_seal_rejects_duplicate_chunk_names(tmp_path, chunk_files):
    other = tmp_path / "other"
    other.mkdir()
    clash = other / chunk_files[0].name
    clash.write_bytes(b"different bytes")

    result = runner.invoke(app, ["seal", str(chunk_files[0]), str(clash), "-o", str(tmp_path / "p.json")])
    assert result.exit_code == 2
    assert not (tmp_path / "p.json").exists()
