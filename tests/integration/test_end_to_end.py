"""End-to-end: the blocking client talking to a live server over TCP."""

import asyncio
import threading

import pytest

from sealbox.network import client
from sealbox.network.adapter import close_env, init_env, start_env
from sealbox.network.server import EnvelopeServer
from sealbox.security.keys import KeyMaterialProvider


@pytest.fixture
def live_server(settings):
    """Run a server with freshly generated keys on its own event loop thread."""
    env = init_env(settings, KeyMaterialProvider())
    started = threading.Event()
    state = {}

    async def _main():
        await start_env(env)
        srv = EnvelopeServer(env, host="127.0.0.1", port=0)
        state["port"] = await srv.start()
        started.set()
        await srv.serve_forever()

    def _run():
        try:
            asyncio.run(_main())
        except Exception as e:  # surface startup failures to the test
            state["error"] = e
            started.set()

    thread = threading.Thread(target=_run, daemon=True)
    thread.start()
    assert started.wait(30), "server did not start"
    if "error" in state:
        raise state["error"]
    yield env, state["port"]
    client.connect_and_request("127.0.0.1", state["port"], "STOP")
    thread.join(10)
    close_env(env)


def test_certificate_round_trip_over_the_wire(live_server, tmp_path):
    env, port = live_server
    src = tmp_path / "hello.txt"
    src.write_bytes(b"hello")

    enc = client.cmd_encode("127.0.0.1", port, str(src), scheme="cert")
    assert enc["status"] == "ok", enc
    name = enc["result"]["outputArtifactName"]
    assert name.startswith("encrypted_smime_") and name.endswith(".pem")

    envelope_path = tmp_path / name
    got = client.cmd_get("127.0.0.1", port, name, out_path=str(envelope_path))
    assert got["status"] == "ok"
    assert got["sha256"] == enc["result"]["sha256"]

    dec = client.cmd_decode("127.0.0.1", port, str(envelope_path), scheme="cert")
    assert dec["status"] == "ok", dec
    out = tmp_path / "hello.out"
    client.cmd_get("127.0.0.1", port, dec["result"]["outputArtifactName"], out_path=str(out))
    assert out.read_bytes() == b"hello"
    assert env["uploads"].list_names() == []


def test_symmetric_round_trip_over_the_wire(live_server, tmp_path):
    env, port = live_server
    payload = bytes(range(256)) * 64
    src = tmp_path / "blob.bin"
    src.write_bytes(payload)

    enc = client.cmd_encode("127.0.0.1", port, str(src), scheme="sym")
    assert enc["status"] == "ok", enc
    envelope_path = tmp_path / "blob.json"
    client.cmd_get("127.0.0.1", port, enc["result"]["outputArtifactName"], out_path=str(envelope_path))

    dec = client.cmd_decode("127.0.0.1", port, str(envelope_path), scheme="sym")
    out = tmp_path / "blob.out"
    client.cmd_get("127.0.0.1", port, dec["result"]["outputArtifactName"], out_path=str(out))
    assert out.read_bytes() == payload

    names = client.cmd_list("127.0.0.1", port)
    assert enc["result"]["outputArtifactName"] in names
    assert client.cmd_health("127.0.0.1", port)["status"] == "OK"
    assert "certificatePem" in client.cmd_keys("127.0.0.1", port)


def test_decode_with_wrong_scheme_fails_cleanly(live_server, tmp_path):
    env, port = live_server
    src = tmp_path / "plain.txt"
    src.write_bytes(b"not an envelope")
    res = client.cmd_decode("127.0.0.1", port, str(src), scheme="cert")
    assert res["status"] == "error"
    assert res["error"].startswith("ERROR: decoding:")
    assert env["uploads"].list_names() == []
