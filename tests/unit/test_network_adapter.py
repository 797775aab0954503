"""Unit tests for the network adapter glue."""

import json

import pytest

from sealbox.core.models import Operation
from sealbox.network import adapter
from sealbox.security.keys import KeyMaterialProvider


@pytest.fixture
def env(settings, provider):
    e = adapter.init_env(settings, provider)
    yield e
    adapter.close_env(e)


def test_init_env_builds_stores_under_root(env, settings):
    assert env["uploads"].root == settings.uploads_root.resolve()
    assert env["results"].root == settings.results_root.resolve()
    assert env["orchestrator"].max_upload_bytes == settings.max_upload_bytes


def test_open_for_get(env):
    env["results"].put("a.bin", b"abcdef")
    assert adapter.open_for_get(env, "a.bin") == b"abcdef"
    assert adapter.open_for_get(env, "a.bin", 1, 2) == b"bc"
    assert adapter.open_for_get(env, "missing") is None
    assert adapter.open_for_get(env, "../x") is None


def test_format_list(env):
    assert adapter.format_list(env) == "No artifacts.\n"
    env["results"].put("b", b"")
    env["results"].put("a", b"")
    assert adapter.format_list(env) == "a\nb\n"


def test_public_keys_and_health(env):
    keys = json.loads(adapter.public_keys_json(env))
    assert "transportPublicKeyPem" in keys
    assert json.loads(adapter.health_json(env))["status"] == "OK"


@pytest.mark.asyncio
async def test_start_env_generates_keys(settings):
    e = adapter.init_env(settings, KeyMaterialProvider())
    try:
        assert json.loads(adapter.health_json(e))["status"] == "UNAVAILABLE"
        await adapter.start_env(e)
        assert e["provider"].ready
        result = await adapter.run_operation(e, Operation.ENCODE_SYM, "x.txt", b"x")
        assert e["results"].exists(result.output_artifact_name)
    finally:
        adapter.close_env(e)
