from __future__ import annotations

import asyncio

import pytest

from vn_imagegen.config import load_config
from vn_imagegen.orchestration import ProviderRegistry
from vn_imagegen.types import Purpose

ENV_KEYS = [
    "REPLICATE_API_TOKEN",
    "NOVELAI_API_KEY",
    "XAI_API_KEY",
    "DASHSCOPE_API_KEY",
    "FAL_KEY",
    "RUNPOD_API_KEY",
    "RUNPOD_ENDPOINT_ID",
    "PROVIDER_ORDER",
    "RETRY_MAX_ATTEMPTS",
    "RETRY_BACKOFF_SECONDS",
    "MATTING_FEATHER",
    "FAL_DEADLINE",
    "DASHSCOPE_POLL_INTERVAL",
    "GEMINI_API_KEY",
    "GEMINI_IMAGE_MODELS",
    "STABILITY_API_KEY",
]


@pytest.fixture
def env(monkeypatch, tmp_path):
    # setenv first so monkeypatch also undoes anything a .env file loads later
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "placeholder")
        monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def test_only_credentialed_backends_are_configured(env):
    env.setenv("REPLICATE_API_TOKEN", "r8_x")
    env.setenv("FAL_KEY", "fal-x")
    env.setenv("RUNPOD_API_KEY", "rp-x")  # no endpoint id

    config = load_config()

    assert config.configured_providers() == ["replicate", "fal"]
    assert config.runpod is None
    assert config.retry.max_attempts == 3
    assert config.matting.feather == 15.0


def test_env_overrides(env):
    env.setenv("FAL_KEY", "fal-x")
    env.setenv("FAL_DEADLINE", "45")
    env.setenv("RETRY_BACKOFF_SECONDS", "0.5")
    env.setenv("MATTING_FEATHER", "8")

    config = load_config()

    assert config.fal.deadline_seconds == 45.0
    assert config.retry.backoff_base_seconds == 0.5
    assert config.matting.feather == 8.0


def test_dotenv_file_is_read(env, tmp_path):
    dotenv = tmp_path / "backends.env"
    dotenv.write_text("DASHSCOPE_API_KEY=sk-from-file\n")

    config = load_config(dotenv)

    assert config.dashscope is not None
    assert config.dashscope.api_key == "sk-from-file"


@pytest.mark.parametrize(
    "key, value",
    [("RETRY_MAX_ATTEMPTS", "0"), ("RETRY_MAX_ATTEMPTS", "many"), ("MATTING_FEATHER", "-1")],
)
def test_invalid_values_raise(env, key, value):
    env.setenv(key, value)
    with pytest.raises(RuntimeError):
        load_config()


def test_registry_orders_chains_by_preference(env):
    env.setenv("REPLICATE_API_TOKEN", "r8_x")
    env.setenv("NOVELAI_API_KEY", "pst-x")
    env.setenv("XAI_API_KEY", "xai-x")
    env.setenv("FAL_KEY", "fal-x")
    env.setenv("RUNPOD_API_KEY", "rp-x")
    env.setenv("RUNPOD_ENDPOINT_ID", "ep1")
    env.setenv("PROVIDER_ORDER", "grok, novelai, bogus")

    registry = ProviderRegistry.from_config(load_config())
    try:
        edit_chain = [adapter.name for adapter in registry.chain_for(Purpose.OUTFIT_EDIT)]
        portrait_chain = [adapter.name for adapter in registry.chain_for(Purpose.PORTRAIT)]
    finally:
        asyncio.run(registry.aclose())

    assert edit_chain == ["grok", "runpod", "fal"]
    assert portrait_chain == ["novelai", "replicate"]


def test_zero_poll_interval_is_rejected(env):
    env.setenv("DASHSCOPE_API_KEY", "sk-x")
    env.setenv("DASHSCOPE_POLL_INTERVAL", "0")

    with pytest.raises(RuntimeError):
        load_config()


def test_gemini_leads_the_portrait_chain(env):
    env.setenv("REPLICATE_API_TOKEN", "r8_x")
    env.setenv("GEMINI_API_KEY", "g-x")
    env.setenv("GEMINI_IMAGE_MODELS", "gemini-2.5-flash-image, gemini-2.0-flash-exp-image-generation")
    env.setenv("FAL_KEY", "fal-x")

    config = load_config()
    registry = ProviderRegistry.from_config(config)
    try:
        portrait_chain = [adapter.name for adapter in registry.chain_for(Purpose.PORTRAIT)]
        edit_chain = [adapter.name for adapter in registry.chain_for(Purpose.EXPRESSION_EDIT)]
    finally:
        asyncio.run(registry.aclose())

    assert config.gemini.models == ("gemini-2.5-flash-image", "gemini-2.0-flash-exp-image-generation")
    assert portrait_chain == ["gemini", "replicate"]
    assert edit_chain == ["fal", "gemini"]


def test_hosted_matting_is_opt_in(env):
    assert load_config().stability is None

    env.setenv("STABILITY_API_KEY", "sk-stab")
    config = load_config()

    assert config.stability.api_key == "sk-stab"
    assert config.stability.api_url == "https://api.stability.ai/v2beta"
    assert "stability" not in config.configured_providers()
