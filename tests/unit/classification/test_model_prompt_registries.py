"""Tests for the model and prompt registries."""

from __future__ import annotations

import json

import pytest

from spamwatch.classification import ModelRegistry, PromptRegistry, PromptVersion
from spamwatch.errors import RegistryError
from spamwatch.settings.config import CONFIG_DIR


def test_shipped_model_registry_resolves_versions() -> None:
    registry = ModelRegistry.from_yaml(CONFIG_DIR / "models.yaml")

    assert registry.model_types() == ["spam_classification"]
    assert registry.resolve("spam_classification") == registry.resolve("spam_classification", "v2")
    assert registry.resolve("spam_classification", "local") == "llama3"
    assert "v1" in registry.versions("spam_classification")


def test_model_registry_rejects_unknown_lookups() -> None:
    registry = ModelRegistry({"spam_classification": {"latest": "model-a"}})

    with pytest.raises(RegistryError):
        registry.resolve("scam_detection")
    with pytest.raises(RegistryError):
        registry.resolve("spam_classification", "v9")


def test_model_registry_file_errors(tmp_path) -> None:
    with pytest.raises(RegistryError):
        ModelRegistry.from_yaml(tmp_path / "missing.yaml")

    no_section = tmp_path / "models.yaml"
    no_section.write_text("other: {}\n", encoding="utf-8")
    with pytest.raises(RegistryError):
        ModelRegistry.from_yaml(no_section)

    empty_id = tmp_path / "empty.yaml"
    empty_id.write_text("model_registry:\n  spam_classification:\n    latest: ''\n", encoding="utf-8")
    with pytest.raises(RegistryError):
        ModelRegistry.from_yaml(empty_id)


def test_shipped_prompt_registry_uses_current_version() -> None:
    registry = PromptRegistry.from_json(CONFIG_DIR / "prompts.json")

    assert registry.current_version == "v2"
    assert registry.get().version == "v2"
    assert registry.get("v1").user_template == "{{ metadata_json }}"
    assert registry.versions() == ["v1", "v2"]


def test_prompt_renders_metadata_json() -> None:
    prompt = PromptVersion(
        version="v9",
        system_message="classify",
        user_template="Name: {{ metadata.name }}\n{{ metadata_json }}",
    )

    rendered = prompt.render_user_message({"symbol": "X", "name": "Token"})

    assert rendered.splitlines()[0] == "Name: Token"
    assert json.loads(rendered.splitlines()[1]) == {"name": "Token", "symbol": "X"}
    assert rendered.splitlines()[1].index('"name"') < rendered.splitlines()[1].index('"symbol"')


def test_prompt_with_undefined_variable_fails() -> None:
    prompt = PromptVersion(version="v9", system_message="classify", user_template="{{ missing }}")

    with pytest.raises(RegistryError):
        prompt.render_user_message({"name": "Token"})


@pytest.mark.parametrize(
    "document",
    [
        {"current_version": "v3", "versions": [{"version": "v1", "system_message": "a"}]},
        {"versions": []},
        {"versions": [{"version": "v1", "system_message": "a"}, {"version": "v1", "system_message": "b"}]},
        {"versions": [{"version": "v1", "system_message": "   "}]},
        {"versions": [{"system_message": "a"}]},
    ],
)
def test_invalid_prompt_registries(tmp_path, document) -> None:
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps(document), encoding="utf-8")

    with pytest.raises(RegistryError):
        PromptRegistry.from_json(path)


def test_prompt_registry_defaults_to_last_version(tmp_path) -> None:
    path = tmp_path / "prompts.json"
    path.write_text(
        json.dumps({"versions": [{"version": "v1", "system_message": "a"}, {"version": "v2", "system_message": "b"}]}),
        encoding="utf-8",
    )

    assert PromptRegistry.from_json(path).get().system_message == "b"


def test_prompt_registry_rejects_templates_that_do_not_fit_the_view() -> None:
    with pytest.raises(RegistryError) as excinfo:
        PromptRegistry([PromptVersion("v9", "classify", user_template="{{ metadata.holder_count }}")], "v9")

    assert "v9" in str(excinfo.value)


def test_prompt_registry_file_with_broken_template_fails_on_load(tmp_path) -> None:
    path = tmp_path / "prompts.json"
    path.write_text(
        json.dumps({"versions": [{"version": "v1", "system_message": "a", "user_template": "{{ metadata.name "}]}),
        encoding="utf-8",
    )

    with pytest.raises(RegistryError):
        PromptRegistry.from_json(path)
