"""Model and prompt registries backing the spam classifier.

The model registry is a YAML document mapping ``model_type -> version ->
model id``. The prompt registry is a JSON document listing prompt versions
with their system message and an optional Jinja2 template for the user
message; ``current_version`` names the prompt used by default.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping

import yaml
from jinja2 import Environment, StrictUndefined, TemplateError

from spamwatch.errors import RegistryError

LOGGER = logging.getLogger(__name__)

DEFAULT_USER_TEMPLATE = "{{ metadata_json }}"

_TEMPLATE_ENV = Environment(autoescape=False, undefined=StrictUndefined, trim_blocks=True, lstrip_blocks=True)

# Shape of ContractMetadata.classification_view(); user templates must render against it.
SAMPLE_VIEW: Dict[str, Any] = {
    "chain_id": 1,
    "address": "0x" + "0" * 40,
    "name": "Sample Collection",
    "symbol": "SAMPLE",
    "description": "Sample description",
    "contract_type": "ERC721",
}


class ModelRegistry:
    """Resolve ``(model_type, version)`` to a concrete completion model id."""

    def __init__(self, models: Mapping[str, Mapping[str, str]]) -> None:
        cleaned: Dict[str, Dict[str, str]] = {}
        for model_type, versions in models.items():
            if not isinstance(versions, Mapping) or not versions:
                raise RegistryError(f"model type {model_type!r} has no versions")
            cleaned[str(model_type)] = {}
            for version, model_id in versions.items():
                if not isinstance(model_id, str) or not model_id.strip():
                    raise RegistryError(f"model {model_type}/{version} has an empty id")
                cleaned[str(model_type)][str(version)] = model_id.strip()
        self._models = cleaned

    @classmethod
    def from_yaml(cls, path: Path) -> "ModelRegistry":
        try:
            with Path(path).open("r", encoding="utf-8") as handle:
                document = yaml.safe_load(handle) or {}
        except FileNotFoundError as exc:
            raise RegistryError(f"model registry not found: {path}") from exc
        except yaml.YAMLError as exc:
            raise RegistryError(f"invalid YAML in model registry {path}") from exc
        models = document.get("model_registry") if isinstance(document, Mapping) else None
        if not isinstance(models, Mapping) or not models:
            raise RegistryError(f"{path} does not define a 'model_registry' mapping")
        return cls(models)

    def model_types(self) -> List[str]:
        return sorted(self._models)

    def versions(self, model_type: str) -> List[str]:
        return sorted(self._models.get(model_type, {}))

    def resolve(self, model_type: str, version: str = "latest") -> str:
        versions = self._models.get(model_type)
        if versions is None:
            raise RegistryError(f"unknown model type: {model_type!r}")
        model_id = versions.get(version)
        if model_id is None:
            raise RegistryError(f"unknown version {version!r} for model type {model_type!r}")
        return model_id


@dataclass(frozen=True, slots=True)
class PromptVersion:
    """One prompt revision."""

    version: str
    system_message: str
    user_template: str = DEFAULT_USER_TEMPLATE
    date: str | None = None
    description: str | None = None

    def render_user_message(self, view: Mapping[str, Any]) -> str:
        """Render the user turn for a contract's classification view."""

        metadata_json = json.dumps(dict(view), sort_keys=True, ensure_ascii=False)
        try:
            return _TEMPLATE_ENV.from_string(self.user_template).render(metadata=view, metadata_json=metadata_json)
        except (TemplateError, TypeError, ValueError) as exc:
            raise RegistryError(f"prompt {self.version} has an invalid user template: {exc}") from exc


class PromptRegistry:
    """Versioned system prompts."""

    def __init__(self, versions: List[PromptVersion], current_version: str) -> None:
        if not versions:
            raise RegistryError("prompt registry has no versions")
        by_version: Dict[str, PromptVersion] = {}
        for prompt in versions:
            if prompt.version in by_version:
                raise RegistryError(f"duplicate prompt version: {prompt.version}")
            if not prompt.system_message.strip():
                raise RegistryError(f"prompt {prompt.version} has an empty system message")
            prompt.render_user_message(SAMPLE_VIEW)
            by_version[prompt.version] = prompt
        if current_version not in by_version:
            raise RegistryError(f"current prompt version {current_version!r} is not defined")
        self._versions = by_version
        self.current_version = current_version

    @classmethod
    def from_json(cls, path: Path) -> "PromptRegistry":
        try:
            document = json.loads(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise RegistryError(f"prompt registry not found: {path}") from exc
        except json.JSONDecodeError as exc:
            raise RegistryError(f"invalid JSON in prompt registry {path}") from exc
        if not isinstance(document, Mapping):
            raise RegistryError(f"{path} must contain a JSON object")
        raw_versions = document.get("versions") or []
        versions: List[PromptVersion] = []
        for raw in raw_versions:
            if not isinstance(raw, Mapping) or not raw.get("version"):
                raise RegistryError(f"{path} contains a prompt without a version")
            versions.append(
                PromptVersion(
                    version=str(raw["version"]),
                    system_message=str(raw.get("system_message") or ""),
                    user_template=str(raw.get("user_template") or DEFAULT_USER_TEMPLATE),
                    date=raw.get("date"),
                    description=raw.get("description"),
                )
            )
        current = document.get("current_version") or (versions[-1].version if versions else "")
        return cls(versions, str(current))

    def versions(self) -> List[str]:
        return list(self._versions)

    def get(self, version: str | None = None) -> PromptVersion:
        key = version or self.current_version
        prompt = self._versions.get(key)
        if prompt is None:
            raise RegistryError(f"unknown prompt version: {key!r}")
        return prompt


__all__ = ["ModelRegistry", "PromptRegistry", "PromptVersion", "DEFAULT_USER_TEMPLATE"]
