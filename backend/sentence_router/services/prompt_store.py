"""
Prompt Store - versioned prompt templates.

Templates are external and immutable: loaded once from YAML, never mutated.
Rendering substitutes {placeholder} tokens in a single pass, so substituted
values are never scanned again. Literal JSON braces and unknown tokens in
templates are left alone.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from sentence_router.services.pipeline_errors import ConfigurationError

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


class PromptStore:
    """
    Usage:
        store = PromptStore.from_file(path)
        prompt = store.render("sentence_to_json", "v1", sentence="...")
    """

    def __init__(self, prompts: Dict[str, dict]):
        self._prompts = prompts

    @classmethod
    def from_file(cls, path: Path) -> "PromptStore":
        """Load prompt templates. Raises ConfigurationError if missing or malformed."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Prompt file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse prompt file {path}: {e}") from e

        prompts = data.get("prompts") if isinstance(data, dict) else None
        if not isinstance(prompts, dict):
            raise ConfigurationError(f"Prompt file {path} has no 'prompts' section")

        logger.info(f"Loaded {len(prompts)} prompt templates from {path}")
        return cls(prompts)

    def get(self, name: str, version: Optional[str] = None) -> Optional[str]:
        """
        Get a template by name and optional version.

        Falls back to the default version when the requested one is absent.
        Returns None for unknown prompt names.
        """
        entry = self._prompts.get(name)
        if entry is None:
            return None

        versions = entry.get("versions") or {}
        default_version = entry.get("default_version")
        version_key = version or default_version

        if version_key in versions:
            return versions[version_key]["template"]

        logger.warning(
            f"Prompt version {version_key} not found for {name}, falling back to default"
        )
        default = versions.get(default_version)
        return default["template"] if default else None

    def render(self, name: str, version: Optional[str] = None, /, **values: str) -> str:
        """Substitute {placeholder} tokens. Raises ConfigurationError if the template is missing."""
        template = self.get(name, version)
        if template is None:
            raise ConfigurationError(f"Prompt template not found: {name} (version {version})")

        return PLACEHOLDER_PATTERN.sub(lambda m: values.get(m.group(1), m.group(0)), template)

    def list_versions(self, name: str) -> Optional[List[str]]:
        entry = self._prompts.get(name)
        if entry is None:
            return None
        return list((entry.get("versions") or {}).keys())

    def default_version(self, name: str) -> Optional[str]:
        entry = self._prompts.get(name)
        return entry.get("default_version") if entry else None
