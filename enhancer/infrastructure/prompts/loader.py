"""
Name: Prompt Loader (Versioned Templates with Frontmatter)

Responsibilities:
  - Load versioned prompt templates per capability (enhance, summaries, combine)
  - Parse YAML-like frontmatter for metadata
  - Support safe versioning via settings (v1, v2, ...)
  - Cache loaded templates in-memory per instance
  - Fallback to v1 if the configured version template is missing

Collaborators:
  - crosscutting.config.get_settings (prompt_version, prompt_lang)
  - enhancer/prompts/{capability}/{version}_{lang}.md
  - application/prompt_builder.py (composes final instructions)

Patterns:
  - Repository-like (filesystem-backed templates)
  - Frontmatter parsing for metadata
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict

from ...crosscutting.logger import logger

PROMPTS_DIR = (Path(__file__).resolve().parents[2] / "prompts").resolve()

# Capabilities (subdirectories)
ENHANCE = "enhance"
SUMMARY_LONG = "summary_long"
SUMMARY_SHORT = "summary_short"
COMBINE = "combine"

DEFAULT_LANG = "en"

_VERSION_RE = re.compile(r"^v\d+$")
_LANG_RE = re.compile(r"^[a-z]{2}$")
_CAPABILITY_RE = re.compile(r"^[a-z_]+$")
_FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)


@dataclass
class PromptMetadata:
    """R: Parsed frontmatter metadata from prompt file."""

    type: str = ""
    version: str = ""
    lang: str = ""
    description: str = ""
    updated: str = ""
    inputs: list[str] = field(default_factory=list)


def parse_frontmatter(content: str) -> tuple[PromptMetadata, str]:
    """
    R: Parse frontmatter from markdown content.

    Returns:
        Tuple of (metadata, body_without_frontmatter)
    """
    match = _FRONTMATTER_RE.match(content)
    if not match:
        return PromptMetadata(), content

    metadata = PromptMetadata()
    current_key = ""

    for line in match.group(1).split("\n"):
        line = line.rstrip()
        if not line or line.startswith("#"):
            continue

        if line.strip().startswith("- "):
            if current_key == "inputs":
                metadata.inputs.append(line.strip()[2:].strip())
            continue

        if ":" in line and not line.startswith(" "):
            key, _, value = line.partition(":")
            current_key = key.strip()
            value = value.strip().strip('"').strip("'")
            if value in (">", "[]"):
                continue
            if current_key in ("type", "version", "lang", "description", "updated"):
                setattr(metadata, current_key, value)
        elif current_key == "description" and line.strip():
            # Continuation of multiline description
            metadata.description = f"{metadata.description} {line.strip()}".strip()

    return metadata, content[match.end() :]


class PromptLoader:
    """
    R: Load and cache prompt templates by capability + version.

    CRC:
      Responsibilities:
        - Resolve safe prompt paths (no traversal via version/lang/capability)
        - Load template bodies with frontmatter parsing
        - Cache per capability
      Collaborators:
        - filesystem (Path.read_text)
        - config (prompt_version, prompt_lang)
    """

    def __init__(
        self,
        version: str = "v1",
        lang: str = DEFAULT_LANG,
        *,
        prompts_dir: Path = PROMPTS_DIR,
    ):
        self.version = self._validate(version, _VERSION_RE, "version")
        self.lang = self._validate(lang, _LANG_RE, "lang")
        self._prompts_dir = prompts_dir
        self._cache: Dict[str, tuple[PromptMetadata, str]] = {}

    def get_template(self, capability: str) -> str:
        """R: Body of the template for `capability` (cached)."""
        return self._load(capability)[1].strip()

    def metadata(self, capability: str) -> PromptMetadata:
        return self._load(capability)[0]

    @staticmethod
    def _validate(value: str, pattern: re.Pattern[str], name: str) -> str:
        v = (value or "").strip()
        if not pattern.match(v):
            raise ValueError(f"Invalid prompt {name} '{value}'")
        return v

    def _template_path(self, capability: str, version: str) -> Path:
        return self._prompts_dir / capability / f"{version}_{self.lang}.md"

    def _load(self, capability: str) -> tuple[PromptMetadata, str]:
        self._validate(capability, _CAPABILITY_RE, "capability")
        cached = self._cache.get(capability)
        if cached is None:
            cached = self._load_with_fallback(capability)
            self._cache[capability] = cached
        return cached

    def _load_for_version(
        self, capability: str, version: str
    ) -> tuple[PromptMetadata, str]:
        path = self._template_path(capability, version)
        if not path.exists():
            raise FileNotFoundError(f"Prompt template not found: {path}")

        metadata, body = parse_frontmatter(path.read_text(encoding="utf-8"))

        logger.info(
            "Loaded prompt template",
            extra={"capability": capability, "version": version, "chars": len(body)},
        )
        return metadata, body

    def _load_with_fallback(self, capability: str) -> tuple[PromptMetadata, str]:
        try:
            return self._load_for_version(capability, self.version)
        except FileNotFoundError:
            if self.version != "v1":
                logger.warning(
                    "Prompt template missing; falling back to v1",
                    extra={"capability": capability, "requested_version": self.version},
                )
                return self._load_for_version(capability, "v1")
            raise


@lru_cache
def get_prompt_loader() -> PromptLoader:
    """R: Singleton PromptLoader configured by settings."""
    from ...crosscutting.config import get_settings

    settings = get_settings()
    return PromptLoader(version=settings.prompt_version, lang=settings.prompt_lang)
