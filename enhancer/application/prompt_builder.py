"""
===============================================================================
MÓDULO: Prompt Builder — composición de instrucciones para el proveedor
===============================================================================

Responsabilidades:
  - Componer la system instruction de mejora:
      template base + nota de parte + emojis + contexto del sitio
      + instrucciones permanentes + título
  - Componer instrucciones de resumen (largo / corto) y de combinación.
  - Armar el mensaje de usuario con el encabezado esperado.

Colaboradores:
  - infrastructure/prompts (PromptLoader: templates versionados)
  - application/pipeline.py, application/summaries.py
===============================================================================
"""

from __future__ import annotations

from typing import Final, Optional, Sequence

from ..infrastructure.prompts import (
    COMBINE,
    ENHANCE,
    SUMMARY_LONG,
    SUMMARY_SHORT,
    PromptLoader,
)

_SITE_HEADER: Final[str] = "## Site-Specific Context:"
_PERMANENT_HEADER: Final[str] = "## Always Follow These Instructions:"
_TITLE_HEADER: Final[str] = "### Title:"

_ENHANCE_CONTENT_HEADER: Final[str] = "### Content to Enhance:"
_SUMMARY_CONTENT_HEADER: Final[str] = "### Content to Summarize:"
_PARTIAL_SUMMARIES_HEADER: Final[str] = "### Partial Summaries:"

_EMOJI_INSTRUCTION: Final[str] = (
    "Additional instruction: Add appropriate emojis next to dialogues to "
    "enhance emotional expressions. Place the emoji immediately after the "
    "quotation marks that end the dialogue. For example: \"I'm so happy!\" 😊 "
    "she said. Choose emojis that fit the emotion being expressed."
)


def _part_note(part: int, total: int, verb: str) -> str:
    return (
        f"Note: This is part {part} of {total} parts. Please {verb} this part "
        "while maintaining consistency with other parts."
    )


def combine_prompts(
    main_prompt: str, permanent_prompt: str = "", site_prompt: str = ""
) -> str:
    """Agrega contexto del sitio e instrucciones permanentes (si existen)."""
    combined = main_prompt
    if site_prompt and site_prompt.strip():
        combined += f"\n\n{_SITE_HEADER}\n{site_prompt.strip()}"
    if permanent_prompt and permanent_prompt.strip():
        combined += f"\n\n{_PERMANENT_HEADER}\n{permanent_prompt.strip()}"
    return combined


class PromptBuilder:
    def __init__(self, loader: PromptLoader) -> None:
        self._loader = loader

    def enhancement_instructions(
        self,
        *,
        title: str = "",
        part: int = 1,
        total: int = 1,
        use_emoji: bool = False,
        site_prompt: str = "",
        permanent_prompt: str = "",
    ) -> str:
        prompt = self._loader.get_template(ENHANCE)
        if total > 1:
            prompt += "\n\n" + _part_note(part, total, "enhance")
        if use_emoji:
            prompt += "\n\n" + _EMOJI_INSTRUCTION
        return self._with_title(
            combine_prompts(prompt, permanent_prompt, site_prompt), title
        )

    def summary_instructions(
        self,
        *,
        title: str = "",
        short: bool = False,
        part: Optional[int] = None,
        total: Optional[int] = None,
        permanent_prompt: str = "",
    ) -> str:
        prompt = self._loader.get_template(SUMMARY_SHORT if short else SUMMARY_LONG)
        if part is not None and total and total > 1:
            prompt += "\n\n" + _part_note(part, total, "summarize")
        return self._with_title(combine_prompts(prompt, permanent_prompt), title)

    def combine_instructions(self, *, title: str = "", permanent_prompt: str = "") -> str:
        prompt = self._loader.get_template(COMBINE)
        return self._with_title(combine_prompts(prompt, permanent_prompt), title)

    @staticmethod
    def enhancement_message(content: str) -> str:
        return f"{_ENHANCE_CONTENT_HEADER}\n{content}"

    @staticmethod
    def summary_message(content: str) -> str:
        return f"{_SUMMARY_CONTENT_HEADER}\n{content}"

    @staticmethod
    def combine_message(summaries: Sequence[str]) -> str:
        total = len(summaries)
        parts = "\n\n".join(
            f"Part {i}/{total}:\n{summary}" for i, summary in enumerate(summaries, 1)
        )
        return f"{_PARTIAL_SUMMARIES_HEADER}\n{parts}"

    @staticmethod
    def _with_title(prompt: str, title: str) -> str:
        return f"{prompt}\n\n{_TITLE_HEADER}\n{title}" if title else prompt
