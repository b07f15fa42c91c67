"""
Prompt Infrastructure (Infrastructure Layer)

Qué es
------
Facade/Barrel del paquete `infrastructure.prompts`.
Expone una API pública estable para cargar templates versionados.
"""

from .loader import (
    COMBINE,
    ENHANCE,
    SUMMARY_LONG,
    SUMMARY_SHORT,
    PromptLoader,
    PromptMetadata,
    get_prompt_loader,
    parse_frontmatter,
)

__all__ = [
    "COMBINE",
    "ENHANCE",
    "SUMMARY_LONG",
    "SUMMARY_SHORT",
    "PromptLoader",
    "PromptMetadata",
    "get_prompt_loader",
    "parse_frontmatter",
]
