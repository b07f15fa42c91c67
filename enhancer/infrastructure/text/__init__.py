"""Text processing: splitter and preserved media placeholders"""

from .models import Paragraph
from .placeholders import ProtectedText, protect_elements, restore_elements
from .splitter import (
    ParagraphSplitter,
    count_words,
    extract_paragraphs,
    is_structured,
    split_content,
    validate_chunk_size,
)

__all__ = [
    "Paragraph",
    "ParagraphSplitter",
    "ProtectedText",
    "count_words",
    "extract_paragraphs",
    "is_structured",
    "protect_elements",
    "restore_elements",
    "split_content",
    "validate_chunk_size",
]
