"""Provider clients (Gemini + deterministic fake)"""

from .fake_client import FakeEnhancementClient, fake_enhance
from .gemini_client import GeminiEnhancementClient

__all__ = [
    "FakeEnhancementClient",
    "GeminiEnhancementClient",
    "fake_enhance",
]
