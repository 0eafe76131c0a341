"""
Versioned prompt templates stored as text files beside this module.
"""

from functools import lru_cache
from pathlib import Path

PROMPT_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=None)
def load_prompt(version: str) -> str:
    """Return the prompt text for a version name such as ``extractor_v1``."""
    path = PROMPT_DIR / f"{version}.txt"
    if not path.is_file():
        raise FileNotFoundError(f"Unknown prompt version: {version}")
    return path.read_text(encoding="utf-8").strip()
