from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path


class PromptLoadError(RuntimeError):
    pass


def prompts_dir() -> Path:
    """`GM_PROMPTS_DIR` if set, else `prompts/` at the project root."""

    override = os.environ.get("GM_PROMPTS_DIR")
    if override:
        return Path(override)
    return Path(__file__).resolve().parents[1] / "prompts"


@lru_cache(maxsize=32)
def _read(path: Path) -> str:
    return path.read_text(encoding="utf-8").strip() + "\n"


def load_prompt(name: str) -> str:
    path = prompts_dir() / name
    try:
        return _read(path)
    except FileNotFoundError as e:
        raise PromptLoadError(f"Prompt not found: {path}") from e
