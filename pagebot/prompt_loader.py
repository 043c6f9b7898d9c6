from __future__ import annotations

from pathlib import Path


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Load a prompt template as UTF-8 text, stripping a BOM if present.
    Inputs/Outputs: Input is a Path to the prompt file; output is the template string.
    Side Effects / State: Reads the filesystem.
    Dependencies: Used by the AI assistant for expansion and answer prompts.
    Failure Modes: Missing files raise OSError; undecodable bytes are dropped.
    If Removed: LLM calls have no instructions and the AI path falls back to raw text.
    Testing Notes: Validate BOM-stripping and tolerant decoding.
    """
    # Prefer strict UTF-8 and fall back to a lossy decode.
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("\ufeff")
    except UnicodeDecodeError:
        raw = prompt_path.read_bytes()
        return raw.decode("utf-8", errors="ignore").lstrip("\ufeff")


def fill_prompt(template: str, **values: object) -> str:
    """Replace <<NAME>> placeholders with the given values."""
    filled = template
    for name, value in values.items():
        filled = filled.replace(f"<<{name.upper()}>>", str(value))
    return filled
