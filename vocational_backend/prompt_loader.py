from __future__ import annotations

import re
from pathlib import Path

PLACEHOLDER_RE = re.compile(r"<<([A-Z_]+)>>")


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Load a prompt template as UTF-8 text and strip BOM if present.
    Inputs/Outputs: Input is a Path to the template file; output is the decoded string.
    Side Effects / State: None; pure function reading the filesystem.
    Dependencies: Uses Path.read_text/read_bytes; used by the prompt builder.
    Failure Modes: UnicodeDecodeError triggers a fallback decode with errors ignored,
        which can drop invalid bytes. A missing file raises FileNotFoundError.
    If Removed: Chat prompts cannot be rendered and every turn fails.
    Testing Notes: Validate BOM-stripping and fallback decoding on non-UTF8 files.
    """
    # Read as UTF-8 and fall back to a tolerant decode if needed.
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("\ufeff")
    except UnicodeDecodeError:
        raw = prompt_path.read_bytes()
        text = raw.decode("utf-8", errors="ignore")
        return text.lstrip("\ufeff")


def render_template(template: str, values: dict) -> str:
    """Substitute ``<<KEY>>`` placeholders in one pass; unknown keys are left as-is."""
    return PLACEHOLDER_RE.sub(
        lambda match: str(values[match.group(1)]) if match.group(1) in values else match.group(0),
        template,
    )
