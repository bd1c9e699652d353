from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent

MEMORY_STORE = ":memory:"
OUTPUT_CONTRACTS = ("strict", "free_text")


@dataclass(frozen=True)
class Settings:
    """Configuration container for the model, stores, catalog, and server."""
    gemini_api_key: str
    gemini_model: str
    temperature: float
    output_contract: str
    history_window: int
    store_path: Optional[Path]
    submissions_path: Optional[Path]
    catalog_path: Path
    prompts_dir: Path
    host: str
    port: int
    log_level: str


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Invalid numeric env values or an unknown OUTPUT_CONTRACT
        raise ValueError.
    If Removed: The app cannot configure the model, stores, or port at startup.
    Testing Notes: Verify defaults and overrides via monkeypatched environment.
    """
    # Resolve store/catalog paths, then validate the scalar options.
    output_contract = os.getenv("OUTPUT_CONTRACT", "strict").strip().lower()
    if output_contract not in OUTPUT_CONTRACTS:
        raise ValueError(
            f"OUTPUT_CONTRACT must be one of {', '.join(OUTPUT_CONTRACTS)}, got {output_contract!r}"
        )

    history_window = int(os.getenv("HISTORY_WINDOW", "10"))
    if history_window <= 0:
        raise ValueError("HISTORY_WINDOW must be a positive integer")

    catalog_path = os.getenv("CATALOG_PATH")
    if catalog_path:
        catalog_file = Path(catalog_path)
    else:
        catalog_file = (BASE_DIR / "resources" / "careers.json").resolve()

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-1.5-flash"),
        temperature=float(os.getenv("GEMINI_TEMPERATURE", "0.4")),
        output_contract=output_contract,
        history_window=history_window,
        store_path=_resolve_store_path("STORE_PATH", "vocational_store.json"),
        submissions_path=_resolve_store_path("SUBMISSIONS_PATH", "questionnaires.json"),
        catalog_path=catalog_file,
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "5000")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def _resolve_store_path(env_name: str, default_file: str) -> Optional[Path]:
    """Map a store env var to a file path; ``:memory:`` means no file."""
    value = os.getenv(env_name)
    if value is None or not value.strip():
        return (BASE_DIR / "data" / default_file).resolve()
    if value.strip() == MEMORY_STORE:
        return None
    return Path(value.strip())
