"""Reference documents injected into the chat system instruction.

The municipal surtax tables (addizionali comunali) are large and only
sent when the caller opts in. They are read from the file configured in
GATEWAY_TAX_TABLES_PATH, falling back to the bundled excerpt.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from bustapaga.config import settings

logger = logging.getLogger(__name__)

_BUNDLED_TAX_TABLES = Path(__file__).resolve().parent.parent / "data" / "addizionali_comunali.txt"

TAX_TABLES_HEADER = "--- INIZIO DOCUMENTO ADDIZIONALI COMUNALI ---"
TAX_TABLES_FOOTER = "--- FINE DOCUMENTO ADDIZIONALI COMUNALI ---"


@lru_cache(maxsize=4)
def _read_text(path: str) -> str:
    return Path(path).read_text(encoding="utf-8").strip()


def load_tax_tables() -> str | None:
    """Return the municipal surtax reference text, or None if unavailable."""
    configured = settings.gateway.tax_tables_path
    candidates = [Path(configured)] if configured else []
    candidates.append(_BUNDLED_TAX_TABLES)

    for path in candidates:
        if path.is_file():
            text = _read_text(str(path))
            if text:
                return text
        elif path != _BUNDLED_TAX_TABLES:
            logger.warning("Tax tables file not found: %s", path)

    logger.warning("No municipal surtax tables available; answering without them")
    return None


def tax_tables_block() -> str:
    """Delimited block for the system instruction ("" if no tables)."""
    text = load_tax_tables()
    if text is None:
        return ""
    return f"\n{TAX_TABLES_HEADER}\n{text}\n{TAX_TABLES_FOOTER}\n"
