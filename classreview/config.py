"""Runtime settings read from the environment."""

import os
from typing import List

DEFAULT_STORE_DIR = "./data"
DEFAULT_MODEL = "gpt-4o-mini"


def get_template_store_dir() -> str:
    """Directory holding the persisted template collection."""
    return os.getenv('TEMPLATE_STORE_DIR', DEFAULT_STORE_DIR)


def get_default_model() -> str:
    return os.getenv('DEFAULT_MODEL', DEFAULT_MODEL)


def get_max_upload_size() -> int:
    """Upload limit in bytes."""
    return int(os.getenv('MAX_UPLOAD_SIZE_MB', '10')) * 1024 * 1024


def get_appreciation_max_chars() -> int:
    return int(os.getenv('APPRECIATION_MAX_CHARS', '500'))


def get_pdf_structure_threshold() -> float:
    return float(os.getenv('PDF_STRUCTURE_THRESHOLD', '3.0'))


def get_pdf_ignore_patterns() -> List[str]:
    """Regexes for boilerplate text, separated by '||' (regexes may contain '|')."""
    raw = os.getenv('PDF_IGNORE_PATTERNS', '')
    return [p.strip() for p in raw.split('||') if p.strip()]


def get_allow_origins() -> List[str]:
    return os.getenv('ALLOW_ORIGINS', '*').split(',')


def is_debug() -> bool:
    return os.getenv('DEBUG', 'False').lower() == 'true'
