import os
import posixpath
import random
import time
from typing import Callable, Optional

# Random part of the suffix is drawn from [0, RANDOM_UPPER_BOUND]
RANDOM_UPPER_BOUND = 10 ** 9
MAX_ATTEMPTS = 100
DEFAULT_BASE_NAME = "file"


def split_original_name(original_name: str) -> tuple:
    """Split a client supplied filename into (base, extension).

    Only the last path component is kept, so "docs/report.final.pdf" becomes
    ("report.final", ".pdf") and ".bashrc" becomes (".bashrc", "").
    """
    name = posixpath.basename((original_name or "").replace("\\", "/"))
    base, ext = os.path.splitext(name)
    return base or DEFAULT_BASE_NAME, ext


def generate_unique_filename(
    original_name: str,
    exists: Optional[Callable[[str], bool]] = None,
    now: Optional[Callable[[], float]] = None,
) -> str:
    """Generate an on-disk name of the form <base>-<millis>-<random><ext>.

    Uniqueness is probabilistic. When ``exists`` is given, candidates it
    reports as taken are redrawn so an existing name is never handed out twice.
    """
    base, ext = split_original_name(original_name)
    clock = now or time.time

    for _ in range(MAX_ATTEMPTS):
        suffix = f"{int(clock() * 1000)}-{random.randint(0, RANDOM_UPPER_BOUND)}"
        candidate = f"{base}-{suffix}{ext}"
        if exists is None or not exists(candidate):
            return candidate

    raise RuntimeError(f"Could not generate a unique filename for {original_name!r}")
