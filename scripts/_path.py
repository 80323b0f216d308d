"""Import-path and environment bootstrap shared by the operational scripts."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Sequence

REPO_ROOT = Path(__file__).resolve().parent.parent


def bootstrap(context: str, *, required: Sequence[str] = ("DATABASE_URL",)) -> None:
    """Put the repository root on ``sys.path``, load ``.env`` and check required variables."""

    root_str = str(REPO_ROOT)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)

    from core.env_utils import load_dotenv_if_available, require_env_vars

    load_dotenv_if_available(REPO_ROOT / ".env")
    require_env_vars(required, context=context)
