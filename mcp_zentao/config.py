"""Environment resolution for the ZenTao connection settings."""

import logging
import os
import re
from collections.abc import Iterable
from pathlib import Path

from dotenv import dotenv_values

from .models import ZenTaoConfig

logger = logging.getLogger(__name__)

ENV_BASE_URL = "ZENTAO_BASE_URL"
ENV_ACCOUNT = "ZENTAO_ACCOUNT"
ENV_PASSWORD = "ZENTAO_PASSWORD"  # noqa: S105
ENV_TOKEN = "ZENTAO_TOKEN"  # noqa: S105
ENV_TIMEOUT = "ZENTAO_TIMEOUT"

# export KEY=value, KEY="value", KEY='value'
_ASSIGNMENT_RE = re.compile(r"""^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=\s*["']?(.*?)["']?\s*$""")


def candidate_files() -> list[Path]:
    """Files scanned for settings, in precedence order."""
    home = Path.home()
    return [Path.cwd() / ".env", home / ".env", home / ".zshrc"]


def _apply_unset(values: Iterable[tuple[str, str | None]]) -> int:
    """Set each variable that is unset or empty in the environment.

    Returns:
        Number of variables that were set
    """
    count = 0
    for key, value in values:
        if value is not None and not os.environ.get(key):
            os.environ[key] = value
            count += 1
    return count


def _read_shell_profile(path: Path) -> list[tuple[str, str]]:
    """Collect ``KEY=value`` assignments from a shell profile."""
    assignments = []
    for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        match = _ASSIGNMENT_RE.match(line)
        if match:
            key, value = match.groups()
            assignments.append((key, value.strip()))
    return assignments


def load_env_files(paths: Iterable[Path] | None = None) -> None:
    """Populate unset variables from the well-known local files.

    Earlier files win over later ones and the existing environment wins over all of
    them. Missing files are skipped.
    """
    for path in candidate_files() if paths is None else paths:
        if not path.is_file():
            continue
        if path.name.endswith(".env"):
            count = _apply_unset(dotenv_values(path).items())
            logger.info("Loaded %d variable(s) from %s", count, path)
        else:
            count = _apply_unset(_read_shell_profile(path))
            logger.debug("Loaded %d variable(s) from %s", count, path)


def _parse_timeout(raw: str | None) -> float | None:
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s '%s', using the HTTP library default", ENV_TIMEOUT, raw)
        return None


def resolve(paths: Iterable[Path] | None = None) -> ZenTaoConfig:
    """Resolve the ZenTao configuration snapshot.

    Args:
        paths: Files to scan instead of the default ``./.env``, ``~/.env``, ``~/.zshrc``

    Returns:
        Frozen configuration; missing values are empty and only rejected by
        ``ZenTaoConfig.require()`` at the first authenticated call.
    """
    load_env_files(paths)
    return ZenTaoConfig(
        base_url=os.environ.get(ENV_BASE_URL, "").strip(),
        account=os.environ.get(ENV_ACCOUNT, "").strip(),
        password=os.environ.get(ENV_PASSWORD, ""),
        token=os.environ.get(ENV_TOKEN) or None,
        timeout=_parse_timeout(os.environ.get(ENV_TIMEOUT)),
    )
