"""
Engine and opening-book discovery.

Scans library directories for files, fixes up executable permissions that
archives tend to lose, and probes candidate executables with a UCI handshake
to find out which of them are engines.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .engine import EngineSession
from .errors import UCIError
from .models import Config, EngineProfile

logger = logging.getLogger(__name__)

BOOK_SUFFIXES = (".bin",)


def find_all_files(root: Union[str, Path]) -> List[str]:
    """
    Recursively list every regular file under a directory.

    Args:
        root: Directory to scan

    Returns:
        Sorted file paths; empty if the directory does not exist
    """
    root = Path(root)
    if not root.is_dir():
        logger.debug(f"Library directory does not exist: {root}")
        return []
    return sorted(str(path) for path in root.rglob("*") if path.is_file())


def is_executable(path: Union[str, Path]) -> bool:
    path = Path(path)
    return path.is_file() and os.access(path, os.X_OK)


def make_executable(path: Union[str, Path]) -> None:
    """Add execute permission for everyone who can read the file (chmod +x)."""
    path = Path(path)
    mode = path.stat().st_mode
    readable = mode & (stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)
    path.chmod(mode | (readable >> 2))


def find_books(root: Union[str, Path]) -> List[str]:
    """List Polyglot book files under a directory."""
    return [path for path in find_all_files(root) if path.lower().endswith(BOOK_SUFFIXES)]


async def probe_engine(path: str, config: Optional[Config] = None) -> Optional[EngineProfile]:
    """
    Launch a candidate and return its profile if it completes the handshake.

    Returns:
        The engine profile, or None if the file is not a working UCI engine
    """
    config = config or Config()
    session = EngineSession(path, config=config)
    try:
        await session.launch()
        identity = await session.handshake()
    except UCIError as e:
        logger.debug(f"Not a UCI engine: {path} ({e})")
        return None
    finally:
        await session.shutdown()

    name = identity.name or Path(path).name
    return EngineProfile(
        executable_path=path,
        name=name,
        author=identity.author,
        options=list(identity.options),
        set_options=dict(config.engine_options.get(name, {})),
    )


async def find_uci_engines(
    paths: Iterable[str],
    config: Optional[Config] = None,
    fix_permissions: bool = False,
) -> Dict[str, EngineProfile]:
    """
    Probe candidate files and keep those that speak UCI.

    Args:
        paths: Candidate executable paths
        config: Session timeouts and per-engine option overrides
        fix_permissions: Add execute permission to candidates lacking it

    Returns:
        Profiles keyed by the engine's reported name; the first engine wins
        when two report the same name
    """
    engines: Dict[str, EngineProfile] = {}
    for path in paths:
        if fix_permissions and Path(path).is_file() and not is_executable(path):
            try:
                make_executable(path)
            except OSError as e:
                logger.warning(f"Could not make {path} executable: {e}")
        if not is_executable(path):
            continue
        profile = await probe_engine(path, config)
        if profile is None:
            continue
        if profile.name in engines:
            logger.warning(f"Duplicate engine name {profile.name!r}, keeping {engines[profile.name].executable_path}")
            continue
        logger.info(f"Found UCI engine {profile.name} at {path}")
        engines[profile.name] = profile
    return engines
