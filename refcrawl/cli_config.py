"""Configuration loading helpers for CLI entrypoints."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

CONFIG_DIR = Path.home() / ".config" / "refcrawl"
CONFIG_ENV_FILE = CONFIG_DIR / ".env"


def load_config(
    *,
    config_dir: Path,
    config_env_file: Path,
    cwd: Path,
    load_env: Callable[[Path], bool],
    copy_file: Callable[[Path, Path], object],
    example_file: Optional[Path] = None,
) -> Optional[Path]:
    """Load the first .env found and return its path.

    Search order: ``.env`` in ``cwd``, then ``config_env_file``. When neither
    exists, ``.env.example`` is copied to ``config_env_file`` and loaded.
    """
    local_env = cwd / ".env"
    if local_env.is_file():
        load_env(local_env)
        return local_env

    if config_env_file.is_file():
        load_env(config_env_file)
        return config_env_file

    if example_file is None:
        example_file = Path(__file__).parent.parent / ".env.example"
    if not example_file.is_file():
        return None

    try:
        config_dir.mkdir(parents=True, exist_ok=True)
        copy_file(example_file, config_env_file)
    except OSError as exc:
        logging.warning("Could not create %s: %s", config_env_file, exc)
        return None
    logging.info(
        "Created config file at %s from .env.example. "
        "Edit it to change crawl defaults.",
        config_env_file,
    )
    load_env(config_env_file)
    return config_env_file
