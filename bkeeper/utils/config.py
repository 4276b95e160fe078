"""Configuration defaults for B.Keeper."""

from pathlib import Path


class Config:
    """File locations shared by the CLI and the core."""

    DEFAULT_DATA_DIR = Path.home() / ".bkeeper"
    CONFIG_FILE_NAME = "config.yaml"
    LOG_FILE_NAME = "bkeeper.log"
