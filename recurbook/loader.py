"""Workbook discovery and validation."""

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from . import constants
from .schema import Settings, Workbook

logger = logging.getLogger(__name__)


def find_workbook(explicit: Optional[Path] = None) -> Optional[Path]:
    """
    Locate the workbook file.

    Search order (highest to lowest priority):
    1. Explicit path (e.g. the --workbook option)
    2. RECURBOOK_WORKBOOK environment variable
    3. recurbook.yaml in the current directory

    Returns:
        Path to the workbook, or None if not found
    """
    if explicit is not None:
        return Path(explicit)

    if env_file := os.getenv(constants.ENV_WORKBOOK_FILE):
        path = Path(env_file)
        if path.is_file():
            return path
        logger.warning("%s points to non-existent file: %s", constants.ENV_WORKBOOK_FILE, env_file)

    cwd_file = Path.cwd() / constants.DEFAULT_WORKBOOK_FILE
    if cwd_file.is_file():
        return cwd_file

    return None


def load_workbook(path: Path) -> Workbook:
    """
    Load and validate a workbook file.

    Every rule and ledger row is validated, unlike the gateway which skips
    bad records. Used by ``recurbook validate``.

    Raises:
        yaml.YAMLError: If YAML parsing fails
        pydantic.ValidationError: If schema validation fails
    """
    logger.info("Loading workbook from: %s", path)
    try:
        with path.open() as f:
            data = yaml.safe_load(f)

        if data is None:
            logger.warning("Empty workbook: %s", path)
            return Workbook()

        if not isinstance(data, dict):
            raise ValueError(f"Workbook {path} must be a mapping")

        # Sections present but empty (all rows deleted)
        for key in (constants.DATASET_RECURRING, constants.DATASET_TRANSACTIONS):
            if key in data and data[key] is None:
                data[key] = []

        workbook = Workbook.model_validate(data)
    except yaml.YAMLError as e:
        logger.error("YAML parsing error in %s: %s", path, e)
        raise
    except ValidationError as e:
        logger.error("Invalid workbook %s: %s", path, e)
        raise

    logger.info(
        "Loaded %d recurring rules and %d transactions",
        len(workbook.recurring),
        len(workbook.transactions),
    )
    return workbook


def load_settings(path: Optional[Path]) -> Settings:
    """Read the workbook's config section, falling back to defaults."""
    if path is None or not path.is_file():
        return Settings()
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        config = data.get(constants.CONFIG_SECTION) if isinstance(data, dict) else None
        if config:
            return Settings.model_validate(config)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        logger.warning("Failed to load config from '%s', using defaults: %s", path, e)
    return Settings()
