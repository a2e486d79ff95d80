"""
GitLab to GitHub Migration Tool

Migrates issues, merge requests, milestones, labels and releases of a GitLab
project to GitHub so that issue and milestone numbers stay the same, and
rehomes the attachments they reference.
"""

from __future__ import annotations

from .cli import main
from .exceptions import AttachmentError, ExistingRecordsError, MigrationError, NumberVerificationError
from .labels import LabelTranslator
from .orchestrator import MigrationResult, MigrationStats, Migrator
from .settings import MigrationSettings, ObjectStorageSettings, TransferSettings
from .utils import setup_logging

# Package version
__version__ = "0.1.0"

__all__ = [
    "AttachmentError",
    "ExistingRecordsError",
    "LabelTranslator",
    "MigrationError",
    "MigrationResult",
    "MigrationSettings",
    "MigrationStats",
    "Migrator",
    "NumberVerificationError",
    "ObjectStorageSettings",
    "TransferSettings",
    "main",
    "setup_logging",
]
