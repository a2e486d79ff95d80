"""
Custom exception classes for the GitLab to GitHub migration tool.
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for migration errors."""


class NumberVerificationError(MigrationError):
    """Raised when a created milestone/issue did not get the expected number."""


class ExistingRecordsError(MigrationError):
    """Raised when the target repository already holds issues or pull requests."""


class AttachmentError(MigrationError):
    """Raised when an upload reference cannot be interpreted."""
