from __future__ import annotations


class ImgBatchError(Exception):
    """Base class for everything this package raises on purpose."""


class ConfigurationError(ImgBatchError, ValueError):
    """Bad or missing configuration. Raised before any file is touched."""


class BackupError(ImgBatchError):
    """The pre-transform copy of a file could not be made."""


class TransformError(ImgBatchError):
    """An external codec failed, or its output could not be found afterwards."""
