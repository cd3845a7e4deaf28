"""
Exception types raised by the form engine.

Validation failures are never raised; they are returned as values in a
``ValidationResult``. Exceptions are reserved for configuration problems,
remote option failures and malformed answer imports.
"""

from typing import List, Optional


class FormWizardError(Exception):
    """Base exception for the form engine."""
    pass


class ConfigError(FormWizardError):
    """Raised when a form configuration cannot be loaded or is inconsistent."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = list(problems or [])
        if self.problems:
            message = f'{message}: ' + '; '.join(self.problems)
        super().__init__(message)


class OptionSourceError(FormWizardError):
    """Raised when a remote option source fails to resolve."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f'Option source {source!r} failed: {message}')


class AnswersImportError(FormWizardError):
    """Raised when an answers payload cannot be imported."""
    pass
