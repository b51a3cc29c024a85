"""Categorized errors with user-facing display."""

import logging
import sqlite3
import sys
from enum import Enum
from pathlib import Path

from rich.console import Console

logger = logging.getLogger(__name__)
console = Console()


class ErrorCategory(Enum):
    """Categories of errors for better user experience."""

    CONFIGURATION = "configuration"
    NETWORK = "network"
    REMOTE = "remote"
    AUTHENTICATION = "authentication"
    STORAGE = "storage"
    USER_INPUT = "user_input"
    SYSTEM = "system"


class BoqSyncError(Exception):
    """Base exception for boqsync with enhanced user experience."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        *,
        solution: str | None = None,
        details: str | None = None,
        recoverable: bool = True,
        log_level: int = logging.ERROR,
        original_error: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.solution = solution
        self.details = details
        self.recoverable = recoverable
        self.log_level = log_level
        self.original_error = original_error

    def display_to_user(self) -> None:
        """Display error to user with helpful context."""
        category_styles = {
            ErrorCategory.CONFIGURATION: ("⚙️", "yellow"),
            ErrorCategory.NETWORK: ("🌐", "orange1"),
            ErrorCategory.REMOTE: ("🛰️", "red"),
            ErrorCategory.AUTHENTICATION: ("🔑", "yellow"),
            ErrorCategory.STORAGE: ("🗄️", "red"),
            ErrorCategory.USER_INPUT: ("⌨️", "yellow"),
            ErrorCategory.SYSTEM: ("💻", "red"),
        }

        emoji, color = category_styles.get(self.category, ("❌", "red"))

        console.print(
            f"\n{emoji} [{color} bold]{self.category.value.replace('_', ' ').title()} Error[/{color} bold]",
        )
        console.print(f"[{color}]{self.message}[/{color}]")

        if self.details:
            console.print(f"\n[dim]Details:[/dim] {self.details}")

        if self.solution:
            console.print(f"\n[green]💡 Solution:[/green] {self.solution}")

        if self.recoverable:
            console.print(
                "\n[dim]This error may be temporary. You can try again.[/dim]",
            )
        else:
            console.print(
                "\n[dim]This error requires intervention before continuing.[/dim]",
            )

        if self.original_error:
            logger.log(
                self.log_level,
                "%s: %s",
                self.category.value,
                self.message,
                exc_info=self.original_error,
            )
        else:
            logger.log(self.log_level, "%s: %s", self.category.value, self.message)


class ConfigurationError(BoqSyncError):
    """Configuration-related errors."""

    def __init__(self, message: str, *, config_path: Path | None = None, **kwargs):
        solution = kwargs.pop("solution", None)
        if not solution and config_path:
            solution = f"Check your configuration file at {config_path}"
        super().__init__(
            message,
            ErrorCategory.CONFIGURATION,
            solution=solution,
            recoverable=False,
            **kwargs,
        )


class RemoteServiceError(BoqSyncError):
    """A call to the approval service did not complete successfully.

    Covers transport failures, timeouts, non-2xx responses and 2xx responses
    whose body is missing the expected entity. ``status_code`` is None when
    no response was received.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str | None = None,
        **kwargs,
    ):
        self.status_code = status_code
        self.endpoint = endpoint

        if status_code in (401, 403):
            category = ErrorCategory.AUTHENTICATION
            default_solution = "Log in again so a fresh credential is available"
        elif status_code is not None:
            category = ErrorCategory.REMOTE
            default_solution = None
        else:
            category = ErrorCategory.NETWORK
            default_solution = "Check your connection to the approval service"

        solution = kwargs.pop("solution", default_solution)
        super().__init__(message, category, solution=solution, **kwargs)


class ApprovalActionError(BoqSyncError):
    """An explicit approve/reject/delete action failed on the server."""

    def __init__(self, action: str, kind: str, entity_id: str, **kwargs):
        self.action = action
        self.kind = kind
        self.entity_id = entity_id

        message = f"Could not {action} {kind} {entity_id}"
        original = kwargs.get("original_error")
        details = kwargs.pop("details", str(original) if original else None)
        solution = kwargs.pop(
            "solution",
            "The local view was re-synced from the server; retry the action",
        )
        category = (
            original.category
            if isinstance(original, BoqSyncError)
            else ErrorCategory.REMOTE
        )
        super().__init__(
            message,
            category,
            details=details,
            solution=solution,
            **kwargs,
        )


class StorageError(BoqSyncError):
    """The persistent queue database could not be read or written."""

    def __init__(self, message: str, *, db_path: Path | None = None, **kwargs):
        solution = kwargs.pop("solution", None)
        if not solution and db_path:
            solution = f"Check that {db_path} is writable and not corrupted"
        super().__init__(
            message,
            ErrorCategory.STORAGE,
            solution=solution,
            recoverable=False,
            **kwargs,
        )


def handle_error(
    error: Exception,
    *,
    category: ErrorCategory | None = None,
    **kwargs,
) -> None:
    """Convert generic exceptions to BoqSyncError and display to user."""
    if isinstance(error, BoqSyncError):
        error.display_to_user()
        return

    if category is None:
        if isinstance(error, sqlite3.Error | PermissionError):
            category = ErrorCategory.STORAGE
        elif isinstance(error, ConnectionError | TimeoutError):
            category = ErrorCategory.NETWORK
        elif isinstance(error, ValueError):
            category = ErrorCategory.USER_INPUT
        else:
            category = ErrorCategory.SYSTEM

    boqsync_error = BoqSyncError(
        message=str(error) or "An unexpected error occurred",
        category=category,
        original_error=error,
        **kwargs,
    )
    boqsync_error.display_to_user()


def graceful_exit(exit_code: int = 1) -> None:
    """Exit gracefully with helpful message."""
    if exit_code == 0:
        console.print("\n[green]✨ boqsync completed successfully[/green]")
    else:
        console.print("\n[red]boqsync encountered errors and had to stop[/red]")
        console.print("[dim]Check the logs above for details on what went wrong[/dim]")
        console.print(
            "[dim]Run 'boqsync config validate' to check your configuration[/dim]",
        )

    sys.exit(exit_code)
