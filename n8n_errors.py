"""
Error types raised by the n8n CLI.

Every error carries a human-readable message plus optional context, and can be
rendered as a dict for --json output.
"""

from typing import Any


class N8nCliError(Exception):
    """Base class for all errors reported by the CLI."""

    def __init__(self, message: str, context: str = ""):
        self.message = message
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "error",
            "error": type(self).__name__,
            "message": self.message,
            "context": self.context,
        }


class MissingCredential(N8nCliError):
    """URL or API key still empty after flags, env and profile were checked."""

    LABELS = {"url": "n8n URL", "key": "n8n API key"}

    def __init__(self, field: str, tiers: list[str] | tuple[str, ...] = ()):
        self.field = field
        self.tiers = list(tiers)
        checked = ", ".join(self.tiers) if self.tiers else "nothing"
        super().__init__(
            f"Missing {self.LABELS.get(field, field)}. Checked: {checked}.",
            context=field,
        )


class RemoteApiError(N8nCliError):
    """Non-2xx response or transport failure talking to the n8n server.

    ``status_code`` is None for transport failures (DNS, refused, timeout).
    ``body`` holds the server's parsed JSON error when it sent one, else text.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: Any = None,
        method: str = "",
        path: str = "",
    ):
        self.status_code = status_code
        self.body = body
        self.method = method
        self.path = path
        super().__init__(message, context=f"{method} {path}".strip())

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["code"] = self.status_code
        if self.body is not None:
            result["body"] = self.body
        return result


class SourceUnavailable(N8nCliError):
    """An import source (file, URL, archive) could not be read."""

    def __init__(self, source: str, attempts: int = 1, last_error: BaseException | str | None = None):
        self.source = source
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"Cannot read {source} after {attempts} attempt(s){detail}", context=source)


class ValidationError(N8nCliError):
    """Command arguments are incomplete or inconsistent."""


class LocalIoError(N8nCliError):
    """A local state file (backup, config, history) could not be written."""

    def __init__(self, path: Any, reason: BaseException | str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Cannot write {self.path}: {reason}", context=self.path)
