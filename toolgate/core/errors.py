"""Error types for configuration loading and evaluation."""

from __future__ import annotations

from typing import Any, Optional


class ToolgateError(Exception):
    """Base class for toolgate errors."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        self.message = message
        self.path = path
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.path:
            return f"{self.path}: {self.message}"
        return self.message


class ConfigError(ToolgateError):
    """Raised when a configuration source cannot be used."""


class ConfigNotFoundError(ConfigError):
    """An expected configuration file does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__("config file not found", path=path)


class ConfigReadError(ConfigError):
    """A configuration file exists but could not be read."""


class ConfigParseError(ConfigError):
    """A configuration file is not valid TOML."""


class ConfigValidationError(ConfigError):
    """A well-formed configuration contains an invalid value."""

    def __init__(
        self,
        message: str,
        *,
        location: str = "",
        value: Any = None,
        cause: Optional[BaseException] = None,
        path: Optional[str] = None,
    ) -> None:
        self.location = location
        self.value = value
        self.cause = cause
        super().__init__(message, path=path)

    def _format_message(self) -> str:
        text = self.message
        if self.location:
            if self.value is not None and self.value != "":
                text = f"{self.location}: {text}: {self.value!r}"
            else:
                text = f"{self.location}: {text}"
        if self.cause is not None:
            text = f"{text} ({self.cause})"
        if self.path:
            text = f"{self.path}: {text}"
        return text

    def with_path(self, path: str) -> "ConfigValidationError":
        """Return a copy of this error attributed to a config file."""
        return type(self)(
            self.message,
            location=self.location,
            value=self.value,
            cause=self.cause,
            path=path,
        )


class InvalidPatternError(ConfigValidationError):
    """A pattern string could not be compiled."""


class LegacyConfigError(ConfigValidationError):
    """The document uses the retired v1 schema."""

    def __init__(self, message: str = "", *, path: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(
            message
            or "config uses the legacy v1 format, which is no longer supported; "
            'migrate it to version = "2.0"',
            path=path,
            **kwargs,
        )


class ShellParseError(ToolgateError):
    """Shell source could not be parsed."""


class UnsupportedShellSyntaxError(ShellParseError):
    """Valid shell source using syntax the parser does not handle."""


class SafeBrowsingError(ToolgateError):
    """The Safe Browsing lookup was inconclusive."""
