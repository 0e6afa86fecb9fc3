"""MessagingConfig — broker connection details and content-type namespace."""

from __future__ import annotations

from typing import Any
from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConfigurationError

DEFAULT_NAMESPACE = "blinkbox.books"

_SCHEME_PORTS = {"amqp": 5672, "amqps": 5671}


class MessagingConfig(BaseModel):
    """Immutable connection configuration.

    Instances are hashable, so they double as the key of the connection
    cache held by :class:`~common_messaging.context.MessagingContext`:
    identical configuration shares one connection.
    """

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = Field(default=5672, gt=0, lt=65536)
    user: str = "guest"
    password: str = Field(default="guest", repr=False)
    vhost: str = "/"
    ssl: bool = False
    namespace: str = Field(
        default=DEFAULT_NAMESPACE,
        min_length=1,
        description="Vendor namespace used in content-types, e.g. 'blinkbox.books'",
    )
    heartbeat: int = Field(default=60, ge=0)
    reconnect_interval: float = Field(default=5.0, gt=0)
    continuation_timeout: float = Field(default=4.0, gt=0)

    @classmethod
    def from_url(cls, url: str, **overrides: Any) -> MessagingConfig:
        """Build a config from ``amqp[s]://user:pass@host:port/vhost``.

        Keyword *overrides* take precedence over values parsed from the URL.

        Raises:
            ConfigurationError: If the URL cannot be parsed or a value is invalid.
        """
        if not isinstance(url, str) or not url:
            raise ConfigurationError(f"Invalid broker URL: {url!r}")
        parts = urlsplit(url)
        if parts.scheme not in _SCHEME_PORTS:
            raise ConfigurationError(
                f"Unsupported broker URL scheme {parts.scheme!r} in {url!r}"
            )
        try:
            port = parts.port
        except ValueError as e:
            raise ConfigurationError(f"Invalid port in broker URL {url!r}") from e
        if not parts.hostname:
            raise ConfigurationError(f"No host in broker URL {url!r}")

        values: dict[str, Any] = {
            "host": parts.hostname,
            "port": port or _SCHEME_PORTS[parts.scheme],
            "ssl": parts.scheme == "amqps",
        }
        if parts.username is not None:
            values["user"] = unquote(parts.username)
        if parts.password is not None:
            values["password"] = unquote(parts.password)
        if parts.path not in ("", "/"):
            values["vhost"] = unquote(parts.path[1:])
        values.update(overrides)
        try:
            return cls(**values)
        except PydanticValidationError as e:
            raise ConfigurationError(str(e)) from e

    def replace(self, **overrides: Any) -> MessagingConfig:
        """Return a copy with *overrides* applied (and re-validated)."""
        try:
            return type(self)(**{**self.model_dump(), **overrides})
        except PydanticValidationError as e:
            raise ConfigurationError(str(e)) from e

    def connection_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``aio_pika.connect_robust``."""
        return {
            "host": self.host,
            "port": self.port,
            "login": self.user,
            "password": self.password,
            "virtualhost": self.vhost,
            "ssl": self.ssl,
            "heartbeat": self.heartbeat,
            "reconnect_interval": self.reconnect_interval,
            "timeout": self.continuation_timeout,
        }
