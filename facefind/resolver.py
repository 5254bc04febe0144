"""
Provider Configuration Resolver
===============================

Loads which matching provider to use (and the remote endpoint/key) from the
settings store, and caches it for the life of the process.

STALENESS RULE:
---------------
The cached value is only refreshed by an explicit ``reload()`` (done after
the organizer saves new settings). ``load()`` is a no-op once a load has
succeeded. A failed load never breaks a search: the previous value (or the
default, local provider) stays in effect and a warning is logged.

USAGE:
------
    from facefind.resolver import ProviderConfigResolver

    resolver = ProviderConfigResolver(settings_store)
    config = resolver.load()      # fetches once
    config = resolver.current()   # never touches the store
"""

import logging
import threading
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import Config

logger = logging.getLogger(__name__)

# Values written by the first version of the admin page
_LEGACY_PROVIDERS = {"browser": "local", "api": "remote"}


class ProviderConfig(BaseModel):
    """Active matching provider and remote API credentials."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    provider: Literal["local", "remote"] = Config.DEFAULT_PROVIDER
    remote_endpoint: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("remote_endpoint", "remoteEndpoint", "apiUrl"),
        serialization_alias="remoteEndpoint",
    )
    remote_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("remote_key", "remoteKey", "apiKey"),
        serialization_alias="remoteKey",
    )

    @field_validator("provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return _LEGACY_PROVIDERS.get(value, value)
        return value

    @field_validator("remote_endpoint", "remote_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @property
    def uses_remote(self) -> bool:
        """Remote matching needs both the provider flag and an endpoint."""
        return self.provider == "remote" and bool(self.remote_endpoint)

    def to_setting(self) -> dict:
        """Serialized form stored in the settings table."""
        return self.model_dump(by_alias=True)


class ProviderConfigResolver:
    """
    Process-wide cache of the provider configuration.

    Args:
        store: object with ``get_setting(key) -> JSON value | None``
        key: settings key holding the configuration
    """

    def __init__(self, store, key: str = Config.PROVIDER_SETTING_KEY):
        self.store = store
        self.key = key
        self._config = ProviderConfig()
        self._loaded = False
        self._lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def current(self) -> ProviderConfig:
        """Last loaded configuration, or the default if never loaded."""
        return self._config

    def load(self) -> ProviderConfig:
        """Fetch the configuration unless a previous load succeeded."""
        if self._loaded:
            return self._config
        with self._lock:
            if not self._loaded:
                self._fetch()
            return self._config

    def reload(self) -> ProviderConfig:
        """Force a fresh fetch (e.g. after the settings were saved)."""
        with self._lock:
            self._fetch()
            return self._config

    def _fetch(self):
        try:
            value = self.store.get_setting(self.key)
        except Exception as e:
            logger.warning("Failed to load provider config from store, using %s: %s", self._config.provider, e)
            return

        if value is None:
            self._config = ProviderConfig()
            self._loaded = True
            return

        try:
            config = ProviderConfig.model_validate(value)
        except ValidationError as e:
            logger.warning("Malformed provider config %r, using %s: %s", value, self._config.provider, e)
            return

        self._config = config
        self._loaded = True
        logger.info("Provider config loaded: %s", config.provider)
