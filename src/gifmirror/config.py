"""Service configuration backed by the DB ``config`` table.

Uses pydantic-settings ``BaseSettings`` sub-configs grouped under a top-level
``AppConfig``.  All config values can be overridden via:

  1. env vars              (per-section prefix, highest priority)
  2. DB config table rows  (overrides written with ``set-config``)
  3. field defaults         (lowest priority)

Call ``load_config(db)`` at startup to sync the DB overrides into the
in-memory singleton.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

# ---------------------------------------------------------------------------
# Single flat store of raw DB values (async → sync bridge)
# ---------------------------------------------------------------------------
_db_values: dict[str, str] = {}


# ---------------------------------------------------------------------------
# Generic DB settings source
# ---------------------------------------------------------------------------

class DbSource(PydanticBaseSettingsSource):
    """Reads values from ``_db_values`` using a per-class key map."""

    def get_field_value(
        self, field: Any, field_name: str
    ) -> tuple[Any, str, bool]:
        key_map: dict[str, str] = getattr(self.settings_cls, "_DB_KEY_MAP", {})
        # Reverse: field_name -> db_key
        db_key = None
        for k, v in key_map.items():
            if v == field_name:
                db_key = k
                break
        if db_key is not None and db_key in _db_values:
            return _db_values[db_key], field_name, False
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name in self.settings_cls.model_fields:
            val, _, _ = self.get_field_value(None, field_name)
            if val is not None:
                d[field_name] = val
        return d


class _DbSettings(BaseSettings):
    """Base for all sub-configs: wires in DbSource so env > DB > defaults."""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, env_settings, DbSource(settings_cls))


# ---------------------------------------------------------------------------
# Sub-configs: all BaseSettings with DB key maps
# ---------------------------------------------------------------------------

class UpstreamConfig(_DbSettings):
    model_config = {"env_prefix": "GIFMIRROR_UPSTREAM_"}

    _DB_KEY_MAP: ClassVar[dict[str, str]] = {
        "upstream_provider": "provider",
        "upstream_api_key": "api_key",
        "upstream_client_key": "client_key",
        "upstream_content_filter": "content_filter",
        "upstream_locale": "locale",
        "upstream_page_size": "page_size",
        "upstream_timeout": "timeout",
    }
    _SENSITIVE: ClassVar[set[str]] = {"api_key"}

    provider: str = "tenor"  # tenor | giphy | klipy
    api_key: str | None = None
    client_key: str = "gifmirror"
    content_filter: str = "high"
    locale: str | None = None
    page_size: int = 50
    timeout: float = 10.0


class CdnConfig(_DbSettings):
    model_config = {"env_prefix": "GIFMIRROR_CDN_"}

    _DB_KEY_MAP: ClassVar[dict[str, str]] = {
        "cdn_backend": "backend",
        "cdn_url_prefix": "url_prefix",
        "cdn_upload_url": "upload_url",
        "cdn_upload_token": "upload_token",
        "cdn_upload_timeout": "upload_timeout",
        "cdn_verify_attempts": "verify_attempts",
        "cdn_batch_verify_attempts": "batch_verify_attempts",
        "cdn_verify_timeout": "verify_timeout",
        "cdn_verify_delay": "verify_delay",
        "cdn_s3_bucket": "s3_bucket",
        "cdn_s3_endpoint": "s3_endpoint",
        "cdn_s3_access_key": "s3_access_key",
        "cdn_s3_secret_key": "s3_secret_key",
        "cdn_s3_region": "s3_region",
    }
    _SENSITIVE: ClassVar[set[str]] = {"upload_token", "s3_secret_key"}

    backend: str = "http"  # http | s3
    # Only URLs under this prefix count as re-hosted.
    url_prefix: str = "https://i.redd.it/"
    upload_url: str | None = None
    upload_token: str | None = None
    upload_timeout: float = 5.0
    verify_attempts: int = 4
    batch_verify_attempts: int = 3
    verify_timeout: float = 2.5
    verify_delay: float = 0.7

    s3_bucket: str = "gifmirror"
    s3_endpoint: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_region: str = "us-east-1"


class SearchConfig(_DbSettings):
    model_config = {"env_prefix": "GIFMIRROR_SEARCH_"}

    _DB_KEY_MAP: ClassVar[dict[str, str]] = {}  # auto-generated below

    max_pages: int = 10
    batch_size: int = 12
    default_limit: int = 16
    max_limit: int = 50
    max_batch_queries: int = 100
    item_ttl: int = 60 * 60 * 24  # 1 day
    query_ttl: int = 60 * 60 * 24  # 1 day
    batch_timeout: float = 50.0


# Auto-generate the key map: search_{field} -> field
SearchConfig._DB_KEY_MAP = {f"search_{f}": f for f in SearchConfig.model_fields}


class StoreConfig(_DbSettings):
    model_config = {"env_prefix": "GIFMIRROR_STORE_"}

    _DB_KEY_MAP: ClassVar[dict[str, str]] = {}

    backend: str = "sql"  # sql | memory
    cleanup_interval: int = 3600


# ---------------------------------------------------------------------------
# Top-level AppConfig
# ---------------------------------------------------------------------------

# All sub-config section names and their classes
_SECTIONS: dict[str, type[BaseSettings]] = {
    "upstream": UpstreamConfig,
    "cdn": CdnConfig,
    "search": SearchConfig,
    "store": StoreConfig,
}

# Reverse lookup: DB key -> section name
_KEY_TO_SECTION: dict[str, str] = {}
for _section_name, _cls in _SECTIONS.items():
    for _db_key in getattr(_cls, "_DB_KEY_MAP", {}):
        _KEY_TO_SECTION[_db_key] = _section_name


class AppConfig(BaseModel):
    upstream: UpstreamConfig = UpstreamConfig()
    cdn: CdnConfig = CdnConfig()
    search: SearchConfig = SearchConfig()
    store: StoreConfig = StoreConfig()


# Module-level singletons
config = AppConfig()


def known_keys() -> list[str]:
    return sorted(_KEY_TO_SECTION)


# ---------------------------------------------------------------------------
# Reload helpers
# ---------------------------------------------------------------------------

def _reload_section(section_name: str) -> None:
    """Rebuild a single sub-config from DB values + env."""
    new_obj = _SECTIONS[section_name]()
    setattr(config, section_name, new_obj)


def _reload_all() -> None:
    """Rebuild all sub-configs from ``_db_values`` + env."""
    for section_name in _SECTIONS:
        _reload_section(section_name)


# ---------------------------------------------------------------------------
# DB <-> memory sync
# ---------------------------------------------------------------------------

async def load_config(db: AsyncSession) -> None:
    """Load all config overrides from the config table into the in-memory singleton."""
    from gifmirror.db.models import Config

    result = await db.execute(select(Config))
    _db_values.clear()
    for row in result.scalars().all():
        _db_values[row.key] = row.value
    _reload_all()


async def save_config_value(db: AsyncSession, key: str, value: str) -> None:
    """Write a single config value to DB + update in-memory.

    The caller is responsible for calling ``await db.commit()``.
    """
    from gifmirror.db.models import Config

    if key not in _KEY_TO_SECTION:
        raise KeyError(key)

    result = await db.execute(select(Config).where(Config.key == key))
    row = result.scalar_one_or_none()
    if row:
        row.value = value
    else:
        db.add(Config(key=key, value=value))

    _db_values[key] = value

    # Reload only the affected section
    _reload_section(_KEY_TO_SECTION[key])
