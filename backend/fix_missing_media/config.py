from typing import Annotated
from urllib.parse import urlparse

from pydantic import AliasChoices, AnyUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _site_origin_from_url(value: str | None) -> str | None:
    if not value:
        return None
    raw = value.strip()
    if not raw:
        return None
    parsed = urlparse(raw)
    scheme = (parsed.scheme or "").lower().strip()
    if scheme not in {"http", "https"}:
        return None
    hostname = (parsed.hostname or "").strip()
    if not hostname:
        return None
    path = (parsed.path or "").rstrip("/")
    port = parsed.port
    if port and not ((scheme == "http" and port == 80) or (scheme == "https" and port == 443)):
        return f"{scheme}://{hostname}:{port}{path}"
    return f"{scheme}://{hostname}{path}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", "../.env"), extra="ignore")

    database_url: AnyUrl | None = Field(
        default=None,
        validation_alias=AliasChoices("FMM_DATABASE_URL", "DATABASE_URL"),
    )
    db_schema: str = Field(
        default="public", validation_alias=AliasChoices("FMM_DB_SCHEMA", "DB_SCHEMA")
    )
    site_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("FMM_SITE_URL", "SITE_URL", "WP_HOME"),
    )
    uploads_root: str = Field(
        default="wp-content/uploads",
        validation_alias=AliasChoices("FMM_UPLOADS_ROOT", "UPLOADS_ROOT"),
    )
    uploads_url_path: str = "/wp-content/uploads"
    upload_dir_strip_segment: str = "/wp-content/uploads"
    remote_path_rewrites: Annotated[list[tuple[str, str]], NoDecode] = []
    marker_meta_key: str = "fmm_processed"
    attached_file_meta_key: str = "_wp_attached_file"
    batch_limit: int = 100
    batches: int = 1
    head_timeout_seconds: float = 10.0
    download_timeout_seconds: float = 5.0
    request_pause_seconds: float = Field(
        default=0.0,
        validation_alias=AliasChoices("FMM_REQUEST_PAUSE_SECONDS", "REQUEST_PAUSE_SECONDS"),
    )
    disallowed_extensions: Annotated[frozenset[str], NoDecode] = frozenset({"bmp", "psd"})
    allowed_mime_prefixes: Annotated[tuple[str, ...], NoDecode] = (
        "image/",
        "video/",
        "audio/",
        "application/pdf",
        "text/plain",
    )
    log_level: str = "INFO"
    metrics_textfile: str | None = None
    sentry_dsn: str | None = Field(
        default=None, validation_alias=AliasChoices("SENTRY_DSN", "FMM_SENTRY_DSN")
    )
    sentry_traces_sample_rate: float = Field(
        default=0.0,
        validation_alias=AliasChoices(
            "SENTRY_TRACES_SAMPLE_RATE",
            "FMM_SENTRY_TRACES_SAMPLE_RATE",
        ),
    )

    @model_validator(mode="after")
    def _normalize_paths(self):
        self.site_url = _site_origin_from_url(self.site_url)
        self.uploads_url_path = "/" + self.uploads_url_path.strip().strip("/")
        return self

    @field_validator("disallowed_extensions", mode="before")
    @classmethod
    def _split_extensions(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        return frozenset(
            ext.strip().lstrip(".").lower() for ext in value if ext and ext.strip()
        )

    @field_validator("allowed_mime_prefixes", mode="before")
    @classmethod
    def _split_mime_prefixes(cls, value):
        if isinstance(value, str):
            return tuple(prefix.strip() for prefix in value.split(",") if prefix.strip())
        return value

    @field_validator("remote_path_rewrites", mode="before")
    @classmethod
    def _split_rewrites(cls, value):
        # "old=>new,old2=>new2"
        if isinstance(value, str):
            pairs = []
            for item in value.split(","):
                if "=>" not in item:
                    continue
                old, new = item.split("=>", 1)
                if old.strip():
                    pairs.append((old.strip(), new.strip()))
            return pairs
        return value


settings = Settings()
