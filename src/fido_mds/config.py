"""
Configuration — bundled defaults from the environment, plus the per-client config.

Two layers:
  - MdsSettings: pydantic-settings BaseSettings holding the bundled defaults
    {mds: {url, file, access}, root: {url, file, access}, payload: {file}}.
    Environment variables override them, e.g. FIDO_MDS_MDS__URL maps to
    mds.url and FIDO_MDS_ROOT__ACCESS maps to root.access. A .env file in the
    working directory is read as well.
  - ClientConfig: a frozen pydantic model describing one client. It is built
    by MetadataClientBuilder from MdsSettings plus the caller's options and
    never changes afterwards.

Access modes are kept as plain strings on ClientConfig so an unrecognized
mode reaches the load pipeline and fails there with SettingError.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fido_mds.domain.models import AccessMds, AccessRootCertificate

DEFAULT_MDS_URL = "https://mds3.fidoalliance.org/"
DEFAULT_ROOT_URL = "http://secure.globalsign.com/cacert/root-r3.crt"

_CACHE_DIR = Path.home() / ".cache" / "fido-mds"


class MdsSourceSettings(BaseModel):
    """Where the signed metadata envelope comes from."""

    url: str = Field(default=DEFAULT_MDS_URL, description="Metadata service endpoint")
    file: Path = Field(default=_CACHE_DIR / "blob.jwt", description="Envelope file")
    access: str = Field(default=AccessMds.URL, description="url | file | jwt")


class RootSettings(BaseModel):
    """Where the trust root certificate comes from."""

    url: str = Field(default=DEFAULT_ROOT_URL, description="Default root certificate URL")
    file: Path = Field(
        default=_CACHE_DIR / "root-r3.crt",
        description="Local cache of the default root certificate (DER)",
    )
    access: str = Field(default=AccessRootCertificate.URL, description="url | file | pem")


class PayloadSettings(BaseModel):
    file: Path = Field(default=_CACHE_DIR / "payload.json", description="Verified payload cache")


class MdsSettings(BaseSettings):
    """
    Bundled default configuration.

    Load order (highest priority first):
      1. Environment variables (FIDO_MDS_ prefix, "__" for nesting)
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="FIDO_MDS_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    mds: MdsSourceSettings = Field(default_factory=MdsSourceSettings)
    root: RootSettings = Field(default_factory=RootSettings)
    payload: PayloadSettings = Field(default_factory=PayloadSettings)

    http_timeout_seconds: int = Field(default=60, ge=1)
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.strip().upper()


class ClientConfig(BaseModel):
    """
    Immutable configuration of one MetadataClient.

    `root_url` set to the default root URL means the default root is
    resolved lazily and cached at the settings' root file, instead of being
    downloaded on every load.
    """

    model_config = ConfigDict(frozen=True)

    mds_url: str | None = None
    mds_file: Path | None = None
    mds_jwt: str | None = None
    payload_file: Path | None = None
    root_url: str | None = None
    root_file: Path | None = None
    root_pem: str | None = None

    access_mds: str = AccessMds.URL
    access_root_certificate: str = AccessRootCertificate.URL

    @classmethod
    def from_settings(cls, settings: MdsSettings) -> ClientConfig:
        """The configuration a client gets when the caller sets nothing."""
        return cls(
            mds_url=settings.mds.url,
            mds_file=settings.mds.file,
            payload_file=settings.payload.file,
            root_url=settings.root.url,
            root_file=settings.root.file,
            access_mds=settings.mds.access,
            access_root_certificate=settings.root.access,
        )
