import hashlib
import json
import re
from pathlib import Path
from typing import Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeFloat,
    NonNegativeInt,
    PositiveFloat,
    PositiveInt,
    field_validator,
    model_validator,
)

from azure_devops_exporter import constants
from azure_devops_exporter.auth import AuthMode

_UUID = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
QUERY_WITH_PROJECT_PATTERN = re.compile(rf"^{_UUID}@{_UUID}$")

SECRET_MASK = "***"


class ConfigError(ValueError):
    """Exception raised when the exporter configuration is missing or malformed."""


class AzureDevopsSettings(BaseModel):
    """Organisation, API and filter settings for the Azure DevOps connection."""

    model_config = ConfigDict(frozen=True)

    organisation: str = Field(min_length=1)
    url: str | None = None
    api_version: str = constants.AZURE_DEVOPS_API_VERSION
    access_token: str | None = Field(default=None, repr=False)

    filter_projects: list[str] = []
    blacklist_projects: list[str] = []
    filter_agentpool: list[int] = []
    queries_with_projects: list[str] = []

    @field_validator("queries_with_projects")
    @classmethod
    def check_query_format(cls, queries: list[str]) -> list[str]:
        malformed = [q for q in queries if not QUERY_WITH_PROJECT_PATTERN.match(q)]
        if malformed:
            raise ConfigError(
                "; ".join(
                    f"Query path '{q}' is malformed; should be '<query UUID>@<project UUID>'"
                    for q in malformed
                )
            )
        return queries

    def queries(self) -> list[tuple[str, str]]:
        """Return the configured queries as (query id, project id) pairs."""
        return [tuple(q.split("@", 1)) for q in self.queries_with_projects]


class AzureSettings(BaseModel):
    """Service principal credentials."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = Field(default=None, repr=False)

    @property
    def has_service_principal(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)


class RequestSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    concurrency_limit: PositiveInt = constants.DEFAULT_CONCURRENCY_LIMIT
    retries: NonNegativeInt = constants.DEFAULT_RETRIES
    retry_backoff: Literal["exponential", "fixed"] = "exponential"
    retry_wait: NonNegativeFloat = constants.DEFAULT_RETRY_WAIT
    retry_max_wait: NonNegativeFloat = constants.DEFAULT_RETRY_MAX_WAIT
    timeout: PositiveFloat = constants.DEFAULT_REQUEST_TIMEOUT


class LimitSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    project: PositiveInt = constants.DEFAULT_LIMIT_PROJECT
    builds_per_project: PositiveInt = constants.DEFAULT_LIMIT_BUILDS_PER_PROJECT
    builds_per_definition: PositiveInt = constants.DEFAULT_LIMIT_BUILDS_PER_DEFINITION
    releases_per_definition: PositiveInt = (
        constants.DEFAULT_LIMIT_RELEASES_PER_DEFINITION
    )
    deployment_per_definition: PositiveInt = (
        constants.DEFAULT_LIMIT_DEPLOYMENT_PER_DEFINITION
    )
    release_definitions_per_project: PositiveInt = (
        constants.DEFAULT_LIMIT_RELEASE_DEFINITIONS_PER_PROJECT
    )
    releases_per_project: PositiveInt = constants.DEFAULT_LIMIT_RELEASES_PER_PROJECT


class ScrapeSettings(BaseModel):
    """Collector intervals in seconds.

    Per-collector intervals fall back to `time` when unset. An interval of zero
    or less disables the collector.
    """

    model_config = ConfigDict(frozen=True)

    time: int = constants.DEFAULT_SCRAPE_TIME
    time_projects: int | None = None
    time_repository: int | None = None
    time_pullrequest: int | None = None
    time_build: int | None = None
    time_release: int | None = None
    time_deployment: int | None = None
    time_stats: int | None = None
    time_resource_usage: int | None = None
    time_query: int | None = None
    time_agent_pools: int | None = None

    def interval(self, field: str) -> int:
        value = getattr(self, field)
        return self.time if value is None else value


class StatsSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary_max_age: PositiveInt | None = None


class ServiceDiscoverySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    refresh_interval: PositiveInt = constants.DEFAULT_DISCOVERY_REFRESH_INTERVAL


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Path | None = None


class ServerSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = constants.DEFAULT_SERVER_HOST
    port: PositiveInt = Field(default=constants.DEFAULT_SERVER_PORT, le=65535)


class ExporterSettings(BaseModel):
    """Exporter settings resolved from flags, environment and YAML configuration.

    Settings are immutable per runtime. Everything that changes what the
    collectors produce is folded into `fingerprint()`, which keys the on-disk
    cache.
    """

    model_config = ConfigDict(frozen=True)

    azure_devops: AzureDevopsSettings
    azure: AzureSettings = Field(default_factory=AzureSettings)
    request: RequestSettings = Field(default_factory=RequestSettings)
    limit: LimitSettings = Field(default_factory=LimitSettings)
    scrape: ScrapeSettings = Field(default_factory=ScrapeSettings)
    stats: StatsSettings = Field(default_factory=StatsSettings)
    service_discovery: ServiceDiscoverySettings = Field(
        default_factory=ServiceDiscoverySettings
    )
    cache: CacheSettings = Field(default_factory=CacheSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    @model_validator(mode="after")
    def check_credentials(self) -> "ExporterSettings":
        if not self.azure_devops.access_token and not self.azure.has_service_principal:
            raise ConfigError(
                "neither an Azure DevOps PAT token nor client credentials "
                "(tenant ID, client ID, client secret) for service principal "
                "authentication have been provided"
            )
        return self

    @property
    def auth_mode(self) -> AuthMode:
        if self.azure_devops.access_token:
            return "access-token"
        return "service-principal"

    @property
    def stats_summary_max_age(self) -> int:
        if self.stats.summary_max_age is not None:
            return self.stats.summary_max_age
        return self.scrape.interval("time_stats")

    def fingerprint(self) -> str:
        """Derive the cache fingerprint from every setting that shapes collector output."""
        document = {
            "tag": constants.CACHE_TAG,
            "url": self.azure_devops.url,
            "organisation": self.azure_devops.organisation,
            "api_version": self.azure_devops.api_version,
            "filter_projects": self.azure_devops.filter_projects,
            "blacklist_projects": self.azure_devops.blacklist_projects,
            "filter_agentpool": self.azure_devops.filter_agentpool,
            "queries_with_projects": self.azure_devops.queries_with_projects,
            "limit": self.limit.model_dump(),
            "stats_summary_max_age": self.stats_summary_max_age,
        }
        serialized = json.dumps(document, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(serialized.encode("utf-8")).hexdigest()

    def masked_dump(self) -> dict:
        """Dump the settings as JSON-compatible data with credentials masked."""
        data = self.model_dump(mode="json")
        if data["azure_devops"]["access_token"]:
            data["azure_devops"]["access_token"] = SECRET_MASK
        if data["azure"]["client_secret"]:
            data["azure"]["client_secret"] = SECRET_MASK
        return data
