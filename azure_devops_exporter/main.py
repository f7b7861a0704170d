#!/usr/bin/env python3
"""Main entrypoint for the Azure DevOps exporter."""

import argparse
import json
import logging
import sys
from collections.abc import Mapping
from os import environ
from pathlib import Path
from typing import TypeVar, cast

import yaml
from prometheus_client import CollectorRegistry
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from azure_devops_exporter import __version__
from azure_devops_exporter.auth.factory import get_auth_provider
from azure_devops_exporter.auth.providers import AuthenticationError
from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.cache_store import CacheStore
from azure_devops_exporter.collectors import build_collectors
from azure_devops_exporter.discovery import ServiceDiscovery
from azure_devops_exporter.registry import SnapshotRegistry
from azure_devops_exporter.scheduler import CollectorRuntime
from azure_devops_exporter.server import create_app, serve
from azure_devops_exporter.settings import ConfigError, ExporterSettings

# Deprecated environment variables and their replacements
DEPRECATED_ENV_VARS = {
    "AZURE_DEVOPS_FILTER_AGENTPOOL": "AZURE_DEVOPS_AGENTPOOL",
}

SECRET_FIELDS = ("access_token", "client_secret")


class Args(argparse.Namespace):
    config: Path | None
    organisation: str | None
    url: str | None
    api_version: str | None
    access_token: str | None
    access_token_file: Path | None
    tenant_id: str | None
    client_id: str | None
    client_secret: str | None
    filter_projects: list[str] | None
    blacklist_projects: list[str] | None
    agentpool: list[int] | None
    queries_with_projects: list[str] | None
    concurrency_limit: int | None
    retries: int | None
    scrape_time: int | None
    cache_path: Path | None
    host: str | None
    port: int | None
    log_level: str
    rich_logs: bool
    print_config_and_exit: bool


logger = logging.getLogger(__name__)


class ArgumentParser(argparse.ArgumentParser):
    """Argument parser printing the full help on invalid arguments."""

    def error(self, message: str):
        self.print_help(sys.stderr)
        self.exit(1, f"\n{self.prog}: error: {message}\n")


def parse_args(argv: list[str] | None = None) -> Args:
    """Parse command line arguments."""
    parser = ArgumentParser(
        prog="azure-devops-exporter",
        description="Prometheus exporter for Azure DevOps",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to YAML configuration file",
    )

    # Configuration overrides (optional when using config file)
    parser.add_argument(
        "--organisation",
        help="Azure DevOps organisation. Also accepted in the AZURE_DEVOPS_ORGANISATION envvar.",
    )

    parser.add_argument(
        "--url",
        help="Collection URL for Azure DevOps Server. Also accepted in the AZURE_DEVOPS_URL envvar.",
    )

    parser.add_argument(
        "--api-version",
        help="Azure DevOps REST API version. Also accepted in the AZURE_DEVOPS_API_VERSION envvar.",
    )

    parser.add_argument(
        "--access-token",
        help="Personal access token. Also accepted in the AZURE_DEVOPS_ACCESS_TOKEN envvar.",
    )

    parser.add_argument(
        "--access-token-file",
        type=Path,
        help="File holding the personal access token. Also accepted in the AZURE_DEVOPS_ACCESS_TOKEN_FILE envvar.",
    )

    parser.add_argument(
        "--tenant-id",
        help="Service principal tenant ID. Also accepted in the AZURE_TENANT_ID envvar.",
    )

    parser.add_argument(
        "--client-id",
        help="Service principal client ID. Also accepted in the AZURE_CLIENT_ID envvar.",
    )

    parser.add_argument(
        "--client-secret",
        help="Service principal client secret. Also accepted in the AZURE_CLIENT_SECRET envvar.",
    )

    parser.add_argument(
        "--filter-projects",
        nargs="*",
        help="Only collect these projects (IDs or names, space-separated)",
    )

    parser.add_argument(
        "--blacklist-projects",
        nargs="*",
        help="Never collect these projects (IDs or names, space-separated)",
    )

    parser.add_argument(
        "--agentpool",
        nargs="*",
        type=int,
        help="Only collect these agent pool IDs. Also accepted in the AZURE_DEVOPS_AGENTPOOL envvar.",
    )

    parser.add_argument(
        "--queries-with-projects",
        nargs="*",
        help="Stored queries to count, as '<query UUID>@<project UUID>'",
    )

    parser.add_argument(
        "--concurrency-limit",
        type=int,
        help="Maximum number of requests in flight",
    )

    parser.add_argument(
        "--retries",
        type=int,
        help="Retries per request on transient failures",
    )

    parser.add_argument(
        "--scrape-time",
        type=int,
        help="Default collector interval in seconds. Also accepted in the SCRAPE_TIME envvar.",
    )

    parser.add_argument(
        "--cache-path",
        type=Path,
        help="Directory for the metrics cache. Also accepted in the CACHE_PATH envvar.",
    )

    parser.add_argument(
        "--host",
        help="Address the metrics server binds to",
    )

    parser.add_argument(
        "--port",
        type=int,
        help="Port the metrics server listens on",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Set the logging level",
    )

    parser.add_argument(
        "--rich-logs",
        action="store_true",
        help="Enable rich colored logging output",
    )

    parser.add_argument(
        "--print-config-and-exit",
        action="store_true",
        help="Print the resolved configuration as JSON (secrets masked) and exit",
    )

    return cast(Args, parser.parse_args(argv))


def configure_logging(log_level: str, use_rich: bool = False) -> None:
    """Configure logging with optional rich formatting.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_rich: Whether to use rich colored logging
    """
    if use_rich:
        logging.basicConfig(
            level=getattr(logging, log_level),
            format="%(message)s",
            datefmt="[%X]",
            handlers=[
                RichHandler(
                    console=Console(),
                    show_path=True,
                    show_time=True,
                    show_level=True,
                    markup=False,
                    rich_tracebacks=True,
                )
            ],
        )
    else:
        logging.basicConfig(
            level=getattr(logging, log_level),
            format="%(asctime)s [%(name)s:%(filename)s:%(lineno)d] %(levelname)s: %(message)s",
        )

    # silence libs logging
    # - urllib3 - we don't care about those debug posts
    # - uvicorn.access - one line per scrape
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


T = TypeVar("T")


def first_not_none(*values: T | None) -> T | None:
    for v in values:
        if v is not None:
            return v
    return None


def split_list(value: str | None) -> list[str] | None:
    """Split a comma or whitespace separated environment value."""
    if value is None:
        return None
    return [item for item in value.replace(",", " ").split() if item]


def drop_none(values: dict) -> dict:
    """Drop unset values so that model defaults apply."""
    return {key: value for key, value in values.items() if value is not None}


def read_access_token_file(path: Path) -> str:
    logger.info("Reading access token from file '%s'", path)
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigError(f"Unable to read access token file '{path}': {e}") from e


def check_deprecated_env(env: Mapping[str, str]) -> None:
    """Raise if a deprecated environment variable is set."""
    for name, replacement in DEPRECATED_ENV_VARS.items():
        if name in env:
            raise ConfigError(
                f"Environment variable {name} is deprecated, use {replacement} instead"
            )


def load_settings(args: Args, env: Mapping[str, str]) -> ExporterSettings:
    """Resolve settings from flags, environment, YAML file and defaults, in that order.

    Raises:
        ConfigError: If the access token file cannot be read
        ValidationError: If the resolved settings are invalid
    """
    config_dict: dict = {}
    if args.config:
        logger.info("Loading configuration from %s", args.config)
        with open(args.config, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f) or {}

    devops = dict(config_dict.get("azure_devops") or {})
    azure = config_dict.get("azure") or {}
    request = config_dict.get("request") or {}
    scrape = config_dict.get("scrape") or {}
    cache = config_dict.get("cache") or {}
    server = config_dict.get("server") or {}

    access_token_file = first_not_none(
        args.access_token_file,
        env.get("AZURE_DEVOPS_ACCESS_TOKEN_FILE"),
        devops.pop("access_token_file", None),
    )
    # A token file wins over every other token source
    access_token = first_not_none(
        read_access_token_file(Path(access_token_file)) if access_token_file else None,
        args.access_token,
        env.get("AZURE_DEVOPS_ACCESS_TOKEN"),
        devops.get("access_token"),
    )

    return ExporterSettings(
        azure_devops={
            **devops,
            **drop_none(
                {
                    "organisation": first_not_none(
                        args.organisation,
                        env.get("AZURE_DEVOPS_ORGANISATION"),
                        devops.get("organisation"),
                    ),
                    "url": first_not_none(
                        args.url, env.get("AZURE_DEVOPS_URL"), devops.get("url")
                    ),
                    "api_version": first_not_none(
                        args.api_version,
                        env.get("AZURE_DEVOPS_API_VERSION"),
                        devops.get("api_version"),
                    ),
                    "access_token": access_token,
                    "filter_projects": first_not_none(
                        args.filter_projects, devops.get("filter_projects")
                    ),
                    "blacklist_projects": first_not_none(
                        args.blacklist_projects, devops.get("blacklist_projects")
                    ),
                    "filter_agentpool": first_not_none(
                        args.agentpool,
                        split_list(env.get("AZURE_DEVOPS_AGENTPOOL")),
                        devops.get("filter_agentpool"),
                    ),
                    "queries_with_projects": first_not_none(
                        args.queries_with_projects,
                        devops.get("queries_with_projects"),
                    ),
                }
            ),
        },
        azure={
            **azure,
            **drop_none(
                {
                    "tenant_id": first_not_none(
                        args.tenant_id, env.get("AZURE_TENANT_ID"), azure.get("tenant_id")
                    ),
                    "client_id": first_not_none(
                        args.client_id, env.get("AZURE_CLIENT_ID"), azure.get("client_id")
                    ),
                    "client_secret": first_not_none(
                        args.client_secret,
                        env.get("AZURE_CLIENT_SECRET"),
                        azure.get("client_secret"),
                    ),
                }
            ),
        },
        request={
            **request,
            **drop_none(
                {
                    "concurrency_limit": args.concurrency_limit,
                    "retries": args.retries,
                }
            ),
        },
        limit=config_dict.get("limit") or {},
        scrape={
            **scrape,
            **drop_none(
                {
                    "time": first_not_none(
                        args.scrape_time, env.get("SCRAPE_TIME"), scrape.get("time")
                    )
                }
            ),
        },
        stats=config_dict.get("stats") or {},
        service_discovery=config_dict.get("service_discovery") or {},
        cache={
            **cache,
            **drop_none(
                {
                    "path": first_not_none(
                        args.cache_path, env.get("CACHE_PATH"), cache.get("path")
                    )
                }
            ),
        },
        server={
            **server,
            **drop_none({"host": args.host, "port": args.port}),
        },
    )


def format_validation_error(e: ValidationError) -> str:
    lines = []
    for err in e.errors():
        location = ".".join(str(loc) for loc in err["loc"])
        line = f"{location or 'settings'}: {err['msg']}"
        # Model level errors carry the whole input, secrets included
        if location and not location.endswith(SECRET_FIELDS):
            line += f" (got {err['input']})"
        lines.append(line)
    return "Invalid config\n" + "\n".join(lines)


def run(settings: ExporterSettings) -> None:
    """Wire up the exporter and serve metrics until the server stops.

    Raises:
        AuthenticationError: If service principal credentials are rejected
    """
    logger.info("Using organisation: %s", settings.azure_devops.organisation)
    logger.info("Using API version: %s", settings.azure_devops.api_version)
    logger.info("Using concurrency: %d", settings.request.concurrency_limit)
    logger.info("Using retries: %d", settings.request.retries)

    auth_provider = get_auth_provider(settings)
    if settings.auth_mode == "service-principal":
        # Fail at startup rather than on the first collector tick
        auth_provider.get_auth_token()

    client = AzureDevopsClient(
        organisation=settings.azure_devops.organisation,
        auth_provider=auth_provider,
        api_version=settings.azure_devops.api_version,
        url=settings.azure_devops.url,
        request_settings=settings.request,
        limits=settings.limit,
    )
    discovery = ServiceDiscovery(client, settings)

    metrics_registry = CollectorRegistry()
    snapshots = SnapshotRegistry()
    metrics_registry.register(snapshots)

    cache_store = None
    if settings.cache.path is not None:
        logger.info("Caching metrics in %s", settings.cache.path)
        cache_store = CacheStore(settings.cache.path)

    runtime = CollectorRuntime(
        client=client,
        registry=snapshots,
        fingerprint=settings.fingerprint(),
        cache_store=cache_store,
        metrics_registry=metrics_registry,
    )
    for spec, collector in build_collectors(settings, discovery):
        runtime.register(spec, collector)

    runtime.start()
    try:
        serve(create_app(metrics_registry), settings.server)
    finally:
        logger.info("Stopping collectors")
        runtime.shutdown()


def main(argv: list[str] | None = None) -> int:
    """Main function."""
    args = parse_args(argv)

    configure_logging(args.log_level, args.rich_logs)

    logger.info("Starting Azure DevOps exporter v%s", __version__)

    try:
        check_deprecated_env(environ)
        settings = load_settings(args, environ)

        # If print-config-and-exit flag is set, output config and exit
        if args.print_config_and_exit:
            logger.info("Printing resolved configuration")
            print(json.dumps(settings.masked_dump(), indent=2, sort_keys=True))
            return 0

        run(settings)

    except ValidationError as e:
        logger.error(format_validation_error(e))
        return 1
    except ConfigError as e:
        logger.error("Invalid config: %s", e)
        return 1
    except AuthenticationError as e:
        logger.error("Authentication failed: %s", e)
        logger.info(
            "Provide a valid access token, or AZURE_TENANT_ID, AZURE_CLIENT_ID and "
            "AZURE_CLIENT_SECRET for a service principal with access to the organisation"
        )
        return 1
    except KeyboardInterrupt:
        logger.info("Exporter stopped by user")
        return 0
    except Exception as e:
        logger.error("Error running exporter: %s", e, exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
