"""Tests for azure_devops_exporter.main module."""

import json
import os
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from pydantic import ValidationError

from azure_devops_exporter.auth.providers import AuthenticationError
from azure_devops_exporter.cache_store import CacheStore
from azure_devops_exporter.main import (
    check_deprecated_env,
    configure_logging,
    format_validation_error,
    load_settings,
    main,
    parse_args,
    split_list,
)
from azure_devops_exporter.settings import ConfigError, ExporterSettings

QUERY = "0f4a4ddd-b1c4-4a8c-9a8e-5b1c4a2b3c4d@6ce954b1-ce1f-45d1-b94d-e6bf2464ba2c"

MINIMAL_ARGS = ["--organisation", "test-org", "--access-token", "secret-pat"]


@pytest.fixture
def clean_env():
    """Run with an environment free of exporter variables."""
    with patch.dict(os.environ, {}, clear=True):
        yield os.environ


@pytest.fixture
def config_file(temp_dir):
    path = temp_dir / "config.yaml"
    path.write_text(
        "azure_devops:\n"
        "  organisation: file-org\n"
        "  access_token: file-pat\n"
        "  filter_projects: [alpha]\n"
        "scrape:\n"
        "  time: 900\n"
        "  time_build: 60\n"
        "limit:\n"
        "  project: 50\n"
        "server:\n"
        "  port: 9000\n"
    )
    return path


class TestParseArgs:
    """Test cases for argument parsing."""

    def test_defaults(self):
        args = parse_args([])

        assert args.config is None
        assert args.organisation is None
        assert args.log_level == "INFO"
        assert args.rich_logs is False
        assert args.print_config_and_exit is False

    def test_all_options(self):
        args = parse_args(
            [
                "--config",
                "/path/to/config.yaml",
                "--organisation",
                "test-org",
                "--access-token-file",
                "/run/secrets/pat",
                "--filter-projects",
                "alpha",
                "beta",
                "--agentpool",
                "1",
                "9",
                "--scrape-time",
                "120",
                "--port",
                "9100",
                "--log-level",
                "DEBUG",
                "--rich-logs",
            ]
        )

        assert args.config == Path("/path/to/config.yaml")
        assert args.access_token_file == Path("/run/secrets/pat")
        assert args.filter_projects == ["alpha", "beta"]
        assert args.agentpool == [1, 9]
        assert args.scrape_time == 120
        assert args.port == 9100
        assert args.log_level == "DEBUG"
        assert args.rich_logs is True

    @pytest.mark.parametrize(
        "argv", [["--port", "not-a-port"], ["--unknown"], ["--log-level", "TRACE"]]
    )
    def test_invalid_arguments_exit_with_1(self, argv, capsys):
        with pytest.raises(SystemExit) as exc_info:
            parse_args(argv)

        assert exc_info.value.code == 1
        assert "usage:" in capsys.readouterr().err


class TestConfigureLogging:
    """Test cases for logging configuration."""

    @patch("azure_devops_exporter.main.logging.basicConfig")
    @patch("azure_devops_exporter.main.logging.getLogger")
    def test_plain_logging(self, mock_get_logger, mock_basic_config):
        configure_logging("DEBUG")

        mock_basic_config.assert_called_once()
        call_args = mock_basic_config.call_args
        assert call_args[1]["level"] == 10  # logging.DEBUG
        assert "handlers" not in call_args[1]
        mock_get_logger.assert_any_call("urllib3")

    @patch("azure_devops_exporter.main.logging.basicConfig")
    @patch("azure_devops_exporter.main.logging.getLogger")
    def test_rich_logging(self, mock_get_logger, mock_basic_config):
        from rich.logging import RichHandler

        configure_logging("INFO", use_rich=True)

        handlers = mock_basic_config.call_args[1]["handlers"]
        assert isinstance(handlers[0], RichHandler)


class TestLoadSettings:
    """Test cases for resolving settings from flags, environment and file."""

    def test_from_flags(self):
        settings = load_settings(parse_args(MINIMAL_ARGS), {})

        assert settings.azure_devops.organisation == "test-org"
        assert settings.azure_devops.access_token == "secret-pat"
        assert settings.scrape.time == 1800

    def test_from_config_file(self, config_file):
        settings = load_settings(parse_args(["--config", str(config_file)]), {})

        assert settings.azure_devops.organisation == "file-org"
        assert settings.azure_devops.filter_projects == ["alpha"]
        assert settings.scrape.interval("time_build") == 60
        assert settings.scrape.interval("time_release") == 900
        assert settings.limit.project == 50
        assert settings.server.port == 9000

    def test_env_overrides_file(self, config_file):
        env = {"AZURE_DEVOPS_ORGANISATION": "env-org", "SCRAPE_TIME": "120"}

        settings = load_settings(parse_args(["--config", str(config_file)]), env)

        assert settings.azure_devops.organisation == "env-org"
        assert settings.scrape.time == 120
        # Per-collector intervals from the file are kept
        assert settings.scrape.interval("time_build") == 60

    def test_flag_overrides_env(self, config_file):
        env = {"AZURE_DEVOPS_ORGANISATION": "env-org"}

        settings = load_settings(
            parse_args(["--config", str(config_file), "--organisation", "flag-org"]), env
        )

        assert settings.azure_devops.organisation == "flag-org"

    def test_access_token_file_wins(self, temp_dir):
        token_file = temp_dir / "pat"
        token_file.write_text("file-pat\n")
        env = {"AZURE_DEVOPS_ACCESS_TOKEN": "env-pat"}

        settings = load_settings(
            parse_args(MINIMAL_ARGS + ["--access-token-file", str(token_file)]), env
        )

        assert settings.azure_devops.access_token == "file-pat"

    def test_unreadable_access_token_file(self, temp_dir):
        args = parse_args(["--organisation", "org", "--access-token-file", str(temp_dir / "missing")])

        with pytest.raises(ConfigError):
            load_settings(args, {})

    def test_agentpool_env(self):
        settings = load_settings(
            parse_args(MINIMAL_ARGS), {"AZURE_DEVOPS_AGENTPOOL": "1, 2 3"}
        )

        assert settings.azure_devops.filter_agentpool == [1, 2, 3]

    def test_service_principal_env(self):
        env = {
            "AZURE_DEVOPS_ORGANISATION": "org",
            "AZURE_TENANT_ID": "tenant",
            "AZURE_CLIENT_ID": "client",
            "AZURE_CLIENT_SECRET": "secret",
        }

        settings = load_settings(parse_args([]), env)

        assert settings.auth_mode == "service-principal"

    def test_missing_credentials(self):
        with pytest.raises(ValidationError, match="neither an Azure DevOps PAT token"):
            load_settings(parse_args(["--organisation", "org"]), {})

    def test_split_list(self):
        assert split_list(None) is None
        assert split_list("a,b  c,,") == ["a", "b", "c"]


class TestHelpers:
    def test_deprecated_env(self):
        with pytest.raises(ConfigError, match="AZURE_DEVOPS_AGENTPOOL"):
            check_deprecated_env({"AZURE_DEVOPS_FILTER_AGENTPOOL": "1"})

        check_deprecated_env({"AZURE_DEVOPS_AGENTPOOL": "1"})

    def test_validation_error_hides_secrets(self):
        with pytest.raises(ValidationError) as exc_info:
            ExporterSettings(azure_devops={"organisation": "org", "access_token": 123456})

        message = format_validation_error(exc_info.value)

        assert message.startswith("Invalid config\n")
        assert "azure_devops.access_token" in message
        assert "123456" not in message

    def test_validation_error_model_level(self):
        with pytest.raises(ValidationError) as exc_info:
            ExporterSettings(azure_devops={"organisation": "org"})

        message = format_validation_error(exc_info.value)

        assert "neither an Azure DevOps PAT token" in message
        assert "(got" not in message


@patch("azure_devops_exporter.main.configure_logging")
class TestMain:
    """Test cases for main function."""

    def test_print_config_and_exit(self, mock_configure_logging, clean_env, capsys):
        with patch("azure_devops_exporter.main.run") as mock_run:
            result = main(MINIMAL_ARGS + ["--print-config-and-exit"])

        assert result == 0
        mock_run.assert_not_called()
        output = capsys.readouterr().out
        config = json.loads(output)
        assert config["azure_devops"]["organisation"] == "test-org"
        assert config["azure_devops"]["access_token"] == "***"
        assert "secret-pat" not in output

    def test_malformed_query(self, mock_configure_logging, clean_env):
        """Test that a malformed query fails before any client is created."""
        with patch("azure_devops_exporter.main.AzureDevopsClient") as mock_client_class:
            result = main(MINIMAL_ARGS + ["--queries-with-projects", "not-a-query"])

        assert result == 1
        mock_client_class.assert_not_called()

    def test_deprecated_env(self, mock_configure_logging, clean_env):
        clean_env["AZURE_DEVOPS_FILTER_AGENTPOOL"] = "1"

        with patch("azure_devops_exporter.main.run") as mock_run:
            result = main(MINIMAL_ARGS)

        assert result == 1
        mock_run.assert_not_called()

    def test_missing_credentials(self, mock_configure_logging, clean_env):
        assert main(["--organisation", "test-org"]) == 1

    def test_authentication_error(self, mock_configure_logging, clean_env):
        provider = Mock()
        provider.get_auth_token.side_effect = AuthenticationError("invalid_client")
        argv = [
            "--organisation",
            "test-org",
            "--tenant-id",
            "tenant",
            "--client-id",
            "client",
            "--client-secret",
            "secret",
        ]

        with (
            patch("azure_devops_exporter.main.get_auth_provider", return_value=provider),
            patch("azure_devops_exporter.main.serve") as mock_serve,
        ):
            result = main(argv)

        assert result == 1
        mock_serve.assert_not_called()

    @patch("azure_devops_exporter.main.serve")
    @patch("azure_devops_exporter.main.CollectorRuntime")
    def test_run(self, mock_runtime_class, mock_serve, mock_configure_logging, clean_env, temp_dir):
        runtime = mock_runtime_class.return_value

        result = main(MINIMAL_ARGS + ["--cache-path", str(temp_dir), "--port", "9100"])

        assert result == 0
        kwargs = mock_runtime_class.call_args.kwargs
        assert isinstance(kwargs["cache_store"], CacheStore)
        assert kwargs["fingerprint"] == load_settings(
            parse_args(MINIMAL_ARGS), {}
        ).fingerprint()
        assert runtime.register.call_count == 11
        runtime.start.assert_called_once()
        runtime.shutdown.assert_called_once()
        mock_serve.assert_called_once()
        assert mock_serve.call_args.args[1].port == 9100

    @patch("azure_devops_exporter.main.serve")
    @patch("azure_devops_exporter.main.CollectorRuntime")
    def test_keyboard_interrupt(
        self, mock_runtime_class, mock_serve, mock_configure_logging, clean_env
    ):
        """Test main function handles KeyboardInterrupt gracefully."""
        mock_serve.side_effect = KeyboardInterrupt()

        result = main(MINIMAL_ARGS)

        assert result == 0
        mock_runtime_class.return_value.shutdown.assert_called_once()

    @patch("azure_devops_exporter.main.serve")
    @patch("azure_devops_exporter.main.CollectorRuntime")
    def test_unexpected_exception(
        self, mock_runtime_class, mock_serve, mock_configure_logging, clean_env
    ):
        mock_serve.side_effect = OSError("address already in use")

        result = main(MINIMAL_ARGS)

        assert result == 1
        mock_runtime_class.return_value.shutdown.assert_called_once()
