"""Tests for process orchestration in the main module."""

import sys
from argparse import Namespace
from pathlib import Path
from unittest.mock import Mock, patch

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from prdash.config import Config
from prdash.errors import AuthenticationError, ConfigurationError
from prdash.main import orchestrate_server


def _args(**overrides) -> Namespace:
    values = {"host": "127.0.0.1", "port": 9000, "log_level": "INFO"}
    values.update(overrides)
    return Namespace(**values)


def test_orchestrate_server_success_wires_components():
    """Verify orchestration loads config, builds the app and serves it."""
    config = Config(token="secret", host="127.0.0.1", port=9000)
    app = Mock()

    with patch("prdash.main.parse_args", return_value=_args()) as parse_args_mock, patch(
        "prdash.main.load_config", return_value=config
    ) as load_config_mock, patch(
        "prdash.main.create_app", return_value=app
    ) as create_app_mock, patch(
        "prdash.main.uvicorn.run"
    ) as run_mock:
        exit_code = orchestrate_server()

    assert exit_code == 0
    parse_args_mock.assert_called_once_with(None)
    load_config_mock.assert_called_once_with(host="127.0.0.1", port=9000)
    create_app_mock.assert_called_once_with(config)
    run_mock.assert_called_once_with(app, host="127.0.0.1", port=9000, log_level="info")


def test_orchestrate_server_missing_token_returns_auth_exit_code():
    """Verify missing credentials return the authentication exit code."""
    with patch("prdash.main.parse_args", return_value=_args()), patch(
        "prdash.main.load_config",
        side_effect=AuthenticationError("Missing GitHub credentials."),
    ):
        exit_code = orchestrate_server()

    assert exit_code == 3


def test_orchestrate_server_bad_configuration_returns_config_exit_code():
    """Verify invalid settings return the configuration exit code."""
    with patch("prdash.main.parse_args", return_value=_args()), patch(
        "prdash.main.load_config",
        side_effect=ConfigurationError("Invalid value for 'PRDASH_TOP_N'"),
    ):
        exit_code = orchestrate_server()

    assert exit_code == 2


def test_orchestrate_server_unexpected_error_returns_generic_exit_code():
    """Verify unexpected exceptions are mapped to the generic non-zero exit code."""
    with patch("prdash.main.parse_args", side_effect=RuntimeError("boom")):
        exit_code = orchestrate_server()

    assert exit_code == 1
