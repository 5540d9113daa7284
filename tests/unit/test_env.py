"""Tests for wtenv process environment scrubbing."""

from unittest.mock import patch

from wtenv.env import (
    USER_ENV_KEYS_VAR,
    build_container_env,
    build_process_environment,
    validate_env_vars,
)


class TestBuildProcessEnvironment:
    """Tests for build_process_environment."""

    def test_strips_default_internal_vars(self) -> None:
        env = build_process_environment(
            {"PATH": "/usr/bin", "PORT": "3030", "NODE_ENV": "production", "WTENV_STORE": "/x", "APP": "1"}
        )

        assert env == {"PATH": "/usr/bin", "APP": "1"}

    def test_custom_internal_vars(self) -> None:
        env = build_process_environment({"PORT": "3030", "SECRET": "s"}, internal_vars=["SECRET"])

        assert env == {"PORT": "3030"}

    def test_additional_vars_skip_empty_values(self) -> None:
        env = build_process_environment({}, additional={"A": "1", "B": "", "C": "  "})

        assert env == {"A": "1"}

    def test_defaults_to_os_environ(self) -> None:
        with patch.dict("os.environ", {"WTENV_TEST_MARKER": "yes", "PORT": "1"}):
            env = build_process_environment()

        assert env["WTENV_TEST_MARKER"] == "yes"
        assert "PORT" not in env

    def test_base_is_not_mutated(self) -> None:
        base = {"PORT": "3030"}

        build_process_environment(base)

        assert base == {"PORT": "3030"}


class TestContainerEnv:
    """Tests for the container allowlist."""

    def test_only_user_keys_and_api_keys(self) -> None:
        env = {
            USER_ENV_KEYS_VAR: "APP_MODE, FEATURE_FLAG",
            "APP_MODE": "dev",
            "FEATURE_FLAG": "on",
            "ANTHROPIC_API_KEY": "sk-ant",
            "DATABASE_URL": "postgres://host",
            "HOME": "/root",
        }

        assert build_container_env(env) == {
            "APP_MODE": "dev",
            "FEATURE_FLAG": "on",
            "ANTHROPIC_API_KEY": "sk-ant",
        }

    def test_dangerous_user_keys_blocked(self) -> None:
        env = {USER_ENV_KEYS_VAR: "PATH,LD_PRELOAD", "PATH": "/evil", "LD_PRELOAD": "/evil.so"}

        assert build_container_env(env) == {}

    def test_missing_user_keys_ignored(self) -> None:
        assert build_container_env({USER_ENV_KEYS_VAR: "NOT_SET"}) == {}

    def test_empty_environment(self) -> None:
        assert build_container_env({}) == {}


class TestValidateEnvVars:
    """Tests for validate_env_vars."""

    def test_blocks_shell_metacharacters(self) -> None:
        result = validate_env_vars({"OK": "value", "BAD": "x; rm -rf /", "SUB": "$(whoami)"})

        assert result == {"OK": "value"}

    def test_dangerous_names_case_insensitive(self) -> None:
        assert validate_env_vars({"ld_preload": "/x.so"}) == {}
