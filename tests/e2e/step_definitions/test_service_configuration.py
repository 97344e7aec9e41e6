"""Step definitions for agent configuration scenarios."""

import json
import os
import subprocess
import sys
import tempfile
from pathlib import Path

import pytest
from pytest_bdd import given, parsers, scenarios, then, when

ENV_VARS_CLEARED = ("CLOUD_AGENT_AWS_CONF_DIR", "CLOUD_AGENT_GCP_CONF_DIR")


# Helper functions
def extract_json_from_output(stdout):
    """Extract and parse JSON from command output."""
    lines = stdout.split("\n")
    json_lines = []
    in_json = False

    for line in lines:
        if line.startswith("{"):
            in_json = True
        if in_json:
            json_lines.append(line)
        if in_json and line.startswith("}"):
            break

    if json_lines:
        return json.loads("\n".join(json_lines))
    return None


def run_agent(project_root, args, env_vars, command_result):
    """Run the agent as a module and store its result."""
    env = os.environ.copy()
    for name in ENV_VARS_CLEARED:
        env.pop(name, None)
    env.update(env_vars)

    try:
        result = subprocess.run(
            [sys.executable, "-m", "cloud_agent.main", *args],
            capture_output=True,
            text=True,
            timeout=10,
            cwd=project_root,
            env=env,
        )
    except subprocess.TimeoutExpired:
        pytest.fail("Command timed out")

    command_result["returncode"] = result.returncode
    command_result["stdout"] = result.stdout
    command_result["stderr"] = result.stderr


def assert_output_contains(command_result, expected_text):
    """Assert that stdout or stderr contains the expected text."""
    combined_output = command_result["stdout"] + command_result["stderr"]
    assert expected_text in combined_output, (
        f"Expected text '{expected_text}' not found in output. "
        f"stdout: {command_result['stdout']}, stderr: {command_result['stderr']}"
    )


# Load scenarios from the feature file
scenarios("../features/service_configuration.feature")


@pytest.fixture
def project_root():
    return Path(__file__).parent.parent.parent.parent


@pytest.fixture
def fixtures_dir():
    """Get the path to test fixtures directory."""
    return Path(__file__).parent.parent / "fixtures"


@pytest.fixture
def command_result():
    """Store the result of running a command."""
    return {}


@pytest.fixture
def env_vars():
    """Store environment variables for the test."""
    return {}


@pytest.fixture
def temp_config_file():
    """Store temporary config file path and clean up after test."""
    temp_file_data = {}
    yield temp_file_data

    if "path" in temp_file_data:
        try:
            os.unlink(temp_file_data["path"])
        except FileNotFoundError:
            pass


# Given steps
@given(parsers.parse('I set environment variable "{var_name}" to "{var_value}"'))
def set_environment_variable(env_vars, var_name, var_value):
    env_vars[var_name] = var_value


@given("I have a config file with content:")
def create_temp_config_file(temp_config_file, docstring):
    temp_file = tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False)
    temp_file.write(docstring)
    temp_file.close()

    temp_config_file["path"] = temp_file.name


# When steps
@when(parsers.re(r'I run the agent with args "(?P<args>[^"]*)"$'))
def run_with_args(project_root, env_vars, command_result, args):
    run_agent(project_root, args.split(), env_vars, command_result)


@when(
    parsers.re(
        r'I run the agent with config file "(?P<config_file>[^"]+)" and args "(?P<args>[^"]*)"$'
    )
)
def run_with_config_file(
    project_root, fixtures_dir, env_vars, command_result, config_file, args
):
    config_path = fixtures_dir / config_file
    run_agent(
        project_root,
        ["--config", str(config_path), *args.split()],
        env_vars,
        command_result,
    )


@when(parsers.re(r'I run the agent with this config file and args "(?P<args>[^"]*)"$'))
def run_with_temp_config_file(
    project_root, temp_config_file, env_vars, command_result, args
):
    run_agent(
        project_root,
        ["--config", temp_config_file["path"], *args.split()],
        env_vars,
        command_result,
    )


@when(
    parsers.re(
        r'I run the agent with account directory "(?P<conf_dir>[^"]+)" and args "(?P<args>[^"]*)"$'
    )
)
def run_with_account_directory(
    project_root, fixtures_dir, env_vars, command_result, conf_dir, args
):
    run_agent(
        project_root,
        ["--aws-conf-dir", str(fixtures_dir / conf_dir), *args.split()],
        env_vars,
        command_result,
    )


# Then steps
@then(parsers.parse("the exit code must be {code:d}"))
def check_exit_code(command_result, code):
    assert command_result["returncode"] == code, (
        f"Expected exit code {code}, got {command_result['returncode']}. "
        f"stdout: {command_result['stdout']}, stderr: {command_result['stderr']}"
    )


@then(parsers.parse('the log must contain: "{expected_text}"'))
def check_log_contains_text(command_result, expected_text):
    assert_output_contains(command_result, expected_text)


@then(parsers.parse('the output must contain: "{expected_text}"'))
def check_stdout_contains_text(command_result, expected_text):
    assert expected_text in command_result["stdout"], (
        f"Expected text '{expected_text}' not found in stdout: {command_result['stdout']}"
    )


@then(parsers.parse('the config output must contain: "{key}" with value "{expected_value}"'))
def check_config_output_contains_key_value(command_result, key, expected_value):
    """Check that the config output contains a specific key-value pair."""
    try:
        config_data = extract_json_from_output(command_result["stdout"])
    except json.JSONDecodeError as e:
        pytest.fail(
            f"Failed to parse JSON from output: {e}. stdout: {command_result['stdout']}"
        )
    if config_data is None:
        pytest.fail(f"No JSON config found in stdout: {command_result['stdout']}")

    actual_value = str(config_data.get(key, ""))
    assert actual_value == expected_value, (
        f"Expected {key}='{expected_value}', got {key}='{actual_value}'. "
        f"Full config: {config_data}"
    )
