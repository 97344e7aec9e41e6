#!/usr/bin/env python3
"""Main entrypoint for the cloud telemetry agent."""

import argparse
import json
import logging
import signal
import sys
from os import environ
from pathlib import Path
from typing import TypeVar, cast

import yaml
from pydantic import ValidationError

from cloud_agent import NAME, VERSION, constants
from cloud_agent.agent import Agent
from cloud_agent.collectors import config_example, gcp_config_example
from cloud_agent.config_loader import ConfigFileError
from cloud_agent.service import NoInstancesError
from cloud_agent.settings import AgentSettings


class Args(argparse.Namespace):
    config: Path | None
    enable_aws: bool
    aws_conf_dir: Path | None
    enable_gcp: bool
    gcp_conf_dir: Path | None
    tick_interval: int | None
    connection_timeout: int | None
    config_example: str | None
    gcp_config_example: str | None
    log_level: str
    rich_logs: bool
    print_config_and_exit: bool


logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> Args:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog=NAME,
        description="Cloud provider metrics to Circonus telemetry agent",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to YAML agent configuration file",
    )

    parser.add_argument(
        "--enable-aws",
        action="store_true",
        help="Enable AWS metric collection",
    )

    parser.add_argument(
        "--aws-conf-dir",
        type=Path,
        help=f"AWS account configuration directory (also accepted in the {constants.AWS_CONF_DIR_ENV} envvar)",
    )

    parser.add_argument(
        "--enable-gcp",
        action="store_true",
        help="Enable GCP metric collection",
    )

    parser.add_argument(
        "--gcp-conf-dir",
        type=Path,
        help=f"GCP project configuration directory (also accepted in the {constants.GCP_CONF_DIR_ENV} envvar)",
    )

    parser.add_argument(
        "--tick-interval",
        type=int,
        help="Seconds between scheduler wakes",
    )

    parser.add_argument(
        "--connection-timeout",
        type=int,
        help="Timeout for destination HTTP requests in seconds",
    )

    parser.add_argument(
        "--config-example",
        choices=["json", "yaml"],
        help="Print an example AWS account configuration in the given format and exit",
    )

    parser.add_argument(
        "--gcp-config-example",
        choices=["json", "yaml"],
        help="Print an example GCP project configuration in the given format and exit",
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
        help="Print the resolved configuration as JSON and exit without running the agent",
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    return cast(Args, parser.parse_args(argv))


def configure_logging(log_level: str, use_rich: bool = False) -> None:
    """Configure logging with optional rich formatting.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_rich: Whether to use rich colored logging
    """
    if use_rich:
        from rich.console import Console
        from rich.logging import RichHandler

        logging.basicConfig(
            level=getattr(logging, log_level),
            format="%(message)s",
            datefmt="[%X]",
            handlers=[
                RichHandler(
                    console=Console(stderr=True),
                    show_path=True,
                    show_time=True,
                    show_level=True,
                    rich_tracebacks=True,
                )
            ],
        )
    else:
        logging.basicConfig(
            level=getattr(logging, log_level),
            format="%(asctime)s [%(name)s:%(filename)s:%(lineno)d] %(threadName)s %(levelname)s: %(message)s",
        )

    # silence libs logging, the provider SDKs log every request and credential lookup at debug
    for name in ("urllib3", "botocore", "boto3", "google", "grpc"):
        logging.getLogger(name).setLevel(logging.WARNING)


T = TypeVar("T")


def first_not_none(*values: T | None) -> T | None:
    for v in values:
        if v is not None:
            return v
    return None


def load_agent_config(path: Path | None) -> dict:
    if path is None:
        return {}
    logger.info("Loading configuration from %s", path)
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def resolve_settings(args: Args, config_dict: dict) -> AgentSettings:
    """Merge CLI flags over the agent config file over defaults.

    Raises:
        ValidationError: If the resolved values are invalid.
    """
    return AgentSettings(
        aws_enabled=first_not_none(
            True if args.enable_aws else None,
            config_dict.get("aws_enabled"),
            constants.DEFAULT_AWS_ENABLED,
        ),
        aws_conf_dir=first_not_none(
            args.aws_conf_dir,
            environ.get(constants.AWS_CONF_DIR_ENV),
            config_dict.get("aws_conf_dir"),
            constants.DEFAULT_AWS_CONF_DIR,
        ),
        gcp_enabled=first_not_none(
            True if args.enable_gcp else None,
            config_dict.get("gcp_enabled"),
            constants.DEFAULT_GCP_ENABLED,
        ),
        gcp_conf_dir=first_not_none(
            args.gcp_conf_dir,
            environ.get(constants.GCP_CONF_DIR_ENV),
            config_dict.get("gcp_conf_dir"),
            constants.DEFAULT_GCP_CONF_DIR,
        ),
        tick_interval=first_not_none(
            args.tick_interval,
            config_dict.get("tick_interval"),
            constants.TICK_INTERVAL,
        ),
        connection_timeout=first_not_none(
            args.connection_timeout,
            config_dict.get("connection_timeout"),
            constants.CONNECTION_TIMEOUT,
        ),
    )


def print_config_example(fmt: str, provider: str = "aws") -> None:
    example = gcp_config_example() if provider == "gcp" else config_example()
    if fmt == "yaml":
        print(yaml.safe_dump(example, sort_keys=False), end="")
    else:
        print(json.dumps(example, indent=2))


def main(argv: list[str] | None = None) -> int:
    """Main function."""
    args = parse_args(argv)

    if args.config_example:
        print_config_example(args.config_example)
        return 0
    if args.gcp_config_example:
        print_config_example(args.gcp_config_example, provider="gcp")
        return 0

    configure_logging(args.log_level, args.rich_logs)

    logger.info("Starting %s v%s", NAME, VERSION)

    try:
        config = resolve_settings(args, load_agent_config(args.config))

        # If print-config-and-exit flag is set, output config and exit
        if args.print_config_and_exit:
            logger.info("Printing resolved configuration")
            print(json.dumps(config.model_dump(mode="json"), indent=2, sort_keys=True))
            return 0

        if not (config.aws_enabled or config.gcp_enabled):
            logger.error("No cloud services enabled, must enable at least one")
            return 1

        agent = Agent(config)

        _ = signal.signal(signal.SIGTERM, lambda _, _2: agent.shutdown())

        try:
            agent.run()
        except KeyboardInterrupt:
            logger.info("Agent stopped by user")
            agent.shutdown()

    except ValidationError as e:
        logger.error(
            "Invalid config\n"
            + "\n".join(
                [
                    f"{'.'.join([str(loc) for loc in err['loc']])}: {err['msg']} (got {err['input']})"
                    for err in e.errors()
                ]
            )
        )
        return 1
    except (ConfigFileError, NoInstancesError) as e:
        logger.error("Unable to start: %s", e)
        return 1
    except Exception as e:
        logger.error("Error running agent: %s", e, exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
