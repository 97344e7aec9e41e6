"""Supervisors of the collection instances of one cloud provider."""

import functools
import logging
import threading
from collections.abc import Callable
from pathlib import Path

import requests
from pydantic import BaseModel, ValidationError

from cloud_agent import NAME
from cloud_agent.api_client import DestinationAPI
from cloud_agent.check import CheckError, DestinationCheck
from cloud_agent.collectors import CollectorError, new_collectors, new_gcp_collectors
from cloud_agent.config_loader import ConfigFileError, discover_config_files, load_config_file
from cloud_agent.instance import CollectionInstance
from cloud_agent.providers import (
    CloudWatchAPI,
    GCPMonitoringAPI,
    ProviderError,
    ProviderMetricsAPI,
)
from cloud_agent.settings import (
    AccountSettings,
    AgentSettings,
    AWSCredentials,
    DestinationSettings,
    GCPProjectSettings,
    RegionSettings,
    Tag,
)
from cloud_agent.submission import MetricBuffer, SubmissionClient

logger = logging.getLogger(__name__)

PROJECT_STATE_ACTIVE = "ACTIVE"


class NoInstancesError(Exception):
    """Exception raised when no usable account configuration was found."""


class ServiceSupervisor:
    """Builds the collection instances of one provider and runs them.

    Every instance's scheduler runs in its own thread. All instances share
    one shutdown event, set by `shutdown()`; the agent passes the same event
    to every provider.
    """

    name = ""
    settings_model: type[BaseModel]

    def __init__(
        self,
        conf_dir: Path,
        settings: AgentSettings,
        shutdown_event: threading.Event | None = None,
    ) -> None:
        """
        Args:
            conf_dir: Directory of per account configuration files
            settings: Process-wide agent settings
            shutdown_event: Shared cancellation token (default a new one)
        """
        self.conf_dir = conf_dir
        self.settings = settings
        self.shutdown_event = shutdown_event or threading.Event()
        self.instances: list[CollectionInstance] = []

    def load_accounts(self) -> list:
        """Load and validate every configuration file, skipping invalid ones.

        Raises:
            ConfigFileError: If the configuration directory does not exist.
        """
        accounts = []
        for path in discover_config_files(self.conf_dir):
            try:
                accounts.append(self.settings_model.model_validate(load_config_file(path)))
            except (ConfigFileError, ValidationError) as e:
                logger.error("Skipping account configuration %s: %s", path, e)
                continue
            logger.info("Loaded account configuration %s", path)
        return accounts

    def destination_check(
        self,
        check_id: str,
        destination: DestinationSettings,
        display_name: str,
        tags: list[Tag],
    ) -> DestinationCheck:
        """Create and resolve a destination check.

        Raises:
            CheckError: If the check cannot be resolved.
            requests.RequestException: If the management API is unreachable.
        """
        try:
            api = DestinationAPI(
                api_url=destination.api_url,
                api_key=destination.api_key,
                api_app=destination.api_app,
                ca_file=destination.api_ca_file,
                connection_timeout=self.settings.connection_timeout,
            )
        except ValueError as e:
            raise CheckError(f"invalid destination settings: {e}") from e

        check = DestinationCheck(
            check_id=check_id,
            settings=destination,
            display_name=display_name,
            tags=tags,
            api=api,
            submission_client=SubmissionClient(self.settings.connection_timeout),
        )
        check.resolve()
        return check

    def build_instances(self) -> list[CollectionInstance]:
        """Create instances for every usable configuration.

        Raises:
            ConfigFileError: If the configuration directory does not exist.
            NoInstancesError: If nothing usable was configured.
        """
        raise NotImplementedError

    def start(self) -> list[threading.Thread]:
        """Build the instances and start one scheduler thread per instance.

        Raises:
            ConfigFileError: If the configuration directory does not exist.
            NoInstancesError: If nothing usable was configured.
        """
        logger.info("Starting %s service", self.name)
        logger.info("Configuration directory: %s", self.conf_dir)

        self.instances = self.build_instances()

        threads = [
            threading.Thread(
                target=instance.start,
                args=(self.shutdown_event,),
                name=f"instance-{instance.instance_id}",
            )
            for instance in self.instances
        ]
        for thread in threads:
            thread.start()
        logger.info("Running %d %s collection instances", len(threads), self.name)
        return threads

    def run(self) -> None:
        """Run every instance until shutdown is requested.

        Raises:
            ConfigFileError: If the configuration directory does not exist.
            NoInstancesError: If nothing usable was configured.
        """
        for thread in self.start():
            thread.join()
        logger.info("%s service stopped", self.name)

    def shutdown(self) -> None:
        self.shutdown_event.set()


class AWSService(ServiceSupervisor):
    """One collection instance per configured account region."""

    name = "AWS"
    settings_model = AccountSettings

    def __init__(
        self,
        settings: AgentSettings,
        api_factory: Callable[[AWSCredentials, str], ProviderMetricsAPI] = CloudWatchAPI.from_credentials,
        shutdown_event: threading.Event | None = None,
    ) -> None:
        """
        Args:
            settings: Process-wide agent settings
            api_factory: Creates the provider API client for credentials and a region
            shutdown_event: Shared cancellation token
        """
        super().__init__(settings.aws_conf_dir, settings, shutdown_event)
        self.api_factory = api_factory

    def build_instance(
        self, account: AccountSettings, region: RegionSettings
    ) -> CollectionInstance:
        """Resolve the region's destination check and create its collectors.

        Raises:
            CheckError: If the check cannot be resolved.
            CollectorError: If no collector could be created.
            requests.RequestException: If the management API is unreachable.
        """
        region_tag = Tag(category="aws_region", value=region.name)
        destination = account.destination

        check = self.destination_check(
            check_id=f"aws_{account.id}_{region.name}",
            destination=destination,
            display_name=f"aws {account.id} {region.name} /{NAME}",
            tags=[Tag(category=NAME, value="aws"), region_tag, *account.tags],
        )

        buffer = MetricBuffer(trace=destination.trace_metrics)
        collectors = new_collectors(region.services, check, buffer, self.shutdown_event)

        return CollectionInstance(
            instance_id=account.id,
            check=check,
            collectors=collectors,
            api_factory=functools.partial(self.api_factory, account.aws, region.name),
            period=account.period_seconds,
            buffer=buffer,
            base_tags=[*account.tags, *region.tags, region_tag],
            tick_interval=self.settings.tick_interval,
        )

    def build_instances(self) -> list[CollectionInstance]:
        instances = []
        for account in self.load_accounts():
            for region in account.regions:
                try:
                    instances.append(self.build_instance(account, region))
                except (CheckError, CollectorError, requests.RequestException) as e:
                    logger.error(
                        "Skipping account %s region %s: %s", account.id, region.name, e
                    )

        if not instances:
            raise NoInstancesError(f"no valid AWS configurations found in {self.conf_dir}")
        return instances


class GCPService(ServiceSupervisor):
    """One collection instance per configured project.

    The project is the one of the configured service account key. Relative
    key paths are resolved against the parent of the configuration directory
    (`etc/` by default).
    """

    name = "GCP"
    settings_model = GCPProjectSettings

    def __init__(
        self,
        settings: AgentSettings,
        api_factory: Callable[[Path], GCPMonitoringAPI] = GCPMonitoringAPI.from_credentials_file,
        shutdown_event: threading.Event | None = None,
    ) -> None:
        """
        Args:
            settings: Process-wide agent settings
            api_factory: Creates the provider API client for a service account key file
            shutdown_event: Shared cancellation token
        """
        super().__init__(settings.gcp_conf_dir, settings, shutdown_event)
        self.api_factory = api_factory

    def credentials_file(self, project: GCPProjectSettings) -> Path:
        path = project.gcp.credentials_file
        if path.is_absolute():
            return path
        return self.conf_dir.parent / path

    def build_instance(self, project: GCPProjectSettings) -> CollectionInstance:
        """Look up the project, resolve its destination check and create its collectors.

        Raises:
            ProviderError: If the project cannot be read or is not active.
            CheckError: If the check cannot be resolved.
            CollectorError: If no collector could be created.
            requests.RequestException: If the management API is unreachable.
        """
        credentials_file = self.credentials_file(project)
        api = self.api_factory(credentials_file)
        info = api.get_project()
        if info.state != PROJECT_STATE_ACTIVE:
            raise ProviderError(
                code="ProjectNotActive", message=f"project {info.id} is {info.state}"
            )

        project_tags = [
            Tag(category="project_id", value=info.id),
            *(Tag(category=k, value=v) for k, v in sorted(info.labels.items())),
        ]
        destination = project.destination

        check = self.destination_check(
            check_id=f"gcp_{project.id}",
            destination=destination,
            display_name=f"gcp {project.id} {info.name} /{NAME}",
            tags=[Tag(category=NAME, value="gcp"), *project.tags, *project_tags],
        )

        buffer = MetricBuffer(trace=destination.trace_metrics)
        collectors = new_gcp_collectors(
            project.gcp.services, check, buffer, self.shutdown_event
        )

        return CollectionInstance(
            instance_id=project.id,
            check=check,
            collectors=collectors,
            api_factory=functools.partial(self.api_factory, credentials_file),
            period=project.period_seconds,
            buffer=buffer,
            base_tags=[*project.tags, *project_tags],
            tick_interval=self.settings.tick_interval,
        )

    def build_instances(self) -> list[CollectionInstance]:
        instances = []
        for project in self.load_accounts():
            try:
                instances.append(self.build_instance(project))
            except (
                ProviderError,
                CheckError,
                CollectorError,
                requests.RequestException,
            ) as e:
                logger.error("Skipping project %s: %s", project.id, e)

        if not instances:
            raise NoInstancesError(f"no valid GCP configurations found in {self.conf_dir}")
        return instances
