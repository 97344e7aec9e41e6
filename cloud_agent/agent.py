"""Runs the enabled cloud provider services side by side."""

import logging
import threading

from cloud_agent.config_loader import ConfigFileError
from cloud_agent.service import AWSService, GCPService, NoInstancesError, ServiceSupervisor
from cloud_agent.settings import AgentSettings

logger = logging.getLogger(__name__)


class Agent:
    """Starts every enabled provider service and waits for all of them.

    A provider without a usable configuration is skipped, the agent only
    refuses to run when no provider has anything to collect.
    """

    def __init__(
        self,
        settings: AgentSettings,
        services: list[ServiceSupervisor] | None = None,
    ) -> None:
        self.settings = settings
        self.shutdown_event = threading.Event()
        if services is None:
            services = self.enabled_services()
        self.services = services

    def enabled_services(self) -> list[ServiceSupervisor]:
        services: list[ServiceSupervisor] = []
        if self.settings.aws_enabled:
            services.append(AWSService(self.settings, shutdown_event=self.shutdown_event))
        if self.settings.gcp_enabled:
            services.append(GCPService(self.settings, shutdown_event=self.shutdown_event))
        return services

    def run(self) -> None:
        """Run until shutdown is requested.

        Raises:
            NoInstancesError: If no enabled service could start an instance.
        """
        threads: list[threading.Thread] = []
        for service in self.services:
            try:
                threads.extend(service.start())
            except (ConfigFileError, NoInstancesError) as e:
                logger.error("Not starting %s service: %s", service.name, e)

        if not threads:
            raise NoInstancesError("no valid configurations found for any enabled service")

        for thread in threads:
            thread.join()
        logger.info("Agent stopped")

    def shutdown(self) -> None:
        logger.info("Shutting down")
        self.shutdown_event.set()
