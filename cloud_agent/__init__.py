"""Multi-cloud telemetry agent.

Pulls resource metrics from cloud provider monitoring APIs and forwards them
to a destination check's httptrap ingestion endpoint.
"""

NAME = "cloud-agent"
VERSION = "0.1.0"
