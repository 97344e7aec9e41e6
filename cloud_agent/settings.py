from pathlib import Path
from typing import Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    field_validator,
    model_validator,
)

from cloud_agent import constants


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Tag(FrozenModel):
    """A single stream tag, `category:value`."""

    category: str = ""
    value: str = ""


class DestinationSettings(FrozenModel):
    """Destination API credentials and check/broker selection for one account."""

    cid: str | None = None
    broker_cid: str | None = None
    api_key: str = Field(validation_alias=AliasChoices("api_key", "key"))
    api_app: str = Field(
        default=constants.DEFAULT_API_APP,
        validation_alias=AliasChoices("api_app", "app"),
    )
    api_url: str = Field(
        default=constants.DEFAULT_API_URL,
        validation_alias=AliasChoices("api_url", "url"),
    )
    api_ca_file: Path | None = None
    broker_ca_file: Path | None = None
    trace_metrics: bool = False


class AWSCredentials(FrozenModel):
    """AWS credentials, either a static key pair or a role in a shared credentials file."""

    access_key_id: str | None = None
    secret_access_key: str | None = None
    role: str | None = None
    credentials_file: Path | None = None

    @model_validator(mode="after")
    def check_one_mode(self) -> "AWSCredentials":
        if self.role:
            if self.access_key_id or self.secret_access_key:
                raise ValueError(
                    "role and access_key_id/secret_access_key are mutually exclusive"
                )
            return self
        if self.access_key_id and self.secret_access_key:
            return self
        raise ValueError(
            "either role or both access_key_id and secret_access_key must be set"
        )


class ProviderMetric(FrozenModel):
    name: str
    stats: list[str]
    units: str = ""
    disabled: bool = False


class DestinationMetric(FrozenModel):
    name: str = ""
    type: Literal["gauge", "counter", "histogram", "text"]
    tags: list[Tag] = []


class MetricDefinition(FrozenModel):
    """Maps a provider metric onto a destination metric."""

    provider: ProviderMetric = Field(
        validation_alias=AliasChoices("provider", "aws")
    )
    destination: DestinationMetric = Field(
        validation_alias=AliasChoices("destination", "circonus")
    )

    @property
    def disabled(self) -> bool:
        return self.provider.disabled


class Dimension(FrozenModel):
    name: str
    value: str


class InstanceFilter(FrozenModel):
    name: str
    values: list[str]


class CollectorSettings(FrozenModel):
    namespace: str
    disabled: bool = False
    dimensions: list[Dimension] = []
    metrics: list[MetricDefinition] = []
    tags: list[Tag] = []
    use_batched: bool = Field(
        default=False, validation_alias=AliasChoices("use_batched", "use_gmd")
    )
    # AWS/EC2 only
    instance_filters: list[InstanceFilter] = []


class RegionSettings(FrozenModel):
    name: str
    services: list[CollectorSettings] = []
    tags: list[Tag] = []


def validate_config_id(value: str) -> str:
    if not value:
        raise ValueError("id must not be empty")
    if any(c.isspace() for c in value):
        raise ValueError("id must not contain spaces")
    return value


class AccountSettings(FrozenModel):
    """One account configuration file.

    NOTE: `id` must be treated as immutable, it is the key used to find the
    destination check. Changing it results in a new check being created.
    """

    id: str
    regions: list[RegionSettings]
    aws: AWSCredentials
    destination: DestinationSettings = Field(
        validation_alias=AliasChoices("destination", "circonus")
    )
    period: Literal["basic", "detailed"] = "basic"
    tags: list[Tag] = []

    @field_validator("id")
    @classmethod
    def check_id(cls, value: str) -> str:
        return validate_config_id(value)

    @field_validator("regions")
    @classmethod
    def check_regions(cls, value: list[RegionSettings]) -> list[RegionSettings]:
        if not value:
            raise ValueError("at least one region must be configured")
        return value

    @property
    def period_seconds(self) -> int:
        if self.period == "detailed":
            return constants.PERIOD_DETAILED
        return constants.PERIOD_BASIC


class GCPFilter(FrozenModel):
    """Instance selection, `expression` wins over `labels` when both are set."""

    labels: dict[str, str] = {}
    expression: str = ""


class GCPCollectorSettings(FrozenModel):
    name: str
    disabled: bool = False
    tags: list[Tag] = []
    filter: GCPFilter = GCPFilter()


class GCPSettings(FrozenModel):
    credentials_file: Path
    # minutes
    collect_interval: int = constants.GCP_MIN_COLLECT_INTERVAL
    services: list[GCPCollectorSettings] = []

    @field_validator("collect_interval")
    @classmethod
    def check_collect_interval(cls, value: int) -> int:
        return max(value, constants.GCP_MIN_COLLECT_INTERVAL)


class GCPProjectSettings(FrozenModel):
    """One GCP project configuration file.

    NOTE: as for AWS accounts, `id` keys the destination check.
    """

    id: str
    gcp: GCPSettings
    destination: DestinationSettings = Field(
        validation_alias=AliasChoices("destination", "circonus")
    )
    tags: list[Tag] = []

    @field_validator("id")
    @classmethod
    def check_id(cls, value: str) -> str:
        return validate_config_id(value)

    @property
    def period_seconds(self) -> int:
        return self.gcp.collect_interval * 60


class AgentSettings(FrozenModel):
    """Process-wide settings, resolved once at startup from flags and the agent config file."""

    aws_enabled: bool
    aws_conf_dir: Path
    gcp_enabled: bool = constants.DEFAULT_GCP_ENABLED
    gcp_conf_dir: Path = constants.DEFAULT_GCP_CONF_DIR
    tick_interval: PositiveInt
    connection_timeout: PositiveInt
