from pathlib import Path

from cloud_agent import NAME, VERSION

# Destination wire limits. Samples breaking these are rejected by the broker
# together with every other sample in the same payload, so they are enforced
# before submission where the offending metric can still be logged.
MAX_TAGS = 256
MAX_METRIC_NAME_LEN = 4096

METRIC_NAME_SEPARATOR = "`"
STREAM_TAG_MARKER = "|ST["
ENCODED_TAG_PREFIX = 'b"'

# Metric types accepted by the httptrap ingestion endpoint
METRIC_TYPE_INT32 = "i"
METRIC_TYPE_UINT32 = "I"
METRIC_TYPE_INT64 = "l"
METRIC_TYPE_UINT64 = "L"
METRIC_TYPE_FLOAT64 = "n"
METRIC_TYPE_STRING = "s"
METRIC_TYPE_HISTOGRAM = "h"
METRIC_TYPES = frozenset("iIlLnsh")

ERROR_METRIC_NAME = NAME.replace("-", "_") + "_errors"

# Destination management API
DEFAULT_API_URL = "https://api.circonus.com/v2/"
DEFAULT_API_APP = NAME
PUBLIC_TRAP_BROKER_CID = "/broker/35"
PUBLIC_SUBMISSION_HOST = "api.circonus.com"
CHECK_TYPE = "httptrap"
CHECK_STATUS_ACTIVE = "active"
CHECK_METRIC_FILTERS = [
    ["deny", "^$", ""],
    ["allow", "^.+$", ""],
]
CHECK_METRIC_LIMIT = -1  # unlimited
CA_CERT_PATH = "/pki/ca.crt"

USER_AGENT = f"{NAME}/{VERSION}"
CONTENT_TYPE = "application/json"

# Provider batching
BATCH_LIMIT = 100

# Timing constants (in seconds)
TICK_INTERVAL = 60
PERIOD_TOLERANCE = 5
FALLBACK_WINDOW = 600  # 10 minutes
DISABLE_RETRY_INTERVAL = 3600  # 1 hour
CONNECTION_TIMEOUT = 30

PERIOD_BASIC = 300
PERIOD_DETAILED = 60

CONFIG_FILE_EXTENSIONS = (".json", ".toml", ".yaml", ".yml")

# Agent defaults
DEFAULT_AWS_ENABLED = False
DEFAULT_AWS_CONF_DIR = Path("etc/aws.d")
AWS_CONF_DIR_ENV = "CLOUD_AGENT_AWS_CONF_DIR"
DEFAULT_GCP_ENABLED = False
DEFAULT_GCP_CONF_DIR = Path("etc/gcp.d")
GCP_CONF_DIR_ENV = "CLOUD_AGENT_GCP_CONF_DIR"

# GCP collection interval, minutes
GCP_MIN_COLLECT_INTERVAL = 5
GCP_DEFAULT_SERVICES = ("compute",)
