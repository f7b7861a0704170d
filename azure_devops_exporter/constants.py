ACCESS_TOKEN_GENERATION_TIMEOUT = 10

# Entra ID client credentials flow for the Azure DevOps resource
AZURE_AUTHORITY_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
AZURE_DEVOPS_RESOURCE_SCOPE = "499b84ac-1321-427f-aa17-267ca6975798/.default"
# Tokens are renewed this many seconds before they expire
ACCESS_TOKEN_REFRESH_MARGIN = 300

AZURE_DEVOPS_HOST = "dev.azure.com"
AZURE_DEVOPS_API_VERSION = "7.1"
USER_AGENT = "azure-devops-exporter/{version}"
CONTINUATION_TOKEN_HEADER = "x-ms-continuationtoken"

# Bumped whenever the cache file format changes
CACHE_TAG = "v1"

METRIC_PREFIX = "azure_devops"

# Timing constants (in seconds)
DEFAULT_SCRAPE_TIME = 1800  # 30 minutes
DEFAULT_DISCOVERY_REFRESH_INTERVAL = 1800
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_RETRY_WAIT = 1
DEFAULT_RETRY_MAX_WAIT = 30

DEFAULT_CONCURRENCY_LIMIT = 10
DEFAULT_RETRIES = 3

# Result count limits
DEFAULT_LIMIT_PROJECT = 100
DEFAULT_LIMIT_BUILDS_PER_PROJECT = 100
DEFAULT_LIMIT_BUILDS_PER_DEFINITION = 10
DEFAULT_LIMIT_RELEASES_PER_DEFINITION = 100
DEFAULT_LIMIT_DEPLOYMENT_PER_DEFINITION = 100
DEFAULT_LIMIT_RELEASE_DEFINITIONS_PER_PROJECT = 100
DEFAULT_LIMIT_RELEASES_PER_PROJECT = 100

DEFAULT_SERVER_HOST = "0.0.0.0"
DEFAULT_SERVER_PORT = 8080
