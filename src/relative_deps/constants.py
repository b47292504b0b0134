"""Constants for relative-deps."""

# Consumer-side directories
CACHE_DIR = ".relative-deps-cache"
INSTALL_DIR = "node_modules"

# Manifest and project configuration
MANIFEST_FILE = "package.json"
CONFIG_FILE = ".relative-deps.yaml"

# Cache record layout (inside CACHE_DIR)
RECORD_SUFFIX = ".json"
LOCK_SUFFIX = ".lock"

# Environment overrides
ENV_MAX_CONCURRENCY = "RELATIVE_DEPS_MAX_CONCURRENCY"

# Concurrency for --parallel when neither flag nor config sets one above 1
DEFAULT_PARALLEL_CONCURRENCY = 4

# Default script that runs relative-deps in the consumer
DEFAULT_SCRIPT = "prepare"
TOOL_NAME = "relative-deps"

# Version
VERSION = "0.1.0"
