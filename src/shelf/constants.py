"""Constants for shelf."""

APP_NAME = "shelf"
APP_AUTHOR = "shelf"

# Environment overrides for the data and configuration directories
DATA_DIR_ENV = "SHELF_DATA_DIR"
CONFIG_DIR_ENV = "SHELF_CONFIG_DIR"

# Files and directories inside the data directory
STORE_FILE = "tracked.sqlite"
OBJECTS_DIR = "objects"
LOCKS_DIR = "locks"

# Files and directories inside the configuration directory
CONFIG_FILE = "config.yaml"
PROMPTS_DIR = "prompts"

# Remote layout
REMOTE_MANIFEST_FILE = "manifest.json"
DEFAULT_REMOTE_REF = "main"

FINGERPRINT_PREFIX = "sha256:"

# Unreferenced baseline objects younger than this survive garbage collection
OBJECT_GRACE_SECONDS = 3600

# Version
SHELF_VERSION = "0.1.0"
