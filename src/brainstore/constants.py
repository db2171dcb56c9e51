"""Shared constants for the brain store."""

# --- Brains ---

SYSTEM_BRAIN = "system"
DEFAULT_BRAIN = "default"
RESERVED_BRAIN_SLUGS = frozenset({SYSTEM_BRAIN})
SCHEMA_VERSION = 1
BRAIN_SUFFIX = ".brain"

# --- Version statuses ---

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
STATUS_ARCHIVED = "archived"
STATUS_DELETED = "deleted"
VERSION_STATUSES = (STATUS_ACTIVE, STATUS_INACTIVE, STATUS_ARCHIVED, STATUS_DELETED)

PROJECT_ACTIVE = "active"
PROJECT_ARCHIVED = "archived"

# --- Hierarchy moves ---

MOVE_MERGE = "merge"
MOVE_REPLACE = "replace"
MOVE_MODES = (MOVE_MERGE, MOVE_REPLACE)

# --- Selectors ---

HASH_LENGTH = 64
MIN_COMMIT_PREFIX = 6

# --- Writer ---

WRITE_MAX_ATTEMPTS = 2  # initial attempt + exactly one retry
LOCK_POLL_INTERVAL = 0.05
DEFAULT_LOCK_TIMEOUT = 30.0

# --- Backups ---

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
BACKUP_SEPARATOR = "--"
BACKUP_COMPRESSED_SUFFIX = ".gz"

# --- Event names ---

EVENT_WRITE_RETRY = "brain.write.retry"
EVENT_WRITE_INTEGRITY_FAILED = "brain.write.integrity_failed"
EVENT_WRITE_COMPLETED = "brain.write.completed"
EVENT_ENTITY_SAVED = "brain.entity.saved"
EVENT_ENTITY_DELETED = "brain.entity.deleted"
EVENT_ENTITY_RESTORED = "brain.entity.restored"
EVENT_PROJECT_UPDATED = "brain.project.updated"
EVENT_PROJECT_DELETED = "brain.project.deleted"
EVENT_CLEANUP_COMPLETED = "brain.cleanup.completed"
EVENT_BRAIN_CREATED = "brain.created"
EVENT_BRAIN_ACTIVATED = "brain.activated"
EVENT_BRAIN_DELETED = "brain.deleted"
EVENT_BRAIN_RESTORED = "brain.restored"

# --- CLI display ---

DEFAULT_COMMIT_LIMIT = 20

# --- Time ---

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400
SECONDS_PER_WEEK = 604800
SECONDS_PER_MONTH = 2592000  # 30 days
SECONDS_PER_YEAR = 31536000  # 365 days
