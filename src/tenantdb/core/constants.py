"""Application-wide constants.

This module defines constants used throughout the application
to avoid magic numbers and ensure consistency.
"""

# Slugs and identifiers
MAX_SLUG_LENGTH = 63
MAX_NAME_LENGTH = 255
MAX_ORGANIZATION_ID_LENGTH = 255
MAX_STATUS_LENGTH = 20
MAX_ACTION_LENGTH = 50
MAX_CATEGORY_LENGTH = 30

# PostgreSQL identifiers are limited to 63 bytes
MAX_DATABASE_NAME_LENGTH = 63
DATABASE_NAME_PREFIX = "org_"

# Connection cache
DEFAULT_TENANT_CACHE_SIZE = 100

# Lifecycle
DEFAULT_TENANT_RETENTION_DAYS = 30

# Jobs
PROVISION_TENANT_JOB = "provision_tenant"
PROVISION_JOB_ID_PREFIX = "provision-tenant:"

# HTTP
ORGANIZATION_ID_HEADER = "X-Organization-Id"
USER_ID_HEADER = "X-User-Id"
TENANT_NOT_READY_RETRY_AFTER_SECONDS = 5
