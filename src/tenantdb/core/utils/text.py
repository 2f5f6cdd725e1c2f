"""Text processing utilities for slugs and database identifiers."""

import hashlib
import re

from tenantdb.core.constants import (
    DATABASE_NAME_PREFIX,
    MAX_DATABASE_NAME_LENGTH,
    MAX_SLUG_LENGTH,
)


SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
DATABASE_NAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")
SAFE_ORGANIZATION_ID = re.compile(r"^[a-z0-9_]+$")
DIGEST_LENGTH = 16


def generate_slug(name: str, max_length: int = MAX_SLUG_LENGTH) -> str:
    """Generate a URL-safe slug from a name.

    Converts the input string to a URL-friendly slug by:
    - Converting to lowercase
    - Removing special characters
    - Replacing spaces, underscores and hyphens with single hyphens
    - Truncating to max_length

    Args:
        name: The input string to slugify
        max_length: Maximum length of output slug (default 63)

    Returns:
        URL-safe lowercase slug

    Examples:
        >>> generate_slug("Acme Inc")
        'acme-inc'
        >>> generate_slug("Hello! World@2024")
        'hello-world2024'
    """
    slug = name.lower().strip()
    slug = re.sub(r"[^a-z0-9\s_-]", "", slug)
    slug = re.sub(r"[-\s_]+", "-", slug)
    return slug[:max_length].strip("-")


def generate_unique_slug(name: str, existing_slugs: set[str]) -> str:
    """Generate a slug from name, suffixing -1, -2... until it is unused."""
    base = generate_slug(name)
    slug = base
    counter = 1
    while slug in existing_slugs:
        suffix = f"-{counter}"
        slug = f"{base[: MAX_SLUG_LENGTH - len(suffix)]}{suffix}"
        counter += 1
    return slug


def is_valid_slug(slug: str) -> bool:
    """Check that slug is lowercase alphanumeric words joined by single hyphens."""
    return len(slug) <= MAX_SLUG_LENGTH and bool(SLUG_PATTERN.match(slug))


def generate_database_name(organization_id: str) -> str:
    """Derive the physical database name of an organization.

    Ids that are already lowercase identifier characters and fit are used
    as they are. Any other id keeps a readable lowercase prefix and ends
    with a digest of the exact id, so ids that differ only by case,
    punctuation or a long shared prefix never share a database.

    Examples:
        >>> generate_database_name("org_1")
        'org_org_1'
        >>> generate_database_name("AbC-123").startswith("org_abc123_")
        True
    """
    name = f"{DATABASE_NAME_PREFIX}{organization_id}"
    if SAFE_ORGANIZATION_ID.match(organization_id) and len(name) <= MAX_DATABASE_NAME_LENGTH:
        return name
    digest = hashlib.sha256(organization_id.encode()).hexdigest()[:DIGEST_LENGTH]
    room = MAX_DATABASE_NAME_LENGTH - len(DATABASE_NAME_PREFIX) - DIGEST_LENGTH - 1
    clean_id = re.sub(r"[^a-z0-9_]", "", organization_id.lower())[:room]
    return f"{DATABASE_NAME_PREFIX}{clean_id}_{digest}"


def is_valid_database_name(name: str) -> bool:
    """Check that name is a safe, unquoted PostgreSQL identifier."""
    return len(name) <= MAX_DATABASE_NAME_LENGTH and bool(
        DATABASE_NAME_PATTERN.match(name)
    )
