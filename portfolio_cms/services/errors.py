# portfolio_cms/services/errors.py

from typing import Any, Optional


class CMSError(Exception):
    """
    Base class for every expected failure of the content and media services.

    Each subclass carries the HTTP status the API boundary maps it to, so
    main.py can turn any of them into the same failure envelope.
    """
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(CMSError):
    """Missing or malformed required field."""
    status_code = 400


class DuplicateSlug(CMSError):
    status_code = 400

    def __init__(self, slug: str, message: Optional[str] = None):
        super().__init__(message or f"Slug '{slug}' already exists")
        self.slug = slug


class NotFound(CMSError):
    status_code = 404


class NotConfigured(CMSError):
    """Media host credentials are absent."""
    status_code = 500


class InvalidType(CMSError):
    status_code = 400


class TooLarge(CMSError):
    status_code = 400


class RemoteError(CMSError):
    """Unclassified failure from the database or the media host."""
    status_code = 500
