"""
Errors raised by the social core services. All of them are raised before any
write, so a rejected call leaves no state behind.
"""


class SocialCoreError(Exception):
    """Base exception for social core errors."""
    pass


class InvalidArgumentError(SocialCoreError):
    """Malformed request: self-relationship, unknown kind, bad cadence."""
    pass


class NotFoundError(SocialCoreError):
    """Unknown actor, agent, monitor or relationship."""
    pass


class ForbiddenError(SocialCoreError):
    """Caller does not own the resource it tried to act on."""
    pass
