"""
Crewboard error taxonomy.

Every failure the panel can report is one of these. Coordinators catch them
at their boundary and turn them into the status channel's error message;
nothing here is retried automatically.
"""

from __future__ import annotations


class CrewboardError(Exception):
    """Base class for all reportable panel failures."""

    pass


class ValidationError(CrewboardError):
    """Input rejected before any remote call (e.g. a name that trims to empty)."""

    pass


class RemoteError(CrewboardError):
    """A backend call failed. The message is passed through to the user."""

    pass


class RemoteReadError(RemoteError):
    """Listing, search, or single-entity refresh failed."""

    pass


class RemoteWriteError(RemoteError):
    """Insert, update, or delete failed."""

    pass


class NotFoundError(RemoteWriteError):
    """The target row does not exist remotely."""

    pass


class PartialFailure(RemoteWriteError):
    """
    A multi-step write stopped halfway.

    Raised when replacing assignments cleared the old set but failed to insert
    the new one: the remote state is left with no assignments for the id.
    """

    pass


class SessionRequired(CrewboardError):
    """No valid authentication session."""

    pass


class AuthError(CrewboardError):
    """The auth service rejected a request or could not be reached."""

    pass
