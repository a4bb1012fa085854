"""Exceptions raised by the team matching engine."""


class TeamMatchError(Exception):
    """Base class for errors raised by teammatch."""


class InvalidInputError(TeamMatchError, ValueError):
    """Raised before any matching work starts when the input is structurally malformed."""


class ConservationError(TeamMatchError, RuntimeError):
    """Raised when a report does not account for every input participant exactly once.

    This always indicates a bookkeeping bug in the builder, never bad user data.
    """
