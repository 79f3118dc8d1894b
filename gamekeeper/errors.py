"""Exception hierarchy shared by the supervisor and the agent.

Callers catch ``GamekeeperError`` at the transport boundary and surface
``str(exc)`` verbatim; the subclasses only exist so tests and the agent can
tell the categories apart.
"""

from __future__ import annotations


class GamekeeperError(Exception):
    """Base class for every error surfaced to a caller."""


# ---------------------------------------------------------------------------
# Configuration errors: fatal to the requested operation only
# ---------------------------------------------------------------------------

class ConfigurationError(GamekeeperError):
    pass


class UnknownGameError(ConfigurationError):
    def __init__(self, game_id: str, known: list[str]) -> None:
        super().__init__(
            f"Unsupported game: '{game_id}'. Use one of: {', '.join(known)}"
        )
        self.game_id = game_id


class UnsupportedProviderError(ConfigurationError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"Unsupported AI provider: {provider}")
        self.provider = provider


class MissingCredentialsError(ConfigurationError):
    pass


# ---------------------------------------------------------------------------
# External-process errors: abort the lifecycle operation in progress
# ---------------------------------------------------------------------------

class ExternalProcessError(GamekeeperError):
    pass


class DownloadError(ExternalProcessError):
    pass


class UnsupportedArchiveError(ExternalProcessError):
    pass


class SessionHostError(ExternalProcessError):
    pass


# ---------------------------------------------------------------------------
# Verification failures: reported, never retried
# ---------------------------------------------------------------------------

class VerificationError(GamekeeperError):
    pass


class SessionNotAliveError(VerificationError):
    pass


class NotInstalledError(VerificationError):
    pass


class AlreadyInstalledError(VerificationError):
    pass


class UnsupportedOperationError(VerificationError):
    pass


# ---------------------------------------------------------------------------
# AI backend errors: swallowed by the agent after logging
# ---------------------------------------------------------------------------

class AIBackendError(GamekeeperError):
    pass
