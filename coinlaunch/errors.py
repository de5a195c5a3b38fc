"""
Exception hierarchy for the launch pipeline.

Stage handlers sort failures into three buckets:
    TransientError  - leave the intent where it is, the next poll retries it
    TerminalError   - move the intent to FAILED / COMMENT_FAILED with the message
    anything else   - treated as transient and logged with a traceback
"""


class CoinLaunchError(Exception):
    """Base exception for all pipeline errors."""
    pass


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(CoinLaunchError):
    """Raised when a component is used without its required settings."""
    pass


# =============================================================================
# Validation Errors (ingestion)
# =============================================================================

class ValidationError(CoinLaunchError):
    """Raised when a launch command is malformed or fails validation."""
    pass


class DuplicateError(ValidationError):
    """Base for uniqueness violations in the intent store."""
    pass


class DuplicatePostError(DuplicateError):
    pass


class DuplicateNameError(DuplicateError):
    pass


class DuplicateSymbolError(DuplicateError):
    pass


# =============================================================================
# Intent Store Errors
# =============================================================================

class IntentNotFoundError(CoinLaunchError):
    pass


class StaleStateError(CoinLaunchError):
    """The intent was not in the expected state (another worker claimed it)."""
    pass


class InvalidTransitionError(CoinLaunchError):
    """The requested state change is not an edge of the lifecycle graph."""
    pass


class ImmutableFieldError(CoinLaunchError):
    """A write tried to change a token address that is already set."""
    pass


# =============================================================================
# Transient External Errors
# =============================================================================

class TransientError(CoinLaunchError):
    """Temporary failure; state is not advanced."""
    pass


class ChainRpcError(TransientError):
    """RPC timeout, connection failure or node-side rejection."""
    pass


class RateLimitedError(TransientError):
    """The social API returned 429."""
    pass


class SocialUnavailableError(TransientError):
    """X API 5xx, timeout or connection failure."""
    pass


# =============================================================================
# Terminal Errors
# =============================================================================

class TerminalError(CoinLaunchError):
    """Authoritative failure; the intent is closed with this reason."""
    pass


class OnChainRevertError(TerminalError):
    pass


class EventNotFoundError(TerminalError):
    pass


class InsufficientFundingError(TerminalError):
    pass


class TransactionDroppedError(TerminalError):
    """The node no longer knows a transaction we broadcast."""
    pass


class EscrowWalletNotFoundError(TerminalError):
    pass


class DecryptionError(TerminalError):
    """Escrow key could not be decrypted. Message never carries key material."""

    def __init__(self, message: str = "escrow key decryption failed"):
        super().__init__(message)


class SocialApiError(TerminalError):
    """Generic X API failure."""
    pass


class NotAuthenticatedError(TerminalError):
    """The posting credential is missing or was rejected after a refresh."""
    pass


def redact(text: str, secrets) -> str:
    """Replace any configured secret that leaked into a message."""
    for secret in secrets:
        if not secret:
            continue
        text = text.replace(secret, "[redacted]")
        stripped = secret[2:] if secret.startswith("0x") else None
        if stripped:
            text = text.replace(stripped, "[redacted]")
    return text
