"""Custom exceptions for ledger, registry, and collaborator failures."""


class LedgerError(Exception):
    """Base exception for all ledger-specific errors."""


class SettingsError(LedgerError, ValueError):
    """Raised when runtime configuration is invalid or missing."""


class ConfigurationError(LedgerError):
    """Raised when an operation names unknown or malformed pool configuration."""


class AssetNotRegistered(ConfigurationError):
    """Raised when an asset id has no registered pool."""


class AlreadyRegistered(ConfigurationError):
    """Raised when an asset id slot or token is already taken."""


class ZeroAdapter(ConfigurationError):
    """Raised when a null adapter reference is registered."""


class ZeroAddress(ConfigurationError):
    """Raised when a holder, spender, or token identity is empty."""


class ZeroAmount(ConfigurationError):
    """Raised when a deposit, withdrawal, or transfer amount is zero."""


class AmountMustBePositive(ConfigurationError):
    """Raised when a rebalance amount is not strictly positive."""


class IndexOutOfBounds(ConfigurationError):
    """Raised when a strategy index does not exist in the registry."""


class SameStrategy(ConfigurationError):
    """Raised when a rebalance names the same source and destination."""


class InvalidStrategy(ConfigurationError):
    """Raised when a rebalance index resolves to no adapter."""


class PoolNotEmpty(ConfigurationError):
    """Raised when removing an asset whose pool still has shares outstanding."""


class AuthorizationError(LedgerError):
    """Raised when a caller lacks the rights for an operation."""


class Unauthorized(AuthorizationError):
    """Raised when a non-controller invokes an administrative operation."""


class AccountingError(LedgerError):
    """Raised when share or asset accounting guards reject an operation."""


class InsufficientShares(AccountingError):
    """Raised when a holder does not own enough shares."""


class InsufficientAllowance(AccountingError):
    """Raised when a spender is not approved for enough shares."""


class NoSharesExist(AccountingError):
    """Raised when converting shares for a pool with zero share supply."""


class ZeroShares(AccountingError):
    """Raised when a deposit would mint zero shares."""


class InsufficientLiquidity(AccountingError):
    """Raised when idle plus adapter-returned assets cannot cover a payout."""


class InvariantViolated(LedgerError):
    """Raised when live assets fall below principal during harvest."""


class TokenError(LedgerError):
    """Raised when a token transfer, approval, or balance check fails."""


class AdapterError(LedgerError):
    """Raised when a strategy adapter call fails outright."""


class ScenarioError(LedgerError):
    """Raised when a scenario step is malformed or an expectation fails."""
