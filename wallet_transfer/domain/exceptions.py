"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class GatewayError(DomainException):
    """Wallet or bank-rail operation failed"""

    pass


class InvalidSecretError(GatewayError):
    """Transaction PIN rejected by the wallet service"""

    pass


class InsufficientFundsError(GatewayError):
    """Wallet balance does not cover the total debit"""

    pass


class GatewayUnavailableError(GatewayError):
    """Wallet or bank rail unreachable, timed out, or returned 5xx"""

    pass


class RecipientRejectedError(GatewayError):
    """Receiving bank or wallet refused the transfer"""

    pass


class NetworkTimeoutError(GatewayError):
    """Routing call did not complete within the timeout"""

    pass


class RefundFailedError(GatewayError):
    """Compensating refund could not be issued"""

    pass


class RecipientLookupError(DomainException):
    """Base for recipient lookup failures"""

    pass


class LookupNotFoundError(RecipientLookupError):
    """Lookup service reports no such account"""

    pass


class LookupTransientError(RecipientLookupError):
    """Lookup service unreachable or timed out; safe to retry"""

    pass


class DuplicateRecipientError(DomainException):
    """Recipient is already saved for this owner"""

    pass


class SavedRecipientNotFoundError(DomainException):
    """Saved recipient does not exist or belongs to another owner"""

    pass


class ConfirmationStateError(DomainException):
    """Operation not allowed in the confirmation gate's current state"""

    pass


class InvalidSecretFormatError(ConfirmationStateError):
    """Supplied PIN does not have the expected shape"""

    pass
