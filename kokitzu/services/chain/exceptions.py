class ChainGatewayError(Exception):
    """Base exception for on-chain gateway errors."""

    def __init__(
        self,
        message: str,
        option_id: str | int | None = None,
        tx_hash: str | None = None,
    ):
        super().__init__(message)
        self.option_id = str(option_id) if option_id is not None else None
        self.tx_hash = tx_hash


class ChainUnavailable(ChainGatewayError):
    """RPC endpoint could not be reached."""

    pass


class OptionNotFound(ChainGatewayError):
    """Identifier does not correspond to any on-chain option."""

    pass


class AlreadySettled(ChainGatewayError):
    """Option was already executed on-chain."""

    pass


class SubmissionFailed(ChainGatewayError):
    """Settlement transaction was rejected or reverted."""

    pass


class TransactionPending(ChainGatewayError):
    """Transaction was broadcast but has not confirmed yet."""

    pass


class OptionNotExpired(ChainGatewayError):
    """Contract refused execution because the option's expiry has not passed."""

    pass


class SignerNotConfigured(ChainGatewayError):
    """No private key is loaded, so no transaction can be signed."""

    pass
