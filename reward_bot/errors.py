class RewardBotError(Exception):
    pass


class ConfigurationError(RewardBotError):
    """Missing credential or invalid setting; fatal at process start."""


class TransientNetworkError(RewardBotError):
    """RPC / HTTP failure worth retrying at the smallest scope."""


class VerificationFailure(RewardBotError):
    """A ledger read-back did not show the effect we expected."""


class SwapVerificationFailed(VerificationFailure):
    pass


class AccountNotObservable(VerificationFailure):
    pass


class HarvestAborted(RewardBotError):
    """A harvest batch exhausted its retries; the withdrawn amount would be inexact."""
