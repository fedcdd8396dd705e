"""Abstract ledger-submission interface.

Defines the contract for submitting collected fees to the settlement ledger.
The settlement coordinator depends ONLY on this interface; the concrete
client (paper simulation or a network client) is injected at startup.
"""

from abc import ABC, abstractmethod

from feesettle.money import Money


class LedgerClient(ABC):
    """Abstract base class for settlement-ledger clients."""

    @abstractmethod
    async def submit(
        self,
        amount: Money,
        asset_code: str,
        asset_issuer: str,
        destination_address: str,
    ) -> str:
        """Submit a payment of ``amount`` to ``destination_address``.

        Args:
            amount: Fee amount to transfer.
            asset_code: Code of the settled asset (e.g. "USDC").
            asset_issuer: Issuing account of the asset; empty for the native asset.
            destination_address: Platform wallet receiving the fee.

        Returns:
            The ledger transaction hash.

        Raises:
            LedgerSubmissionFailed: The ledger rejected the payment. Its
                ``retryable`` flag tells the caller whether to try again.
            TimeoutError, OSError: Transport failures; callers treat these as
                retryable.
        """
        ...

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None
