"""Paper ledger with simulated Stellar submissions.

Validates addresses and asset codes the way the network would (malformed input
is a non-retryable rejection) and returns Stellar-shaped 64-hex transaction
hashes. Failures can be injected to exercise the retry path.

Implements the same LedgerClient ABC as a network client, so the settlement
coordinator behaves identically in paper mode.
"""

import asyncio
import hashlib
import re
from collections import deque
from dataclasses import dataclass
from uuid import uuid4

from feesettle.exceptions import LedgerSubmissionFailed
from feesettle.ledger.client import LedgerClient
from feesettle.logging import get_logger
from feesettle.money import Money

logger = get_logger(__name__)

# Stellar account ids: "G" + 55 base32 characters (StrKey encoding)
_ACCOUNT_ID_RE = re.compile(r"^G[A-Z2-7]{55}$")
_ASSET_CODE_RE = re.compile(r"^[A-Za-z0-9]{1,12}$")
_NATIVE_ASSET = "XLM"


def is_valid_account_id(address: str) -> bool:
    """Check the shape of a Stellar public account id (no checksum verification)."""
    return bool(_ACCOUNT_ID_RE.match(address or ""))


@dataclass(frozen=True)
class PaperSubmission:
    """A submission accepted by the paper ledger."""

    tx_hash: str
    amount: Money
    asset_code: str
    asset_issuer: str
    destination_address: str


class PaperLedger(LedgerClient):
    """Simulated ledger for paper mode and tests.

    Args:
        latency: Seconds each submission takes (0 for instant).
    """

    def __init__(self, latency: float = 0.0) -> None:
        self._latency = latency
        self._failures: deque[LedgerSubmissionFailed] = deque()
        self._submissions: list[PaperSubmission] = []
        self.attempts = 0

    def fail_next(self, reason: str, retryable: bool = True, times: int = 1) -> None:
        """Queue ``times`` rejections ahead of the next successful submission."""
        for _ in range(times):
            self._failures.append(LedgerSubmissionFailed(reason, retryable=retryable))

    @property
    def submissions(self) -> list[PaperSubmission]:
        return list(self._submissions)

    async def submit(
        self,
        amount: Money,
        asset_code: str,
        asset_issuer: str,
        destination_address: str,
    ) -> str:
        """Simulate a payment submission.

        Raises:
            LedgerSubmissionFailed: Injected failure, or non-retryable
                rejection of a malformed destination, asset code or issuer.
        """
        self.attempts += 1
        if self._latency:
            await asyncio.sleep(self._latency)

        if self._failures:
            failure = self._failures.popleft()
            logger.info(
                "paper_submission_rejected",
                reason=failure.reason,
                retryable=failure.retryable,
            )
            raise failure

        if not is_valid_account_id(destination_address):
            raise LedgerSubmissionFailed(
                f"invalid destination address: {destination_address!r}", retryable=False
            )
        if not _ASSET_CODE_RE.match(asset_code or ""):
            raise LedgerSubmissionFailed(
                f"invalid asset code: {asset_code!r}", retryable=False
            )
        if asset_code != _NATIVE_ASSET and not is_valid_account_id(asset_issuer):
            raise LedgerSubmissionFailed(
                f"invalid asset issuer: {asset_issuer!r}", retryable=False
            )

        tx_hash = hashlib.sha256(uuid4().bytes).hexdigest()
        self._submissions.append(
            PaperSubmission(
                tx_hash=tx_hash,
                amount=amount,
                asset_code=asset_code,
                asset_issuer=asset_issuer,
                destination_address=destination_address,
            )
        )

        logger.info(
            "paper_submission_accepted",
            tx_hash=tx_hash,
            amount=str(amount),
            asset_code=asset_code,
            destination=destination_address,
        )
        return tx_hash
