"""Settlement ledger layer -- submission interface and paper simulation."""

from feesettle.ledger.client import LedgerClient
from feesettle.ledger.paper_ledger import PaperLedger, PaperSubmission, is_valid_account_id

__all__ = ["LedgerClient", "PaperLedger", "PaperSubmission", "is_valid_account_id"]
