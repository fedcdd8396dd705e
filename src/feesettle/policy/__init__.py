"""Fee policy -- tier selection and fee-rate lookup."""

from feesettle.policy.engine import FeePolicyEngine

__all__ = ["FeePolicyEngine"]
