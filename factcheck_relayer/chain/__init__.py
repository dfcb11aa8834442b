"""On-chain event source and fulfillment target."""

from factcheck_relayer.chain.contract import FACTCHECK_ABI, FactCheckContract

__all__ = ["FACTCHECK_ABI", "FactCheckContract"]
