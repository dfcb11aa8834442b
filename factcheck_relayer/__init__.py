"""Off-chain relayer that fact-checks articles requested on-chain."""

__version__ = "0.1.0"
