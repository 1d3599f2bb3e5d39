"""Wallet-share expansion engine: ICP gap scoring and program lifecycle."""

__version__ = "1.0.0"
