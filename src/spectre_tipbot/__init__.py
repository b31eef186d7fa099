"""Spectre tip bot core.

Maps chat identities to password-protected custodial wallets, escrows tips
sent to users without a wallet, and consolidates those escrows once the
recipient onboards.
"""

__version__ = "0.1.0"
