"""
dte_signer — electronic tax document (DTE) generation and simulated signing.

Turns completed sales into sequentially numbered DTEs, signs them with a
simulated certificate, renders XML and PDF representations, and tracks each
document through acceptance, voiding and e-mail delivery.

Built on the Railway-Oriented Programming (ROP) primitives in
dte_signer.railway for explicit, composable error handling.
"""

__version__ = "0.1.0"
