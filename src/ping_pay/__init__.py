"""PingPay - send stablecoins to a chat handle.

Funds go to a custodial wallet created for the handle; the recipient is
told through the chat bot and claims with a one-time link.
"""

__version__ = "0.3.0"
