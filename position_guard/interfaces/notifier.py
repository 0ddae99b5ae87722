"""Notifier protocol: where the keeper reports triggers and pass summaries."""
from typing import Protocol


class Notifier(Protocol):
    """Output channel for the keeper.

    ``send_alert`` carries events someone should look at (a liquidatable loan,
    an executed order); ``send_log`` carries routine pass summaries. Delivery
    failures are reported through the boolean result, never raised.
    """

    async def send_alert(self, message: str, subject: str = "") -> bool: ...

    async def send_log(self, message: str, silent: bool = True) -> bool: ...
