"""Notifier protocol — where rebalance alerts and run summaries go."""
from typing import Protocol


class Notifier(Protocol):
    """Delivery channel for the orchestrator.

    Both methods return ``True`` when the message was delivered. Unconfigured
    channels return ``False``; transport errors may raise and are logged by
    the caller.
    """

    async def send_alert(self, message: str, subject: str = "") -> bool:
        """One rebalance plan, sent loudly."""
        ...

    async def send_log(self, message: str, silent: bool = True) -> bool:
        """End-of-run summary."""
        ...
