"""
Order execution: admission, lifecycle state machine, portfolio reads.
Synchronous; the order store is the only shared state.
"""

from execution.admission import OrderAdmissionValidator
from execution.lifecycle import OrderLifecycleController
from execution.portfolio import PortfolioService

__all__ = ["OrderAdmissionValidator", "OrderLifecycleController", "PortfolioService"]
