"""
Product Staging Ingest event handling base classes and interfaces.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from ..schemas import LifecycleEvent


class EventHandler(ABC):
    """Abstract base class for lifecycle event handlers"""

    @abstractmethod
    async def handle(self, event: LifecycleEvent) -> Any:
        """Handle the event; raising signals failure to the consumer"""
        pass


class HealthCheckable(ABC):
    """Components that can report their own health"""

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return a status report containing at least a ``status`` key"""
        pass
