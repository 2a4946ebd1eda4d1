"""
Clients for the monitor's external collaborators.

Provides the configuration backend, orchestration runtime and AI
narration clients.
"""

from .confighub import ConfigHubClient
from .narrator import Narrator, NullNarrator, OpenAINarrator
from .runtime import RuntimeUsageClient

__all__ = [
    "ConfigHubClient",
    "Narrator",
    "NullNarrator",
    "OpenAINarrator",
    "RuntimeUsageClient",
]
