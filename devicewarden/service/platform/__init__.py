"""Platform action providers."""

from .actions import ActionProvider, SystemActionProvider

__all__ = ["ActionProvider", "SystemActionProvider"]
