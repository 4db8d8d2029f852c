"""Contabo compute provider."""

from capc.providers.contabo.client import ContaboClient, ContaboError
from capc.providers.contabo.config import Contabo
from capc.providers.contabo.provider import ContaboProvider, to_provider_instance

__all__ = ["Contabo", "ContaboClient", "ContaboError", "ContaboProvider", "to_provider_instance"]
