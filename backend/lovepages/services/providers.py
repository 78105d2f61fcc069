"""
Provider Registry — lazily built, cached adapter instances by name.
"""
import threading
from typing import Dict, Type

from lovepages.services.mercadopago_service import MercadoPagoService
from lovepages.services.paypal_service import PayPalService
from lovepages.services.provider_base import ProviderAdapter

ADAPTERS: Dict[str, Type[ProviderAdapter]] = {
    "mercadopago": MercadoPagoService,
    "paypal": PayPalService,
}

_instances: Dict[str, ProviderAdapter] = {}
_lock = threading.Lock()


class UnknownProvider(KeyError):
    pass


def get_provider(name: str) -> ProviderAdapter:
    """Adapter for `name`; raises UnknownProvider for names with no adapter."""
    with _lock:
        adapter = _instances.get(name)
        if adapter is None:
            if name not in ADAPTERS:
                raise UnknownProvider(name)
            adapter = ADAPTERS[name]()
            _instances[name] = adapter
        return adapter


def register_provider(name: str, adapter: ProviderAdapter) -> None:
    """Install a ready-made adapter (alternate credentials, test doubles)."""
    with _lock:
        _instances[name] = adapter


def reset_providers() -> None:
    with _lock:
        for adapter in _instances.values():
            adapter.close()
        _instances.clear()
