import importlib
import logging
import pkgutil
from types import ModuleType
from typing import Iterable

from clipdash.integrations.platform_adapters.base_adapter import AdapterResolutionError, BasePublishAdapter

logger = logging.getLogger(__name__)

_DISCOVERED = False
_ADAPTER_REGISTRY: dict[str, type[BasePublishAdapter]] = {}
_SKIP_MODULES = {"base_adapter", "factory"}


def _iter_subclasses(root: type[BasePublishAdapter]) -> Iterable[type[BasePublishAdapter]]:
    for subclass in root.__subclasses__():
        yield subclass
        yield from _iter_subclasses(subclass)


def _discover_adapter_modules() -> None:
    package = importlib.import_module("clipdash.integrations.platform_adapters")
    if not isinstance(package, ModuleType) or not hasattr(package, "__path__"):
        return

    for module_info in pkgutil.iter_modules(package.__path__, prefix="clipdash.integrations.platform_adapters."):
        module_name = module_info.name.rsplit(".", 1)[-1]
        if module_name in _SKIP_MODULES:
            continue
        try:
            importlib.import_module(module_info.name)
        except Exception as exc:
            logger.warning(
                "publish_adapter_module_skip module=%s reason=%s",
                module_info.name,
                exc,
            )


def _load_registry() -> dict[str, type[BasePublishAdapter]]:
    global _DISCOVERED
    if _DISCOVERED and _ADAPTER_REGISTRY:
        return _ADAPTER_REGISTRY

    _discover_adapter_modules()
    discovered: dict[str, type[BasePublishAdapter]] = {}
    for adapter_cls in _iter_subclasses(BasePublishAdapter):
        provider = (getattr(adapter_cls, "provider", "") or "").strip().lower()
        if not provider:
            continue
        discovered[provider] = adapter_cls

    _ADAPTER_REGISTRY.clear()
    _ADAPTER_REGISTRY.update(discovered)
    _DISCOVERED = True
    logger.info(
        "publish_adapter_registry_loaded total=%s providers=%s",
        len(_ADAPTER_REGISTRY),
        ",".join(sorted(_ADAPTER_REGISTRY.keys())),
    )
    return _ADAPTER_REGISTRY


def list_registered_providers() -> list[str]:
    registry = _load_registry()
    return sorted(registry.keys())


def get_publish_adapter(provider: str) -> BasePublishAdapter:
    normalized_provider = provider.strip().lower()
    registry = _load_registry()
    adapter_cls = registry.get(normalized_provider)
    if adapter_cls is None:
        logger.error(
            "publish_adapter_resolution_failed provider=%s available_providers=%s",
            normalized_provider,
            ",".join(sorted(registry.keys())),
        )
        raise AdapterResolutionError(f"Unsupported provider: {normalized_provider}")

    return adapter_cls()
