"""Resolve the configured wallet engine and node client implementations."""

from __future__ import annotations

import importlib
import logging
from typing import Any, Callable

from spectre_tipbot.config import TipBotConfig
from spectre_tipbot.engine.base import NodeConnection, WalletEngineFactory

logger = logging.getLogger("spectre_tipbot.engine.loader")


def load_factory(dotted_path: str) -> Callable[..., Any]:
    """Import a callable (class or function) from its fully-qualified path.

    Imports are deferred so the engine SDKs are only required when the
    bot actually starts, not when the core is imported.
    """
    if not dotted_path or "." not in dotted_path:
        raise ValueError(
            f"Expected a dotted path like 'package.module.Name', got {dotted_path!r}"
        )
    module_path, attr_name = dotted_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    try:
        factory = getattr(module, attr_name)
    except AttributeError as exc:
        raise ValueError(f"'{module_path}' has no attribute '{attr_name}'") from exc
    if not callable(factory):
        raise TypeError(f"Expected a callable at '{dotted_path}', got {factory!r}")
    return factory


def load_wallet_factory(config: TipBotConfig) -> WalletEngineFactory:
    """Return the zero-argument factory producing fresh wallet engine handles."""
    if not config.engine.wallet_factory:
        raise ValueError("No wallet engine configured. Set 'engine.wallet_factory' in config.yaml.")
    factory = load_factory(config.engine.wallet_factory)
    logger.info(f"Using wallet engine {config.engine.wallet_factory}")
    return factory


def load_node_connection(config: TipBotConfig) -> NodeConnection:
    """Instantiate the configured node client for the configured network."""
    if not config.engine.node_factory:
        raise ValueError("No node client configured. Set 'engine.node_factory' in config.yaml.")
    factory = load_factory(config.engine.node_factory)
    node = factory(config.network)
    if not isinstance(node, NodeConnection):
        raise TypeError(
            f"'{config.engine.node_factory}' did not produce a NodeConnection, got {node!r}"
        )
    logger.info(f"Using node client {config.engine.node_factory}")
    return node
