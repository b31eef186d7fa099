"""Node connection bootstrap and readiness check."""

from __future__ import annotations

import asyncio
import logging

from spectre_tipbot.config import TipBotConfig
from spectre_tipbot.engine.base import ConnectOptions, NodeConnection, ServerInfo
from spectre_tipbot.errors import ErrorKind, TipError

logger = logging.getLogger("spectre_tipbot.engine.node")


async def connect_node(node: NodeConnection, config: TipBotConfig) -> None:
    """Connect ``node`` using the configured url and timeout."""
    options = ConnectOptions(
        url=config.node.url,
        network_id=config.network,
        timeout_seconds=config.node.connect_timeout_seconds,
    )
    try:
        await asyncio.wait_for(node.connect(options), timeout=config.node.connect_timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise TipError(
            ErrorKind.NODE_UNAVAILABLE,
            f"Timed out after {config.node.connect_timeout_seconds}s connecting to the node",
            exc,
        ) from exc
    except Exception as exc:
        raise TipError(ErrorKind.NODE_UNAVAILABLE, f"Failed to connect to the node: {exc}", exc) from exc
    logger.info(f"Connected to the node ({config.node.url or 'resolver'})")


async def check_node_status(node: NodeConnection, config: TipBotConfig) -> ServerInfo:
    """Fetch and log the node's server info, failing when it is unusable.

    A node that is not synced or does not index UTXOs cannot serve wallet
    balances, so those conditions raise ``NODE_UNAVAILABLE`` unless
    disabled in the node configuration.
    """
    try:
        info = await node.get_server_info()
    except Exception as exc:
        raise TipError(ErrorKind.NODE_UNAVAILABLE, f"Failed to query server info: {exc}", exc) from exc

    logger.info(f"Node version: {info.version}")
    logger.info(f"Network: {info.network_id}")
    logger.info(f"is synced: {info.is_synced}")
    logger.info(f"is indexing UTXOs: {info.has_utxo_index}")

    if config.node.require_synced and not info.is_synced:
        raise TipError(ErrorKind.NODE_UNAVAILABLE, "Node is not synced")
    if config.node.require_utxo_index and not info.has_utxo_index:
        raise TipError(ErrorKind.NODE_UNAVAILABLE, "Node does not index UTXOs")
    if info.network_id.lower() != config.network.lower():
        logger.warning(
            f"Node reports network '{info.network_id}' but '{config.network}' is configured"
        )
    return info
