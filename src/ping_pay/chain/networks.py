"""Network definitions: an EVM chain plus the stablecoin contract on it."""

from __future__ import annotations

from dataclasses import dataclass, replace

from ping_pay.config import NetworkConfig, is_placeholder


@dataclass(frozen=True)
class Network:
    """An EVM-compatible chain and the token contract settled on it."""

    name: str
    chain_id: int
    rpc_url: str
    native_symbol: str
    explorer_url: str
    token_address: str
    token_symbol: str = "USDC"
    token_decimals: int = 6

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"


NETWORKS: dict[str, Network] = {
    "arbitrum-sepolia": Network(
        name="arbitrum-sepolia",
        chain_id=421614,
        rpc_url="https://sepolia-rollup.arbitrum.io/rpc",
        native_symbol="ETH",
        explorer_url="https://sepolia.arbiscan.io",
        token_address="0x0050EAB3c59C945aE92858121c88752e8871185D",
    ),
    "arbitrum": Network(
        name="arbitrum",
        chain_id=42161,
        rpc_url="https://arb1.arbitrum.io/rpc",
        native_symbol="ETH",
        explorer_url="https://arbiscan.io",
        token_address="0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
    ),
    "base": Network(
        name="base",
        chain_id=8453,
        rpc_url="https://mainnet.base.org",
        native_symbol="ETH",
        explorer_url="https://basescan.org",
        token_address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    ),
}


def get_network(name: str) -> Network:
    """Get a network by name. Raises ``KeyError`` if not found."""
    if name not in NETWORKS:
        raise KeyError(
            f"Unknown network '{name}'. Available: {list_network_names()}"
        )
    return NETWORKS[name]


def list_network_names() -> list[str]:
    """Return the names of all built-in networks."""
    return list(NETWORKS.keys())


def resolve_network(config: NetworkConfig) -> Network:
    """Apply config overrides on top of the named built-in network."""
    network = get_network(config.name)
    overrides: dict = {}
    if config.rpc_url and not is_placeholder(config.rpc_url):
        overrides["rpc_url"] = config.rpc_url
    if config.token_address and not is_placeholder(config.token_address):
        overrides["token_address"] = config.token_address
    return replace(network, **overrides) if overrides else network
