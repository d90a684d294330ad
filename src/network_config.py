"""SEI EVM network constants: token table and DragonSwap V2 contracts."""

from __future__ import annotations

from dataclasses import dataclass, field

from config import get_env

DEFAULT_RPC_URL = "https://evm-rpc.sei-apis.com"

TOKEN_MAPPINGS: dict[str, dict] = {
    "wsei": {
        "address": "0xE30feDd158A2e3b13e9badaeABaFc5516e95e8C7",
        "symbol": "WSEI",
        "decimals": 18,
        "name": "Wrapped SEI",
    },
    "usdc": {
        "address": "0xe15fC38F6D8c56aF07bbCBe3BAf5708A2Bf42392",
        "symbol": "USDC",
        "decimals": 6,
        "name": "USD Coin",
    },
    "usdt": {
        "address": "0x9151434b16b9763660705744891fA906F660EcC5",
        "symbol": "USDT",
        "decimals": 6,
        "name": "USDT0",
    },
    "weth": {
        "address": "0x160345fC359604fC6e70E3c5fAcbdE5F7A9342d8",
        "symbol": "WETH",
        "decimals": 18,
        "name": "Bridged Wrapped Ether (Stargate)",
    },
    "seiyan": {
        "address": "0x5f0E07dFeE5832Faa00c63F2D33A0D79150E8598",
        "symbol": "SEIYAN",
        "decimals": 6,
        "name": "SEIYAN",
    },
    "jly": {
        "address": "0xDD7d5e4Ea2125d43C16eEd8f1FFeFffa2F4b4aF6",
        "symbol": "JLY",
        "decimals": 18,
        "name": "Jelly Token",
    },
}

DRAGONSWAP_V2: dict[str, str] = {
    "swap_router": "0x11DA6463D6Cb5a03411Dbf5ab6f6bc3997Ac7428",
    "factory": "0x179D9a5592Bc77050796F7be28058c51cA575df4",
    "quoter": "0x38F759cf0Af1D0dcAEd723a3967A3B658738eDe9",
}


@dataclass(frozen=True)
class NetworkConfig:
    """Everything the router needs to know about one chain deployment."""

    rpc_url: str = DEFAULT_RPC_URL
    chain_id: int = 1329
    explorer: str = "https://seitrace.com"
    native_symbol: str = "SEI"
    wrapped_native_symbol: str = "WSEI"
    primary_bridge_symbol: str = "WSEI"
    secondary_bridge_symbol: str = "USDT"
    swap_router: str = DRAGONSWAP_V2["swap_router"]
    factory: str = DRAGONSWAP_V2["factory"]
    quoter: str = DRAGONSWAP_V2["quoter"]
    tokens: dict[str, dict] = field(default_factory=lambda: dict(TOKEN_MAPPINGS))

    @classmethod
    def from_env(cls) -> "NetworkConfig":
        return cls(rpc_url=get_env("SEI_RPC_URL", DEFAULT_RPC_URL) or DEFAULT_RPC_URL)

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer}/tx/{tx_hash}"
