"""Settlement core: codec, ledger, settlement decisions and the engine"""
from sealmarket.core.config import EngineConfig, load_config
from sealmarket.core.engine import SettlementEngine

__all__ = [
    "EngineConfig",
    "load_config",
    "SettlementEngine",
]
