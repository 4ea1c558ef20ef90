"""
Engine configuration parameters for sealmarket.

Defines settlement economics, purchase limits and operational paths. An
EngineConfig is passed explicitly to every component that needs it.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values

ENV_PREFIX = "SEALMARKET_"


@dataclass(frozen=True)
class EngineConfig:
    """Settlement-wide configuration parameters"""

    # Economics
    fee_basis_points: int = 500  # 5% settlement fee on winning claims

    # Purchase limits (enforced by the ledger, respected by the tally)
    user_absolute_ticket_cap: int = 100  # Floor of the per-participant ticket cap
    user_pool_share_divisor: int = 4  # Dynamic cap = market tickets // divisor
    max_choices_per_account: int = 32  # Purchases per participant per market
    max_encoded_choice_len: int = 256  # Bytes of base64 stored per choice

    # Market creation limits
    max_title_len: int = 64
    max_description_len: int = 512
    max_category_len: int = 32
    max_side_label_len: int = 32
    max_revealed_key_len: int = 64

    # Stats pagination
    default_page_size: int = 20
    max_page_size: int = 100

    # Paths
    data_dir: Path = Path("data")
    log_dir: Path = Path("logs")

    def __post_init__(self):
        if not 0 <= self.fee_basis_points <= 10_000:
            raise ValueError(f"fee_basis_points must be in [0, 10000], got {self.fee_basis_points}")
        if self.user_pool_share_divisor <= 0:
            raise ValueError("user_pool_share_divisor must be positive")
        if self.max_page_size <= 0 or self.default_page_size <= 0:
            raise ValueError("page sizes must be positive")


def _coerce(raw: str, current):
    if isinstance(current, Path):
        return Path(raw).expanduser()
    if isinstance(current, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(raw)
    return raw


def load_config(env_file: Optional[str] = None) -> EngineConfig:
    """
    Load configuration from SEALMARKET_* variables.

    Values from `env_file` (dotenv format) are read first; the process
    environment overrides them. Unknown keys are ignored.

    Args:
        env_file: Optional path to a .env file

    Returns:
        EngineConfig instance
    """
    values = {}
    if env_file:
        values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    values.update({k: v for k, v in os.environ.items() if k.startswith(ENV_PREFIX)})

    defaults = EngineConfig()
    overrides = {}
    for f in fields(EngineConfig):
        key = ENV_PREFIX + f.name.upper()
        if key in values:
            overrides[f.name] = _coerce(values[key], getattr(defaults, f.name))

    return EngineConfig(**overrides)
