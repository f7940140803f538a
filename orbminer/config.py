"""Runtime configuration.

Defaults are overridden by ``ORB_*`` environment variables, which are in turn
overridden by command-line flags in ``orbminer.server.main``.
"""

import os
from dataclasses import asdict, dataclass, fields
from typing import Optional

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


@dataclass
class Config:
    rpc_url: str = DEFAULT_RPC_URL
    db_path: str = "data/orbminer.db"
    api_port: int = 8080
    encryption_key: str = ""
    poll_interval_sec: float = 15.0
    user_delay_sec: float = 1.0
    settle_delay_sec: float = 2.0
    checkpoint_delay_sec: float = 2.0
    user_timeout_sec: float = 90.0
    max_workers: int = 1
    rpc_rate_limit: int = 40
    rpc_rate_window_sec: float = 10.0
    restart_backoff_rounds: int = 3
    claim_interval_sec: float = 300.0
    simulate: bool = False

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Config":
        env = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = env.get("ORB_" + f.name.upper())
            if raw is None or raw == "":
                continue
            if f.type in (bool, "bool"):
                values[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
            elif f.type in (int, "int"):
                values[f.name] = int(raw)
            elif f.type in (float, "float"):
                values[f.name] = float(raw)
            else:
                values[f.name] = raw
        return cls(**values)

    def to_dict(self) -> dict:
        d = asdict(self)
        if d["encryption_key"]:
            d["encryption_key"] = "***"
        return d
