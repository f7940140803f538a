"""
ORB Miner Automation - Service Package

Round-driven automation of ORB mining deploys for custodial user wallets.
Includes the ledger client, account decoders, automation lifecycle manager,
executor, auto-claim service, SQLite storage, REST API, and an in-memory chain simulator.
"""

__version__ = "0.1.0"

__all__ = [
    "chain_simulator",
    "claimer",
    "config",
    "decoder",
    "errors",
    "executor",
    "ledger",
    "lifecycle",
    "notifier",
    "protocol",
    "round_detector",
    "server",
    "storage",
    "wallet",
]
