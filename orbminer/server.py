"""
server.py - Automation service entry point.

Single-process server combining:
 - SQLite persistent storage via StorageManager
 - Ledger client (remote RPC, or the embedded chain simulator with --simulate)
 - Wallet credential store, lifecycle manager, notifier
 - Automation executor (background polling loop)
 - Auto-claim service (periodic reward claims)
 - REST control API (FastAPI on uvicorn, port 8080)

Usage:
    python -m orbminer.server [--rpc-url URL] [--db-path data/orbminer.db] [--api-port 8080] [--simulate]
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

try:
    from fastapi import FastAPI
    import uvicorn
except ImportError:
    print("ERROR: FastAPI and uvicorn are required. Install with:")
    print("  pip install fastapi uvicorn pydantic")
    sys.exit(1)

from orbminer import __version__
from orbminer.chain_simulator import ChainSimulator
from orbminer.config import Config
from orbminer.claimer import AutoClaimService
from orbminer.executor import AutomationExecutor
from orbminer.ledger import LedgerClient
from orbminer.lifecycle import AutomationManager
from orbminer.notifier import Notifier
from orbminer.routers import register_all_routers
from orbminer.storage import StorageManager
from orbminer.wallet import WalletService

logger = logging.getLogger("server")


class AutomationServer:
    """Wires storage, ledger, wallets, lifecycle, notifier, executor and claimer behind one FastAPI app."""

    def __init__(self, config: Config, chain: Optional[ChainSimulator] = None):
        self.config = config

        # Storage + services are initialized async in start()
        self.storage: Optional[StorageManager] = None
        self.wallets: Optional[WalletService] = None
        self.lifecycle: Optional[AutomationManager] = None
        self.notifier: Optional[Notifier] = None
        self.executor: Optional[AutomationExecutor] = None
        self.claimer: Optional[AutoClaimService] = None

        self.chain = chain
        if self.chain is None and config.simulate:
            self.chain = ChainSimulator()
        if self.chain is not None:
            self.ledger = self.chain
        else:
            self.ledger = LedgerClient(
                config.rpc_url,
                rate_limit_tokens=config.rpc_rate_limit,
                rate_limit_window_sec=config.rpc_rate_window_sec,
            )

        self.app = FastAPI(title="ORB Miner Automation", version=__version__)
        self.app.state.server = self
        register_all_routers(self.app)
        if self.chain is not None:
            self.chain.register_routes(self.app)
            logger.info("Chain simulator embedded on automation server")

        self._uvicorn_server = None

    async def _init_services(self):
        """Initialize storage and wire up services (must be called in async context)."""
        db_dir = os.path.dirname(self.config.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self.storage = StorageManager(self.config.db_path)
        await self.storage.initialize()

        encryption_key = self.config.encryption_key
        if not encryption_key:
            if not self.config.simulate:
                raise ValueError("ORB_ENCRYPTION_KEY is required outside --simulate mode")
            encryption_key = WalletService.generate_encryption_key()
            logger.warning("No encryption key configured; using an ephemeral key for this simulation")
        self.wallets = WalletService(self.storage.users, encryption_key)

        self.lifecycle = AutomationManager(self.ledger, self.storage.transactions)
        self.notifier = Notifier(self.storage.notifications)
        self.executor = AutomationExecutor.from_config(
            self.config, self.ledger, self.storage, self.wallets, self.lifecycle, self.notifier,
        )
        self.claimer = AutoClaimService.from_config(
            self.config, self.ledger, self.storage, self.wallets, self.notifier,
        )
        logger.info("Services initialized (db=%s)", self.config.db_path)

    async def start(self):
        """Start storage, the executor and claim loops, and the API server."""
        await self._init_services()
        await self.executor.start()
        await self.claimer.start()

        config = uvicorn.Config(
            self.app,
            host="0.0.0.0",
            port=self.config.api_port,
            log_level="info",
        )
        self._uvicorn_server = uvicorn.Server(config)
        logger.info("REST API starting on port %d", self.config.api_port)
        try:
            await self._uvicorn_server.serve()
        finally:
            await self.stop()

    async def stop(self):
        """Stop the background loops, the ledger client, storage and the API server."""
        if self.claimer:
            await self.claimer.stop()
        if self.executor:
            await self.executor.stop()
        await self.ledger.close()
        if self.storage:
            await self.storage.close()
            self.storage = None
        if self._uvicorn_server is not None:
            self._uvicorn_server.should_exit = True


def parse_args(argv=None) -> Config:
    config = Config.from_env()
    parser = argparse.ArgumentParser(description="ORB mining automation server")
    parser.add_argument("--rpc-url", default=config.rpc_url, help="Chain RPC endpoint")
    parser.add_argument("--db-path", default=config.db_path, help=f"SQLite database path (default: {config.db_path})")
    parser.add_argument("--api-port", type=int, default=config.api_port, help=f"REST API port (default: {config.api_port})")
    parser.add_argument("--poll-interval", type=float, default=config.poll_interval_sec,
                        help=f"Seconds between board polls (default: {config.poll_interval_sec:.0f})")
    parser.add_argument("--workers", type=int, default=config.max_workers,
                        help=f"Users processed concurrently (default: {config.max_workers})")
    parser.add_argument("--simulate", action="store_true", default=config.simulate,
                        help="Run against the embedded chain simulator")
    args = parser.parse_args(argv)

    config.rpc_url = args.rpc_url
    config.db_path = args.db_path
    config.api_port = args.api_port
    config.poll_interval_sec = args.poll_interval
    config.max_workers = args.workers
    config.simulate = args.simulate
    return config


def main():
    """CLI entry point for the automation server."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)-10s] %(levelname)-5s %(message)s",
        datefmt="%H:%M:%S",
    )
    config = parse_args()
    server = AutomationServer(config)

    logger.info("=" * 60)
    logger.info("  ORB Miner Automation Server %s", __version__)
    logger.info("  Ledger:    %s", "simulator" if config.simulate else config.rpc_url)
    logger.info("  REST API:  http://localhost:%d", config.api_port)
    logger.info("  Database:  %s", config.db_path)
    logger.info("  Poll:      %.0fs, %d worker(s)", config.poll_interval_sec, config.max_workers)
    logger.info("  Claims:    every %.0fs", config.claim_interval_sec)
    logger.info("=" * 60)

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
