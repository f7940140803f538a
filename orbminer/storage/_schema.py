SCHEMA_VERSION = 3

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied_at REAL NOT NULL
);

-- Users: custodial wallets
CREATE TABLE IF NOT EXISTS users (
    user_id       TEXT PRIMARY KEY,
    public_key    TEXT NOT NULL DEFAULT '',
    encrypted_key TEXT NOT NULL DEFAULT '',
    created_at    REAL NOT NULL,
    updated_at    REAL NOT NULL
);

-- Per-user automation settings
CREATE TABLE IF NOT EXISTS user_settings (
    user_id                   TEXT PRIMARY KEY,
    motherload_threshold      REAL NOT NULL DEFAULT 5000,
    sol_per_block             REAL NOT NULL DEFAULT 0.001,
    num_blocks                INTEGER NOT NULL DEFAULT 10,
    automation_budget_percent REAL NOT NULL DEFAULT 50,
    auto_claim_sol_threshold  REAL NOT NULL DEFAULT 0.01,
    auto_claim_orb_threshold  REAL NOT NULL DEFAULT 10000,
    created_at                REAL NOT NULL,
    updated_at                REAL NOT NULL
);

-- Transactions: audit trail of every submitted transaction
CREATE TABLE IF NOT EXISTS transactions (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    TEXT NOT NULL DEFAULT '',
    type       TEXT NOT NULL CHECK (type IN ('deploy', 'checkpoint', 'automation_setup', 'automation_close', 'claim_sol', 'claim_orb')),
    signature  TEXT NOT NULL,
    round_id   INTEGER,
    sol_amount REAL NOT NULL DEFAULT 0.0,
    orb_amount REAL NOT NULL DEFAULT 0.0,
    status     TEXT NOT NULL DEFAULT 'success',
    notes      TEXT NOT NULL DEFAULT '',
    created_at REAL NOT NULL
);

-- Round participation per user
CREATE TABLE IF NOT EXISTS user_rounds (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id          TEXT NOT NULL,
    round_id         INTEGER NOT NULL,
    motherlode       REAL NOT NULL DEFAULT 0,
    deployed_sol     REAL NOT NULL DEFAULT 0,
    squares_deployed INTEGER NOT NULL DEFAULT 0,
    created_at       REAL NOT NULL,
    UNIQUE (user_id, round_id)
);

-- Notification outbox drained by the chat front-end
CREATE TABLE IF NOT EXISTS notifications (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id      TEXT NOT NULL,
    type         TEXT NOT NULL,
    title        TEXT NOT NULL,
    message      TEXT NOT NULL,
    delivered    INTEGER NOT NULL DEFAULT 0,
    created_at   REAL NOT NULL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_users_public_key ON users(public_key);
CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id);
CREATE INDEX IF NOT EXISTS idx_transactions_created ON transactions(created_at);
CREATE INDEX IF NOT EXISTS idx_user_rounds_user ON user_rounds(user_id, round_id);
CREATE INDEX IF NOT EXISTS idx_notifications_pending ON notifications(delivered) WHERE delivered = 0;
"""
