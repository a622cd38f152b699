"""SQLite state store for restart-safe ledger state."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from yieldledger.domain.models import AdapterKind, LedgerSnapshot, PoolSnapshot, StrategyRecord


class SqliteStateStore:
    """SQLite-backed implementation of ledger state persistence.

    Amounts are stored as TEXT so values wider than 64 bits round-trip exactly.
    """

    def __init__(self, db_path: str) -> None:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.connection = sqlite3.connect(path)
        self.connection.row_factory = sqlite3.Row
        self._initialize_schema()

    def record_run(self, run_id: str, controller: str, scenario: str) -> None:
        now = self._utc_now()
        self.connection.execute(
            """
            INSERT OR REPLACE INTO runs(run_id, controller, scenario, started_ts)
            VALUES(?, ?, ?, ?)
            """,
            (run_id, controller, scenario, now),
        )
        self.connection.commit()

    def save_snapshot(self, run_id: str, snapshot: LedgerSnapshot) -> None:
        now = self._utc_now()
        with self.connection:
            self.connection.execute("DELETE FROM ledger_meta")
            self.connection.execute("DELETE FROM pools")
            self.connection.execute("DELETE FROM pool_strategies")
            self.connection.execute("DELETE FROM share_balances")
            self.connection.execute(
                """
                INSERT INTO ledger_meta(singleton, controller, asset_ids, run_id, saved_ts)
                VALUES(1, ?, ?, ?, ?)
                """,
                (
                    snapshot.controller,
                    ",".join(str(asset_id) for asset_id in snapshot.asset_ids),
                    run_id,
                    now,
                ),
            )
            for pool in snapshot.pools:
                self.connection.execute(
                    """
                    INSERT INTO pools(asset_id, token, principal, share_supply, active_index)
                    VALUES(?, ?, ?, ?, ?)
                    """,
                    (
                        pool.asset_id,
                        pool.token,
                        str(pool.principal),
                        str(pool.share_supply),
                        pool.active_index,
                    ),
                )
                for record in pool.strategies:
                    self.connection.execute(
                        """
                        INSERT INTO pool_strategies(asset_id, position, adapter_id, kind)
                        VALUES(?, ?, ?, ?)
                        """,
                        (pool.asset_id, record.index, record.adapter_id, record.kind.value),
                    )
            for (holder, asset_id), shares in sorted(snapshot.balances.items()):
                if not shares:
                    continue
                self.connection.execute(
                    """
                    INSERT INTO share_balances(holder, asset_id, shares)
                    VALUES(?, ?, ?)
                    """,
                    (holder, asset_id, str(shares)),
                )

    def load_snapshot(self) -> LedgerSnapshot | None:
        meta = self.connection.execute(
            "SELECT controller, asset_ids FROM ledger_meta WHERE singleton = 1"
        ).fetchone()
        if meta is None:
            return None
        asset_ids_text = str(meta["asset_ids"])
        asset_ids = tuple(int(item) for item in asset_ids_text.split(",") if item)

        strategy_rows = self.connection.execute(
            """
            SELECT asset_id, position, adapter_id, kind
            FROM pool_strategies
            ORDER BY asset_id ASC, position ASC
            """
        ).fetchall()
        pool_rows = self.connection.execute(
            """
            SELECT asset_id, token, principal, share_supply, active_index
            FROM pools
            ORDER BY asset_id ASC
            """
        ).fetchall()
        pools: list[PoolSnapshot] = []
        for row in pool_rows:
            asset_id = int(row["asset_id"])
            active_index = row["active_index"]
            strategies = tuple(
                StrategyRecord(
                    index=int(item["position"]),
                    adapter_id=str(item["adapter_id"]),
                    kind=AdapterKind(str(item["kind"])),
                    active=active_index is not None and int(item["position"]) == active_index,
                )
                for item in strategy_rows
                if int(item["asset_id"]) == asset_id
            )
            pools.append(
                PoolSnapshot(
                    asset_id=asset_id,
                    token=str(row["token"]),
                    principal=int(row["principal"]),
                    share_supply=int(row["share_supply"]),
                    active_index=int(active_index) if active_index is not None else None,
                    strategies=strategies,
                )
            )

        balance_rows = self.connection.execute(
            "SELECT holder, asset_id, shares FROM share_balances"
        ).fetchall()
        balances = {
            (str(row["holder"]), int(row["asset_id"])): int(row["shares"])
            for row in balance_rows
        }
        return LedgerSnapshot(
            controller=str(meta["controller"]),
            asset_ids=asset_ids,
            pools=tuple(pools),
            balances=balances,
        )

    def close(self) -> None:
        self.connection.close()

    def _initialize_schema(self) -> None:
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS runs(
                run_id TEXT PRIMARY KEY,
                controller TEXT NOT NULL,
                scenario TEXT NOT NULL,
                started_ts TEXT NOT NULL
            )
            """
        )
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS ledger_meta(
                singleton INTEGER PRIMARY KEY CHECK (singleton = 1),
                controller TEXT NOT NULL,
                asset_ids TEXT NOT NULL,
                run_id TEXT NOT NULL,
                saved_ts TEXT NOT NULL
            )
            """
        )
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS pools(
                asset_id INTEGER PRIMARY KEY,
                token TEXT NOT NULL,
                principal TEXT NOT NULL,
                share_supply TEXT NOT NULL,
                active_index INTEGER
            )
            """
        )
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS pool_strategies(
                asset_id INTEGER NOT NULL,
                position INTEGER NOT NULL,
                adapter_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                PRIMARY KEY (asset_id, position)
            )
            """
        )
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS share_balances(
                holder TEXT NOT NULL,
                asset_id INTEGER NOT NULL,
                shares TEXT NOT NULL,
                PRIMARY KEY (holder, asset_id)
            )
            """
        )
        self.connection.commit()

    @staticmethod
    def _utc_now() -> str:
        return datetime.now(tz=UTC).isoformat()
