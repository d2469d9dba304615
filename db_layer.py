"""
================================================================================
PERSISTENCE LAYER: JSON OUTPUT FILE + OPTIONAL POSTGRESQL TABLE
================================================================================
Receives the final, sequence-ordered packet list of a recovery run.

1. JsonFileSink: writes the packets as an indented JSON array of records
   (symbol, buySellIndicator, quantity, price, sequence).
2. DatabaseLayer: stores the same records in a `packets` table keyed by
   sequence, through an asyncpg connection pool.
================================================================================
"""

import asyncio
import json
from pathlib import Path
from typing import Sequence

from normalize import Packet


class JsonFileSink:
    def __init__(self, path):
        self.path = Path(path)

    async def save_packets(self, packets: Sequence[Packet]) -> Path:
        records = [packet.to_record() for packet in packets]
        await asyncio.to_thread(self._write, records)
        return self.path

    def _write(self, records: list[dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(records, indent=2))


class DatabaseLayer:
    """
    Encapsulates schema creation and packet persistence logic.
    """
    def __init__(self, db_pool):
        self.db = db_pool

    async def initialize_schema(self):
        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS packets (
                sequence INT PRIMARY KEY,
                symbol CHAR(4) NOT NULL,
                buy_sell_indicator CHAR(1) NOT NULL,
                quantity INT NOT NULL,
                price INT NOT NULL,
                recovered_at TIMESTAMPTZ NOT NULL DEFAULT now()
            );
        """)

    async def save_packets(self, packets: Sequence[Packet]) -> int:
        """
        Persists recovered packets.
        Uses ON CONFLICT so re-running a recovery never duplicates rows.
        """
        query = """
            INSERT INTO packets (sequence, symbol, buy_sell_indicator, quantity, price)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (sequence) DO NOTHING;
        """
        await self.db.executemany(
            query,
            [(p.sequence, p.symbol, p.side, p.quantity, p.price) for p in packets],
        )
        return len(packets)
