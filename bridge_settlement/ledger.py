"""
Swap Ledger

SQLite ledger of client accounts and swaps. Single source of truth for what
has been deposited and what has been paid out.

Tables:
- client_accounts: user payout address -> receiving identity
- accounts_wagerr: generated wallet deposit addresses
- accounts_bnb: generated account-chain memos
- swaps: deposits, pending until a transfer hash is written
- period_totals: accumulated USD value of auto payouts per period
"""

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from loguru import logger

from .constants import ChainType, SwapType, swap_type_for_account
from .errors import LedgerWriteError
from .models import ClientAccount, NormalizedTransaction, Swap

REQUIRED_ACCOUNT_FIELDS = {
    ChainType.WAGERR: ('address', 'address_index'),
    ChainType.BNB: ('memo',),
}

# Stays under the 999 bound variable limit of older SQLite builds
UPDATE_CHUNK_SIZE = 500


def _parse_timestamp(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SwapLedger:
    """
    SQLite swap ledger

    One connection; every multi-row write runs inside one transaction and is
    rolled back as a whole on failure (LedgerWriteError).
    """

    def __init__(self, db_path: str = "bridge_ledger.db"):
        """
        Initialize ledger

        Args:
            db_path: Path to SQLite database (':memory:' for a throwaway ledger)
        """
        self.db_path = db_path if db_path == ':memory:' else Path(db_path)
        self.conn: Optional[sqlite3.Connection] = None
        self._initialize_db()
        logger.info(f"Swap ledger initialized: {self.db_path}")

    def _initialize_db(self):
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._create_tables()

    def _create_tables(self):
        """Create ledger tables"""
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS client_accounts (
                uuid TEXT PRIMARY KEY,
                address TEXT NOT NULL,
                address_type TEXT NOT NULL,
                account_type TEXT NOT NULL,
                created TIMESTAMP NOT NULL,
                CONSTRAINT unique_address UNIQUE (address, address_type),
                CONSTRAINT valid_address_type CHECK (address_type IN ('wagerr', 'bnb')),
                CONSTRAINT valid_account_type CHECK (account_type IN ('wagerr', 'bnb'))
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS accounts_wagerr (
                uuid TEXT PRIMARY KEY,
                client_account_uuid TEXT UNIQUE NOT NULL,
                address TEXT NOT NULL,
                address_index TEXT NOT NULL,
                created TIMESTAMP NOT NULL,
                FOREIGN KEY (client_account_uuid) REFERENCES client_accounts(uuid)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS accounts_bnb (
                uuid TEXT PRIMARY KEY,
                client_account_uuid TEXT UNIQUE NOT NULL,
                memo TEXT UNIQUE NOT NULL,
                created TIMESTAMP NOT NULL,
                FOREIGN KEY (client_account_uuid) REFERENCES client_accounts(uuid)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS swaps (
                uuid TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                amount INTEGER NOT NULL,
                client_account_uuid TEXT NOT NULL,
                deposit_transaction_hash TEXT,
                deposit_transaction_created TIMESTAMP,
                transfer_transaction_hash TEXT,
                processed TIMESTAMP,
                created TIMESTAMP NOT NULL,
                FOREIGN KEY (client_account_uuid) REFERENCES client_accounts(uuid),
                CONSTRAINT unique_deposit UNIQUE (type, deposit_transaction_hash),
                CONSTRAINT valid_type CHECK (type IN ('wagerr_to_bwagerr', 'bwagerr_to_wagerr'))
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS period_totals (
                period TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_swaps_pending ON swaps(type, transfer_transaction_hash)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_swaps_client ON swaps(client_account_uuid)")

        self.conn.commit()

    @contextmanager
    def _transaction(self):
        """Run writes in one transaction; rollback and raise LedgerWriteError on failure"""
        try:
            with self.conn:
                yield self.conn.cursor()
        except sqlite3.Error as e:
            logger.error(f"✗ Ledger write rolled back: {e}")
            raise LedgerWriteError(str(e)) from e

    # Client accounts

    _CLIENT_ACCOUNT_QUERY = """
        SELECT c.uuid, c.address, c.address_type, c.account_type,
               w.address AS wagerr_address, w.address_index, b.memo
        FROM client_accounts c
        LEFT JOIN accounts_wagerr w ON w.client_account_uuid = c.uuid
        LEFT JOIN accounts_bnb b ON b.client_account_uuid = c.uuid
    """

    def _row_to_client_account(self, row: sqlite3.Row) -> ClientAccount:
        account_type = ChainType(row['account_type'])
        if account_type is ChainType.WAGERR:
            account = {'address': row['wagerr_address'], 'address_index': row['address_index']}
        else:
            account = {'memo': row['memo']}

        return ClientAccount(
            uuid=row['uuid'],
            address=row['address'],
            address_type=ChainType(row['address_type']),
            account_type=account_type,
            account=account,
        )

    def get_client_accounts(self, account_type: ChainType) -> List[ClientAccount]:
        """All client accounts whose receiving identity is on the given chain"""
        cursor = self.conn.execute(
            self._CLIENT_ACCOUNT_QUERY + " WHERE c.account_type = ? ORDER BY c.created, c.rowid",
            (ChainType(account_type).value,)
        )
        return [self._row_to_client_account(row) for row in cursor.fetchall()]

    def get_client_account(self, address: str, address_type: ChainType) -> Optional[ClientAccount]:
        """Exact-match lookup by payout address"""
        cursor = self.conn.execute(
            self._CLIENT_ACCOUNT_QUERY + " WHERE c.address = ? AND c.address_type = ?",
            (address, ChainType(address_type).value)
        )
        row = cursor.fetchone()
        return self._row_to_client_account(row) if row else None

    def get_client_account_for_uuid(self, account_uuid: str) -> Optional[ClientAccount]:
        cursor = self.conn.execute(self._CLIENT_ACCOUNT_QUERY + " WHERE c.uuid = ?", (account_uuid,))
        row = cursor.fetchone()
        return self._row_to_client_account(row) if row else None

    def insert_client_account(
        self,
        address: str,
        address_type: ChainType,
        account_payload: Dict
    ) -> Optional[ClientAccount]:
        """
        Create a client account with its receiving identity

        The receiving identity lives on the other chain than the payout
        address. An account that already exists for (address, address_type)
        is returned unchanged.

        Args:
            address: User payout address
            address_type: Chain of the payout address
            account_payload: {'address', 'address_index'} (wagerr) or {'memo'} (bnb)

        Returns:
            ClientAccount, or None if the payload is incomplete
        """
        address_type = ChainType(address_type)
        account_type = ChainType.BNB if address_type is ChainType.WAGERR else ChainType.WAGERR

        payload = account_payload or {}
        if any(not payload.get(key) for key in REQUIRED_ACCOUNT_FIELDS[account_type]):
            logger.error(f"Invalid {account_type.value} account payload for {address}: {payload}")
            return None

        existing = self.get_client_account(address, address_type)
        if existing:
            return existing

        client_uuid = str(uuid.uuid4())
        created = _now().isoformat()

        try:
            with self._transaction() as cursor:
                cursor.execute("""
                    INSERT INTO client_accounts (uuid, address, address_type, account_type, created)
                    VALUES (?, ?, ?, ?, ?)
                """, (client_uuid, address, address_type.value, account_type.value, created))

                if account_type is ChainType.WAGERR:
                    cursor.execute("""
                        INSERT INTO accounts_wagerr (uuid, client_account_uuid, address, address_index, created)
                        VALUES (?, ?, ?, ?, ?)
                    """, (str(uuid.uuid4()), client_uuid, payload['address'], str(payload['address_index']), created))
                else:
                    cursor.execute("""
                        INSERT INTO accounts_bnb (uuid, client_account_uuid, memo, created)
                        VALUES (?, ?, ?, ?)
                    """, (str(uuid.uuid4()), client_uuid, payload['memo'], created))
        except LedgerWriteError as e:
            # Lost a race on (address, address_type)
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                existing = self.get_client_account(address, address_type)
                if existing:
                    return existing
            raise

        logger.info(f"✓ Client account {client_uuid} created for {address} ({address_type.value})")
        return self.get_client_account_for_uuid(client_uuid)

    # Swaps

    def _row_to_swap(self, row: sqlite3.Row) -> Swap:
        keys = row.keys()
        return Swap(
            uuid=row['uuid'],
            type=SwapType(row['type']),
            amount=row['amount'],
            client_account_uuid=row['client_account_uuid'],
            deposit_transaction_hash=row['deposit_transaction_hash'],
            deposit_transaction_created=_parse_timestamp(row['deposit_transaction_created']),
            transfer_transaction_hash=row['transfer_transaction_hash'],
            processed=_parse_timestamp(row['processed']),
            created=_parse_timestamp(row['created']),
            address=row['address'] if 'address' in keys else None,
        )

    def get_all_swap_deposit_hashes(self, swap_type: SwapType) -> Set[str]:
        cursor = self.conn.execute(
            "SELECT deposit_transaction_hash FROM swaps WHERE type = ? AND deposit_transaction_hash IS NOT NULL",
            (SwapType(swap_type).value,)
        )
        return {row['deposit_transaction_hash'] for row in cursor.fetchall()}

    def get_pending_swaps(self, swap_type: SwapType) -> List[Swap]:
        """Unsettled swaps of a type, with the destination address of their client account"""
        cursor = self.conn.execute("""
            SELECT s.*, c.address
            FROM swaps s
            JOIN client_accounts c ON c.uuid = s.client_account_uuid
            WHERE s.type = ? AND s.transfer_transaction_hash IS NULL
            ORDER BY s.created, s.rowid
        """, (SwapType(swap_type).value,))
        return [self._row_to_swap(row) for row in cursor.fetchall()]

    def get_swaps_for_client_account(self, account_uuid: str) -> List[Swap]:
        cursor = self.conn.execute(
            "SELECT * FROM swaps WHERE client_account_uuid = ? ORDER BY created, rowid",
            (account_uuid,)
        )
        return [self._row_to_swap(row) for row in cursor.fetchall()]

    def get_all_swaps(self, swap_type: Optional[SwapType] = None, since: Optional[datetime] = None) -> List[Swap]:
        """
        Swaps, optionally of one type and deposited at or after `since`

        Args:
            swap_type: Filter on swap type
            since: Lower bound on deposit_transaction_created (timezone aware)
        """
        if swap_type is None:
            cursor = self.conn.execute("SELECT * FROM swaps ORDER BY created, rowid")
        else:
            cursor = self.conn.execute(
                "SELECT * FROM swaps WHERE type = ? ORDER BY created, rowid",
                (SwapType(swap_type).value,)
            )
        swaps = [self._row_to_swap(row) for row in cursor.fetchall()]

        if since is not None:
            swaps = [
                swap for swap in swaps
                if swap.deposit_transaction_created is not None and swap.deposit_transaction_created >= since
            ]
        return swaps

    def _insert_swap_rows(self, cursor, items: Iterable[Tuple[NormalizedTransaction, ClientAccount]]) -> List[Swap]:
        inserted = []
        for transaction, client_account in items:
            swap = Swap(
                uuid=str(uuid.uuid4()),
                type=swap_type_for_account(client_account.account_type),
                amount=int(transaction.amount),
                client_account_uuid=client_account.uuid,
                deposit_transaction_hash=transaction.hash,
                deposit_transaction_created=datetime.fromtimestamp(int(transaction.timestamp), tz=timezone.utc),
                transfer_transaction_hash=None,
                processed=None,
                created=_now(),
            )
            cursor.execute("""
                INSERT OR IGNORE INTO swaps (
                    uuid, type, amount, client_account_uuid,
                    deposit_transaction_hash, deposit_transaction_created, created
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                swap.uuid,
                swap.type.value,
                swap.amount,
                swap.client_account_uuid,
                swap.deposit_transaction_hash,
                swap.deposit_transaction_created.isoformat(),
                swap.created.isoformat(),
            ))
            if cursor.rowcount:
                inserted.append(swap)
            else:
                logger.debug(f"Deposit {transaction.hash} already recorded, skipped")
        return inserted

    def insert_swap_batch(self, items: List[Tuple[NormalizedTransaction, ClientAccount]]) -> List[Swap]:
        """
        Insert pending swaps for several client accounts in one transaction

        Deposits already recorded for the same swap type are skipped.

        Returns:
            Swaps actually inserted
        """
        if not items:
            return []

        with self._transaction() as cursor:
            inserted = self._insert_swap_rows(cursor, items)

        logger.info(f"✓ Recorded {len(inserted)} new swaps")
        return inserted

    def insert_swaps(self, transactions: List[NormalizedTransaction], client_account: ClientAccount) -> List[Swap]:
        return self.insert_swap_batch([(tx, client_account) for tx in transactions])

    def insert_swap(self, transaction: NormalizedTransaction, client_account: ClientAccount) -> Optional[Swap]:
        inserted = self.insert_swap_batch([(transaction, client_account)])
        return inserted[0] if inserted else None

    def update_swaps_transfer_transaction_hash(self, swap_uuids: List[str], transfer_transaction_hash: str) -> int:
        """
        Mark swaps as settled

        Writes the (comma-joined) transfer hash and processed timestamp for all
        swaps in one transaction. Already settled swaps are left untouched.

        Returns:
            Number of swaps updated
        """
        if not swap_uuids:
            return 0

        processed = _now().isoformat()
        updated = 0
        with self._transaction() as cursor:
            for start in range(0, len(swap_uuids), UPDATE_CHUNK_SIZE):
                chunk = swap_uuids[start:start + UPDATE_CHUNK_SIZE]
                placeholders = ','.join('?' for _ in chunk)
                cursor.execute(f"""
                    UPDATE swaps
                    SET transfer_transaction_hash = ?, processed = ?
                    WHERE uuid IN ({placeholders}) AND transfer_transaction_hash IS NULL
                """, (transfer_transaction_hash, processed, *chunk))
                updated += cursor.rowcount

        if updated != len(swap_uuids):
            logger.warning(f"Settled {updated} of {len(swap_uuids)} swaps with {transfer_transaction_hash}")
        return updated

    # Period totals

    def get_period_value(self, period: str) -> Decimal:
        """Accumulated USD value paid out in a period"""
        row = self.conn.execute("SELECT value FROM period_totals WHERE period = ?", (period,)).fetchone()
        return Decimal(row['value']) if row else Decimal(0)

    def add_period_value(self, period: str, value: Decimal) -> Decimal:
        """Add to a period's USD value; returns the new total"""
        with self._transaction() as cursor:
            row = cursor.execute("SELECT value FROM period_totals WHERE period = ?", (period,)).fetchone()
            total = (Decimal(row['value']) if row else Decimal(0)) + Decimal(value)
            cursor.execute("""
                INSERT INTO period_totals (period, value, updated) VALUES (?, ?, ?)
                ON CONFLICT(period) DO UPDATE SET value = excluded.value, updated = excluded.updated
            """, (period, str(total), _now().isoformat()))
        return total

    def close(self):
        """Close database connection"""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Swap ledger closed")
