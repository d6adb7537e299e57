"""
Storage Backend Module

Provides the persistence store interface for the five CRM collections and two
interchangeable implementations: SQLite (durable) and in-memory (volatile
fallback). The backend is chosen once at startup by ``open_store``.

Durable-backend failures never escape a store call: they are logged and
reported as ``False``, ``None`` or an empty list.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple, Type, TypeVar, Union
from dataclasses import fields, replace
from pathlib import Path
from contextlib import contextmanager
import sqlite3
import threading

from .config import CRMConfig
from .logging_config import get_logger, log_action
from .models import (
    Record, Customer, Account, TransactionRecord, ServiceRequest, Staff,
    RequestStatus
)


logger = get_logger("bank_crm.storage")

R = TypeVar("R", bound=Record)

# record type -> (table name, primary key column)
TABLES: Dict[Type[Record], Tuple[str, str]] = {
    Customer: ("customers", "customer_id"),
    Account: ("accounts", "account_id"),
    TransactionRecord: ("transactions", "transaction_id"),
    ServiceRequest: ("service_requests", "request_id"),
    Staff: ("staff", "staff_id"),
}

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS customers (
        customer_id VARCHAR(36) PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NOT NULL,
        kyc_details TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS accounts (
        account_id VARCHAR(36) PRIMARY KEY,
        customer_id VARCHAR(36),
        account_type TEXT,
        balance REAL,
        FOREIGN KEY(customer_id) REFERENCES customers(customer_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        transaction_id VARCHAR(36) PRIMARY KEY,
        account_id VARCHAR(36),
        transaction_type TEXT,
        amount REAL,
        transaction_date TEXT,
        FOREIGN KEY(account_id) REFERENCES accounts(account_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS service_requests (
        request_id VARCHAR(36) PRIMARY KEY,
        customer_id VARCHAR(36),
        request_type TEXT,
        description TEXT,
        status TEXT,
        assigned_staff_id VARCHAR(36),
        creation_date TEXT,
        FOREIGN KEY(customer_id) REFERENCES customers(customer_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS staff (
        staff_id VARCHAR(36) PRIMARY KEY,
        name TEXT,
        role TEXT
    )
    """,
)


class StorageError(Exception):
    """Base class for storage errors"""


class StorageUnavailableError(StorageError):
    """The durable backend could not be opened or initialized"""


class StorageWriteError(StorageError):
    """A write inside an atomic unit failed; the unit must be rolled back"""


class CRMStore(ABC):
    """Abstract interface for CRM storage backends"""

    backend_name = "abstract"
    _in_transaction = False

    # Customers

    @abstractmethod
    def add_customer(self, customer: Customer) -> bool:
        """Insert a customer; False on failure"""

    @abstractmethod
    def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Load a customer, None when absent"""

    @abstractmethod
    def list_customers(self) -> List[Customer]:
        """Load all customers"""

    # Accounts

    @abstractmethod
    def add_account(self, account: Account) -> bool:
        """Insert an account; the customer reference is not checked"""

    @abstractmethod
    def get_account(self, account_id: str) -> Optional[Account]:
        """Load an account, None when absent"""

    @abstractmethod
    def list_accounts_for_customer(self, customer_id: str) -> List[Account]:
        """Load all accounts owned by a customer"""

    @abstractmethod
    def update_account_balance(self, account_id: str, new_balance: float) -> bool:
        """Set an account balance; False when no account matched"""

    # Transactions

    @abstractmethod
    def add_transaction(self, transaction: TransactionRecord) -> bool:
        """Append a ledger entry"""

    @abstractmethod
    def list_transactions_for_account(self, account_id: str) -> List[TransactionRecord]:
        """Load all ledger entries of an account"""

    # Service requests

    @abstractmethod
    def add_service_request(self, request: ServiceRequest) -> bool:
        """Insert a service request"""

    @abstractmethod
    def get_service_request(self, request_id: str) -> Optional[ServiceRequest]:
        """Load a service request, None when absent"""

    @abstractmethod
    def list_service_requests(self) -> List[ServiceRequest]:
        """Load all service requests"""

    @abstractmethod
    def assign_staff_to_request(self, request_id: str, staff_id: str) -> bool:
        """Set the assigned staff and move the request to IN_PROGRESS"""

    # Staff

    @abstractmethod
    def add_staff(self, staff: Staff) -> bool:
        """Insert a staff member"""

    @abstractmethod
    def get_staff(self, staff_id: str) -> Optional[Staff]:
        """Load a staff member, None when absent"""

    @abstractmethod
    def list_staff(self) -> List[Staff]:
        """Load all staff members"""

    @abstractmethod
    def close(self) -> None:
        """Release the backend"""

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """
        Group writes into one all-or-nothing unit.

        Writes made inside the block are committed when it exits normally and
        discarded when it raises. Nested blocks join the outermost unit.
        """
        if self._in_transaction:
            yield
            return

        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStore(CRMStore):
    """Volatile in-process store used when SQLite is unavailable"""

    backend_name = "memory"

    def __init__(self):
        self._data: Dict[str, Dict[str, Record]] = {
            table: {} for table, _ in TABLES.values()
        }
        self._snapshot: Optional[Dict[str, Dict[str, Record]]] = None
        self._lock = threading.RLock()
        self._in_transaction = False

    def _table(self, record_type: Type[Record]) -> Dict[str, Record]:
        return self._data[TABLES[record_type][0]]

    def _add(self, record: Record) -> bool:
        with self._lock:
            table = self._table(type(record))
            if record.id in table:
                return False
            # Copy to prevent external mutation
            table[record.id] = replace(record)
            return True

    def _get(self, record_type: Type[R], record_id: str) -> Optional[R]:
        with self._lock:
            record = self._table(record_type).get(record_id)
            return replace(record) if record is not None else None

    def _all(self, record_type: Type[R], **filters) -> List[R]:
        with self._lock:
            return [
                replace(record) for record in self._table(record_type).values()
                if all(getattr(record, key) == value for key, value in filters.items())
            ]

    def add_customer(self, customer: Customer) -> bool:
        return self._add(customer)

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        return self._get(Customer, customer_id)

    def list_customers(self) -> List[Customer]:
        return self._all(Customer)

    def add_account(self, account: Account) -> bool:
        return self._add(account)

    def get_account(self, account_id: str) -> Optional[Account]:
        return self._get(Account, account_id)

    def list_accounts_for_customer(self, customer_id: str) -> List[Account]:
        return self._all(Account, customer_id=customer_id)

    def update_account_balance(self, account_id: str, new_balance: float) -> bool:
        with self._lock:
            account = self._table(Account).get(account_id)
            if account is None:
                return False
            account.balance = new_balance
            return True

    def add_transaction(self, transaction: TransactionRecord) -> bool:
        return self._add(transaction)

    def list_transactions_for_account(self, account_id: str) -> List[TransactionRecord]:
        return self._all(TransactionRecord, account_id=account_id)

    def add_service_request(self, request: ServiceRequest) -> bool:
        return self._add(request)

    def get_service_request(self, request_id: str) -> Optional[ServiceRequest]:
        return self._get(ServiceRequest, request_id)

    def list_service_requests(self) -> List[ServiceRequest]:
        return self._all(ServiceRequest)

    def assign_staff_to_request(self, request_id: str, staff_id: str) -> bool:
        with self._lock:
            request = self._table(ServiceRequest).get(request_id)
            if request is None:
                return False
            request.assigned_staff_id = staff_id
            request.status = RequestStatus.IN_PROGRESS.value
            return True

    def add_staff(self, staff: Staff) -> bool:
        return self._add(staff)

    def get_staff(self, staff_id: str) -> Optional[Staff]:
        return self._get(Staff, staff_id)

    def list_staff(self) -> List[Staff]:
        return self._all(Staff)

    def begin_transaction(self) -> None:
        """Snapshot every collection so rollback can restore it"""
        with self._lock:
            if not self._in_transaction:
                self._snapshot = {
                    table: {key: replace(record) for key, record in rows.items()}
                    for table, rows in self._data.items()
                }
                self._in_transaction = True

    def commit(self) -> None:
        with self._lock:
            self._snapshot = None
            self._in_transaction = False

    def rollback(self) -> None:
        with self._lock:
            if self._in_transaction and self._snapshot is not None:
                self._data = self._snapshot
            self._snapshot = None
            self._in_transaction = False

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStore(CRMStore):
    """SQLite storage implementation for persistence"""

    backend_name = "sqlite"

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._in_transaction = False
        self._connection: Optional[sqlite3.Connection] = None

        try:
            # DEFERRED isolation lets writes accumulate until an explicit commit
            self._connection = sqlite3.connect(
                self.db_path, check_same_thread=False, isolation_level='DEFERRED'
            )
            self._connection.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._init_tables()
        except sqlite3.Error as e:
            if self._connection is not None:
                try:
                    self._connection.close()
                except sqlite3.Error as close_error:
                    logger.debug(f"close after failed open also failed: {close_error}")
            raise StorageUnavailableError(
                f"Cannot open SQLite database at {self.db_path}: {e}"
            ) from e

    def _init_tables(self) -> None:
        """Create the five tables if they do not exist yet"""
        with self._lock:
            for statement in SCHEMA:
                self._connection.execute(statement)
            self._connection.commit()

    def _log_failure(self, operation: str, error: Exception) -> None:
        log_action(
            logger, "error", f"{operation}(SQL) error: {error}",
            action=operation, resource=self.db_path,
            extra={"error_type": type(error).__name__}
        )

    def _write(self, operation: str, sql: str, params) -> Optional[int]:
        """Run a write statement; returns rowcount, or None on failure"""
        with self._lock:
            try:
                cursor = self._connection.execute(sql, params)
                # Only commit if not in transaction
                if not self._in_transaction:
                    self._connection.commit()
                return cursor.rowcount
            except sqlite3.Error as e:
                self._log_failure(operation, e)
                if not self._in_transaction:
                    self._discard_pending()
                return None

    def _query(self, operation: str, record_type: Type[R],
               where: Optional[str] = None, value: Optional[str] = None) -> Optional[List[R]]:
        """Select records of one type; returns None on failure"""
        table, key = TABLES[record_type]
        columns = ", ".join(f.name for f in fields(record_type) if f.name != "id")
        sql = f"SELECT {key} AS id, {columns} FROM {table}"
        params: Tuple = ()
        if where is not None:
            sql += f" WHERE {where} = ?"
            params = (value,)
        sql += " ORDER BY rowid"

        with self._lock:
            try:
                rows = self._connection.execute(sql, params).fetchall()
                return [record_type.from_dict(dict(row)) for row in rows]
            except (sqlite3.Error, ValueError, TypeError) as e:
                self._log_failure(operation, e)
                return None

    def _insert(self, operation: str, record: Record) -> bool:
        table, key = TABLES[type(record)]
        data = record.to_dict()
        data[key] = data.pop("id")
        columns = ", ".join(data)
        placeholders = ", ".join(f":{name}" for name in data)
        sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"
        return self._write(operation, sql, data) is not None

    def _get(self, operation: str, record_type: Type[R], record_id: str) -> Optional[R]:
        key = TABLES[record_type][1]
        records = self._query(operation, record_type, key, record_id)
        return records[0] if records else None

    def _discard_pending(self) -> None:
        try:
            self._connection.rollback()
        except sqlite3.Error as e:
            logger.debug(f"rollback after failed write also failed: {e}")

    def add_customer(self, customer: Customer) -> bool:
        return self._insert("add_customer", customer)

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        return self._get("get_customer", Customer, customer_id)

    def list_customers(self) -> List[Customer]:
        return self._query("list_customers", Customer) or []

    def add_account(self, account: Account) -> bool:
        return self._insert("add_account", account)

    def get_account(self, account_id: str) -> Optional[Account]:
        return self._get("get_account", Account, account_id)

    def list_accounts_for_customer(self, customer_id: str) -> List[Account]:
        return self._query("list_accounts_for_customer", Account, "customer_id", customer_id) or []

    def update_account_balance(self, account_id: str, new_balance: float) -> bool:
        updated = self._write(
            "update_account_balance",
            "UPDATE accounts SET balance = ? WHERE account_id = ?",
            (new_balance, account_id)
        )
        return bool(updated)

    def add_transaction(self, transaction: TransactionRecord) -> bool:
        return self._insert("add_transaction", transaction)

    def list_transactions_for_account(self, account_id: str) -> List[TransactionRecord]:
        return self._query(
            "list_transactions_for_account", TransactionRecord, "account_id", account_id
        ) or []

    def add_service_request(self, request: ServiceRequest) -> bool:
        return self._insert("add_service_request", request)

    def get_service_request(self, request_id: str) -> Optional[ServiceRequest]:
        return self._get("get_service_request", ServiceRequest, request_id)

    def list_service_requests(self) -> List[ServiceRequest]:
        return self._query("list_service_requests", ServiceRequest) or []

    def assign_staff_to_request(self, request_id: str, staff_id: str) -> bool:
        updated = self._write(
            "assign_staff_to_request",
            "UPDATE service_requests SET assigned_staff_id = ?, status = ? WHERE request_id = ?",
            (staff_id, RequestStatus.IN_PROGRESS.value, request_id)
        )
        return bool(updated)

    def add_staff(self, staff: Staff) -> bool:
        return self._insert("add_staff", staff)

    def get_staff(self, staff_id: str) -> Optional[Staff]:
        return self._get("get_staff", Staff, staff_id)

    def list_staff(self) -> List[Staff]:
        return self._query("list_staff", Staff) or []

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            if not self._in_transaction:
                # isolation_level='DEFERRED' opens the transaction on the first write;
                # we only track the state
                self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._in_transaction:
                try:
                    self._connection.commit()
                except sqlite3.Error as e:
                    self._log_failure("commit", e)
                    raise StorageWriteError(f"commit failed: {e}") from e
                finally:
                    self._in_transaction = False

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            self._in_transaction = False
            self._discard_pending()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            try:
                self._connection.close()
            except sqlite3.Error as e:
                self._log_failure("close", e)


def open_store(config: CRMConfig) -> CRMStore:
    """
    Select the storage backend for this process.

    Tries SQLite at ``config.database_path`` first and falls back to
    ``InMemoryStore`` when it cannot be opened. The choice is logged once and
    never revisited.
    """
    if config.use_durable_store:
        try:
            store = SQLiteStore(config.database_path)
        except StorageUnavailableError as e:
            log_action(
                logger, "warning",
                "SQLite unavailable or connection failed. Running in in-memory simulation mode.",
                action="open_store", resource=config.database_path,
                extra={"backend": InMemoryStore.backend_name, "reason": str(e)}
            )
        else:
            log_action(
                logger, "info", f"Connected to SQLite DB at {config.database_path}",
                action="open_store", resource=config.database_path,
                extra={"backend": store.backend_name}
            )
            return store
    else:
        log_action(
            logger, "info", "Durable store disabled. Running in in-memory simulation mode.",
            action="open_store", extra={"backend": InMemoryStore.backend_name}
        )

    return InMemoryStore()
