"""
Domain Models

Entity records held by the persistence store. Each record converts to and
from a flat dictionary; datetimes travel as ISO-8601 strings.
"""

from dataclasses import dataclass, asdict, fields
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


class TransactionType(str, Enum):
    """Ledger entry tags. Stored as plain strings, so unknown tags still load."""
    DEPOSIT = "DEPOSIT"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"


class RequestStatus(str, Enum):
    """Service request lifecycle: PENDING -> IN_PROGRESS"""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"


@dataclass
class Record:
    """Base class for all stored records"""
    id: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Record':
        """Create instance from dictionary"""
        data = dict(data)
        for f in fields(cls):
            if f.type in (datetime, 'datetime') and isinstance(data.get(f.name), str):
                data[f.name] = datetime.fromisoformat(data[f.name])
        return cls(**data)


@dataclass
class Customer(Record):
    name: str
    email: str
    kyc_details: str


@dataclass
class Account(Record):
    customer_id: str
    account_type: str
    balance: float


@dataclass
class TransactionRecord(Record):
    """Append-only ledger entry; amount is always a positive magnitude"""
    account_id: str
    transaction_type: str
    amount: float
    transaction_date: datetime


@dataclass
class ServiceRequest(Record):
    customer_id: str
    request_type: str
    description: str
    status: str
    assigned_staff_id: Optional[str]
    creation_date: datetime


@dataclass
class Staff(Record):
    name: str
    role: str
