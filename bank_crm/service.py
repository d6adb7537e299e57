"""
Ledger Service Module

Business rules on top of the persistence store: customer onboarding, account
opening with an initial deposit, fund transfers with paired ledger entries,
and service request handling.

Every mutating operation returns an ``OperationResult``; nothing raised by the
store escapes this layer.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional
import uuid

from .models import (
    Customer, Account, TransactionRecord, ServiceRequest, Staff,
    TransactionType, RequestStatus
)
from .storage import CRMStore, StorageWriteError
from .logging_config import get_logger, log_action


logger = get_logger("bank_crm.service")


class Outcome(Enum):
    """How an operation ended"""
    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    STORAGE_FAILURE = "storage_failure"


@dataclass
class OperationResult:
    """Outcome of a ledger operation, with the affected entity on success"""
    outcome: Outcome
    message: str
    value: Optional[Any] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    def __bool__(self) -> bool:
        return self.ok


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class LedgerService:
    """
    Orchestrates store calls into customer, account and service request
    workflows, enforcing the cross-entity rules the store does not.
    """

    def __init__(self, store: CRMStore):
        self.store = store

    # Results

    def _success(self, action: str, message: str, value: Any,
                 resource: Optional[str] = None) -> OperationResult:
        log_action(logger, "info", message, action=action, resource=resource)
        return OperationResult(Outcome.OK, message, value)

    def _rejected(self, action: str, outcome: Outcome, message: str,
                  resource: Optional[str] = None) -> OperationResult:
        level = "error" if outcome is Outcome.STORAGE_FAILURE else "warning"
        log_action(
            logger, level, message, action=action, resource=resource,
            extra={"outcome": outcome.value}
        )
        return OperationResult(outcome, message)

    # Customers

    def add_customer(self, name: str, email: str, kyc_details: str) -> OperationResult:
        """Register a customer. Email is not checked for uniqueness."""
        customer = Customer(id=_new_id(), name=name, email=email, kyc_details=kyc_details)
        if not self.store.add_customer(customer):
            return self._rejected("add_customer", Outcome.STORAGE_FAILURE,
                                  "Failed to add customer.")
        return self._success("add_customer", f"Added customer {customer.id}", customer,
                             resource=f"customer:{customer.id}")

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        return self.store.get_customer(customer_id)

    def list_customers(self) -> List[Customer]:
        return self.store.list_customers()

    # Accounts

    def create_account(self, customer_id: str, account_type: str,
                       initial_deposit: float) -> OperationResult:
        """
        Open an account for an existing customer.

        The account starts at ``initial_deposit``. A positive deposit is also
        recorded as one DEPOSIT ledger entry; zero or negative deposits leave
        the ledger untouched. Account and entry are written as one unit.
        """
        if self.store.get_customer(customer_id) is None:
            return self._rejected("create_account", Outcome.NOT_FOUND,
                                  f"Customer not found with id: {customer_id}",
                                  resource=f"customer:{customer_id}")

        account = Account(
            id=_new_id(),
            customer_id=customer_id,
            account_type=account_type,
            balance=initial_deposit
        )

        try:
            with self.store.atomic():
                if not self.store.add_account(account):
                    raise StorageWriteError(f"account {account.id} not written")
                if initial_deposit > 0:
                    deposit = TransactionRecord(
                        id=_new_id(),
                        account_id=account.id,
                        transaction_type=TransactionType.DEPOSIT.value,
                        amount=initial_deposit,
                        transaction_date=_now()
                    )
                    if not self.store.add_transaction(deposit):
                        raise StorageWriteError(f"deposit for {account.id} not written")
        except StorageWriteError as e:
            return self._rejected("create_account", Outcome.STORAGE_FAILURE,
                                  f"Failed to create account: {e}",
                                  resource=f"customer:{customer_id}")

        return self._success("create_account", f"Account created: {account.id}", account,
                             resource=f"account:{account.id}")

    def get_account(self, account_id: str) -> Optional[Account]:
        return self.store.get_account(account_id)

    def list_accounts_for_customer(self, customer_id: str) -> List[Account]:
        return self.store.list_accounts_for_customer(customer_id)

    def list_transactions_for_account(self, account_id: str) -> List[TransactionRecord]:
        return self.store.list_transactions_for_account(account_id)

    def transfer_funds(self, from_account_id: str, to_account_id: str,
                       amount: float) -> OperationResult:
        """
        Move ``amount`` between two accounts.

        Both balance updates and the TRANSFER_OUT / TRANSFER_IN entries are
        written as one unit: if any write fails, none of them persist.
        """
        if not amount > 0:
            return self._rejected("transfer_funds", Outcome.INVALID_INPUT,
                                  "Amount must be positive.")

        source = self.store.get_account(from_account_id)
        destination = self.store.get_account(to_account_id)
        if source is None or destination is None:
            missing = from_account_id if source is None else to_account_id
            return self._rejected("transfer_funds", Outcome.NOT_FOUND,
                                  "One of the accounts not found.",
                                  resource=f"account:{missing}")

        if source.balance < amount:
            return self._rejected("transfer_funds", Outcome.INSUFFICIENT_FUNDS,
                                  "Insufficient balance.",
                                  resource=f"account:{from_account_id}")

        new_source_balance = source.balance - amount
        # A self-transfer credits the already-debited balance
        new_destination_balance = (
            new_source_balance if from_account_id == to_account_id else destination.balance
        ) + amount

        timestamp = _now()
        entries = [
            TransactionRecord(
                id=_new_id(),
                account_id=from_account_id,
                transaction_type=TransactionType.TRANSFER_OUT.value,
                amount=amount,
                transaction_date=timestamp
            ),
            TransactionRecord(
                id=_new_id(),
                account_id=to_account_id,
                transaction_type=TransactionType.TRANSFER_IN.value,
                amount=amount,
                transaction_date=timestamp
            ),
        ]

        try:
            with self.store.atomic():
                if not self.store.update_account_balance(from_account_id, new_source_balance):
                    raise StorageWriteError(f"debit of {from_account_id} failed")
                if not self.store.update_account_balance(to_account_id, new_destination_balance):
                    raise StorageWriteError(f"credit of {to_account_id} failed")
                for entry in entries:
                    if not self.store.add_transaction(entry):
                        raise StorageWriteError(f"ledger entry for {entry.account_id} failed")
        except StorageWriteError as e:
            return self._rejected("transfer_funds", Outcome.STORAGE_FAILURE,
                                  f"Transfer failed during update: {e}",
                                  resource=f"account:{from_account_id}")

        return self._success(
            "transfer_funds",
            f"Transferred {amount} from {from_account_id} to {to_account_id}",
            entries,
            resource=f"account:{from_account_id}"
        )

    # Service requests

    def raise_service_request(self, customer_id: str, request_type: str,
                              description: str) -> OperationResult:
        """Open a PENDING, unassigned request for an existing customer"""
        if self.store.get_customer(customer_id) is None:
            return self._rejected("raise_service_request", Outcome.NOT_FOUND,
                                  "Customer not found.",
                                  resource=f"customer:{customer_id}")

        request = ServiceRequest(
            id=_new_id(),
            customer_id=customer_id,
            request_type=request_type,
            description=description,
            status=RequestStatus.PENDING.value,
            assigned_staff_id=None,
            creation_date=_now()
        )
        if not self.store.add_service_request(request):
            return self._rejected("raise_service_request", Outcome.STORAGE_FAILURE,
                                  "Failed to create service request.",
                                  resource=f"customer:{customer_id}")
        return self._success("raise_service_request",
                             f"Service request created: {request.id}", request,
                             resource=f"request:{request.id}")

    def list_service_requests(self) -> List[ServiceRequest]:
        return self.store.list_service_requests()

    def assign_staff_to_request(self, request_id: str, staff_id: str) -> OperationResult:
        """
        Assign a staff member and move the request to IN_PROGRESS.

        Neither the staff id nor the current status is checked; a request
        already in progress is simply reassigned.
        """
        if self.store.get_service_request(request_id) is None:
            return self._rejected("assign_staff_to_request", Outcome.NOT_FOUND,
                                  "Failed to assign staff (check IDs).",
                                  resource=f"request:{request_id}")

        if not self.store.assign_staff_to_request(request_id, staff_id):
            return self._rejected("assign_staff_to_request", Outcome.STORAGE_FAILURE,
                                  "Failed to assign staff.",
                                  resource=f"request:{request_id}")

        return self._success(
            "assign_staff_to_request",
            f"Assigned staff {staff_id} to request {request_id}",
            self.store.get_service_request(request_id),
            resource=f"request:{request_id}"
        )

    # Staff

    def add_staff(self, name: str, role: str) -> OperationResult:
        staff = Staff(id=_new_id(), name=name, role=role)
        if not self.store.add_staff(staff):
            return self._rejected("add_staff", Outcome.STORAGE_FAILURE, "Failed to add staff.")
        return self._success("add_staff", f"Added staff {staff.id}", staff,
                             resource=f"staff:{staff.id}")

    def list_staff(self) -> List[Staff]:
        return self.store.list_staff()
