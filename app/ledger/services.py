"""
Ledger service layer for financial operations.

This module provides the LedgerService class which encapsulates all
business logic for ledger operations. All ledger writes go through this
service to ensure proper validation, transaction handling, and audit trails.

Usage:
    from ledger.services import LedgerService

    LedgerService.open_user_account("ag_alice", referral_code="ALICE1")
    LedgerService.deposit("ag_alice", Decimal("100"), idempotency_key="dep:1")

    # Lock into the escrow pool and pay back out
    LedgerService.lock_funds("ag_alice", Decimal("10"), idempotency_key="esc_x:lock")
    LedgerService.pay_out("ag_bob", Decimal("9.9"), idempotency_key="esc_x:release")
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.db.models import Q

from .exceptions import AccountNotFound, InactiveAccount, InsufficientBalance, LedgerError
from .models import AccountType, EntryType, LedgerAccount, LedgerEntry
from .types import Money, RecordEntryParams

logger = logging.getLogger(__name__)


class LedgerService:
    """
    Service class for ledger operations.

    Key features:
    - Atomic transactions for multi-entry operations
    - Idempotency via unique keys (safe to retry)
    - Balance validation before debits
    - Account locking to prevent race conditions

    All methods are static - no instance state is maintained.
    """

    # =========================================================================
    # Accounts
    # =========================================================================

    @staticmethod
    def get_or_create_account(
        account_type: AccountType | str,
        owner_id: str | None = None,
        currency: str = "usd",
        allow_negative: bool = False,
    ) -> LedgerAccount:
        """
        Get existing account or create new one.

        Looks up an account by (type, owner_id, currency). If not found,
        creates a new account with the specified parameters.
        """
        account, _ = LedgerAccount.objects.get_or_create(
            type=account_type,
            owner_id=owner_id,
            currency=currency,
            defaults={"allow_negative": allow_negative},
        )
        return account

    @staticmethod
    def escrow_pool(currency: str = "usd") -> LedgerAccount:
        """Platform pool that holds locked escrow funds."""
        return LedgerService.get_or_create_account(AccountType.ESCROW_POOL, currency=currency)

    @staticmethod
    def external_funding(currency: str = "usd") -> LedgerAccount:
        """Source account for deposits; allowed to go negative."""
        return LedgerService.get_or_create_account(
            AccountType.EXTERNAL_FUNDING,
            currency=currency,
            allow_negative=True,
        )

    @staticmethod
    def open_user_account(
        owner_id: str,
        referral_code: str | None = None,
        referred_by: str | None = None,
        currency: str = "usd",
    ) -> LedgerAccount:
        """
        Open (or return) a participant balance account.

        Args:
            owner_id: Participant account identifier
            referral_code: Code others may quote to name this participant as referrer
            referred_by: Owner id of the participant who referred this one
            currency: ISO 4217 currency code

        Returns:
            The existing or newly created LedgerAccount

        Raises:
            LedgerError: If the account would refer itself or the code is taken
        """
        if referred_by is not None and referred_by == owner_id:
            raise LedgerError(
                f"Account {owner_id} cannot refer itself",
                details={"owner_id": owner_id},
            )
        try:
            with transaction.atomic():
                account, _ = LedgerAccount.objects.get_or_create(
                    type=AccountType.USER_BALANCE,
                    owner_id=owner_id,
                    currency=currency,
                    defaults={
                        "referral_code": referral_code,
                        "referred_by": referred_by,
                    },
                )
        except IntegrityError as e:
            raise LedgerError(
                f"Referral code {referral_code} is already in use",
                details={"referral_code": referral_code},
            ) from e
        return account

    @staticmethod
    def get_account(account_id: uuid.UUID) -> LedgerAccount:
        """
        Get account by ID.

        Raises:
            AccountNotFound: If account doesn't exist
        """
        try:
            return LedgerAccount.objects.get(id=account_id)
        except LedgerAccount.DoesNotExist:
            raise AccountNotFound(
                f"Account {account_id} not found",
                details={"account_id": str(account_id)},
            )

    @staticmethod
    def get_account_by_owner(
        account_type: AccountType | str,
        owner_id: str,
        currency: str = "usd",
    ) -> LedgerAccount | None:
        """Get account by type, owner, and currency, or None if missing."""
        try:
            return LedgerAccount.objects.get(
                type=account_type,
                owner_id=owner_id,
                currency=currency,
            )
        except LedgerAccount.DoesNotExist:
            return None

    @staticmethod
    def get_user_account(owner_id: str, currency: str = "usd") -> LedgerAccount | None:
        """Participant balance account for ``owner_id``, or None."""
        return LedgerService.get_account_by_owner(
            AccountType.USER_BALANCE,
            owner_id=owner_id,
            currency=currency,
        )

    @staticmethod
    def find_by_referral_code(code: str) -> LedgerAccount | None:
        """Active participant account whose referral code is ``code``."""
        return LedgerAccount.objects.filter(
            type=AccountType.USER_BALANCE,
            referral_code=code,
            is_active=True,
        ).first()

    @staticmethod
    def deactivate_account(account_id: uuid.UUID) -> LedgerAccount:
        """
        Mark an account inactive.

        Inactive accounts cannot be used in new entries but
        their history is preserved.
        """
        account = LedgerService.get_account(account_id)
        account.is_active = False
        account.save(update_fields=["is_active"])
        return account

    # =========================================================================
    # Entries
    # =========================================================================

    @staticmethod
    def _validate_account_for_debit(account: LedgerAccount, amount: Decimal) -> None:
        """
        Validate that an account can be debited.

        Raises:
            InactiveAccount: If account is inactive
            InsufficientBalance: If account lacks funds
        """
        if not account.is_active:
            raise InactiveAccount(
                f"Account {account.id} is inactive",
                details={"account_id": str(account.id)},
            )

        if not account.allow_negative:
            current_balance = account.get_balance()
            if current_balance < amount:
                raise InsufficientBalance(
                    account_id=account.id,
                    required=amount,
                    available=current_balance,
                )

    @staticmethod
    def _validate_account_for_credit(account: LedgerAccount) -> None:
        """
        Validate that an account can be credited.

        Raises:
            InactiveAccount: If account is inactive
        """
        if not account.is_active:
            raise InactiveAccount(
                f"Account {account.id} is inactive",
                details={"account_id": str(account.id)},
            )

    @staticmethod
    def record_entry(params: RecordEntryParams) -> LedgerEntry:
        """
        Record a single ledger entry.

        Idempotent - safe to call multiple times with the same idempotency_key.
        If an entry with the same key already exists, returns that entry.
        """
        return LedgerService.record_entries([params])[0]

    @staticmethod
    def record_entries(entries: list[RecordEntryParams]) -> list[LedgerEntry]:
        """
        Record multiple ledger entries atomically.

        All entries succeed or all fail. Existing entries (matched by
        idempotency_key) are returned without modification.

        Entries are processed sequentially, so balance changes from
        earlier entries in the batch affect validation of later entries.

        Raises:
            AccountNotFound: If any account doesn't exist
            InactiveAccount: If any account is inactive
            InsufficientBalance: If any debit account lacks funds
        """
        if not entries:
            return []

        results: list[LedgerEntry] = []

        with transaction.atomic():
            account_ids: set[uuid.UUID] = set()
            for params in entries:
                account_ids.add(params.debit_account_id)
                account_ids.add(params.credit_account_id)

            # Lock accounts in consistent order to prevent deadlocks
            accounts = {
                acc.id: acc
                for acc in LedgerAccount.objects.filter(id__in=account_ids)
                .select_for_update()
                .order_by("id")
            }

            for account_id in account_ids:
                if account_id not in accounts:
                    raise AccountNotFound(
                        f"Account {account_id} not found",
                        details={"account_id": str(account_id)},
                    )

            for params in entries:
                debit_account = accounts[params.debit_account_id]
                credit_account = accounts[params.credit_account_id]

                # Idempotency check comes before validation: a replayed
                # debit must not fail on the balance it already moved
                existing = LedgerEntry.objects.filter(
                    idempotency_key=params.idempotency_key
                ).first()
                if existing is not None:
                    logger.info(
                        "Ledger entry replayed",
                        extra={"idempotency_key": params.idempotency_key},
                    )
                    results.append(existing)
                    continue

                LedgerService._validate_account_for_debit(debit_account, params.amount)
                LedgerService._validate_account_for_credit(credit_account)

                try:
                    with transaction.atomic():
                        entry = LedgerEntry.objects.create(
                            idempotency_key=params.idempotency_key,
                            debit_account=debit_account,
                            credit_account=credit_account,
                            amount=params.amount,
                            currency=debit_account.currency,
                            entry_type=params.entry_type,
                            reference_id=params.reference_id,
                            reference_type=params.reference_type,
                            description=params.description,
                            metadata=params.metadata or {},
                            created_by=params.created_by,
                        )
                except IntegrityError:
                    # Another process created it between our check and create
                    entry = LedgerEntry.objects.get(idempotency_key=params.idempotency_key)

                results.append(entry)

        return results

    @staticmethod
    def deposit(
        owner_id: str,
        amount: Decimal,
        idempotency_key: str,
        description: str | None = None,
    ) -> LedgerEntry:
        """
        Credit a participant balance from the external funding account.

        Raises:
            AccountNotFound: If the participant has no balance account
        """
        account = LedgerService._require_user_account(owner_id)
        return LedgerService.record_entry(
            RecordEntryParams(
                debit_account_id=LedgerService.external_funding(account.currency).id,
                credit_account_id=account.id,
                amount=amount,
                entry_type=EntryType.DEPOSIT,
                idempotency_key=idempotency_key,
                description=description,
                created_by="ledger_service",
            )
        )

    @staticmethod
    def lock_funds(
        owner_id: str,
        amount: Decimal,
        idempotency_key: str,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> LedgerEntry:
        """
        Move funds from a participant balance into the escrow pool.

        Raises:
            AccountNotFound: If the participant has no balance account
            InsufficientBalance: If the participant cannot cover ``amount``
        """
        account = LedgerService._require_user_account(owner_id)
        return LedgerService.record_entry(
            RecordEntryParams(
                debit_account_id=account.id,
                credit_account_id=LedgerService.escrow_pool(account.currency).id,
                amount=amount,
                entry_type=EntryType.ESCROW_LOCK,
                idempotency_key=idempotency_key,
                reference_type="escrow" if reference_id else None,
                reference_id=reference_id,
                description=description,
                created_by="escrow_service",
            )
        )

    @staticmethod
    def pay_out(
        owner_id: str,
        amount: Decimal,
        idempotency_key: str,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> LedgerEntry:
        """
        Pay funds from the escrow pool into a participant balance.

        Raises:
            AccountNotFound: If the participant has no balance account
            InsufficientBalance: If the pool cannot cover ``amount``
        """
        account = LedgerService._require_user_account(owner_id)
        return LedgerService.record_entry(
            RecordEntryParams(
                debit_account_id=LedgerService.escrow_pool(account.currency).id,
                credit_account_id=account.id,
                amount=amount,
                entry_type=EntryType.ESCROW_PAYOUT,
                idempotency_key=idempotency_key,
                reference_type="escrow" if reference_id else None,
                reference_id=reference_id,
                description=description,
                created_by="escrow_service",
            )
        )

    @staticmethod
    def _require_user_account(owner_id: str) -> LedgerAccount:
        account = LedgerService.get_user_account(owner_id)
        if account is None:
            raise AccountNotFound(
                f"No balance account for {owner_id}",
                details={"owner_id": owner_id},
            )
        return account

    # =========================================================================
    # Queries
    # =========================================================================

    @staticmethod
    def get_balance(account_id: uuid.UUID) -> Money:
        """
        Get current balance for an account.

        Raises:
            AccountNotFound: If account doesn't exist
        """
        account = LedgerService.get_account(account_id)
        return Money(amount=account.get_balance(), currency=account.currency)

    @staticmethod
    def get_entries_for_account(
        account_id: uuid.UUID,
        limit: int = 100,
        offset: int = 0,
    ) -> list[LedgerEntry]:
        """Entries where the account is debited or credited, newest first."""
        return list(
            LedgerEntry.objects.filter(
                Q(debit_account_id=account_id) | Q(credit_account_id=account_id)
            ).order_by("-created_at")[offset : offset + limit]
        )

    @staticmethod
    def get_entries_by_reference(
        reference_type: str,
        reference_id: str,
    ) -> list[LedgerEntry]:
        """
        Get all entries for a given reference.

        Useful for auditing all money movement of one escrow.

        Returns:
            List of LedgerEntry objects ordered by created_at ascending
        """
        return list(
            LedgerEntry.objects.filter(
                reference_type=reference_type,
                reference_id=reference_id,
            ).order_by("created_at")
        )
