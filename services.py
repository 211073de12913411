from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlalchemy import Select, case, delete, func, select, update
from sqlalchemy.orm import Session, joinedload

from rapidfuzz.distance import Levenshtein

from config import get_settings
from csv_utils import map_rows, mapping_progress, missing_required_fields, validate_mapping
from models import UNCATEGORIZED, Account, Category, Transaction
from periods import Period
from schemas import (
    AccountIn,
    CategoryIn,
    CategoryTotal,
    DayTotals,
    ImportIn,
    ImportPreviewOut,
    PeriodOut,
    SummaryOut,
    TransactionIn,
    TransactionOut,
)


logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class CategoryAmbiguous(ValueError):
    pass


def owned_transactions(user_id: str) -> Select:
    """Transactions whose account belongs to ``user_id``."""
    return (
        select(Transaction)
        .join(Account, Account.id == Transaction.account_id)
        .where(Account.user_id == user_id)
    )


def owned_transaction_ids(user_id: str) -> Select:
    return (
        select(Transaction.id)
        .join(Account, Account.id == Transaction.account_id)
        .where(Account.user_id == user_id)
    )


def percentage_change(current: int, previous: int) -> float:
    if previous == 0:
        return 0.0 if current == 0 else 100.0
    return (current - previous) / previous * 100


class AccountService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name, Account.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.scalar(
            select(Account).where(
                Account.user_id == self.user_id, Account.id == account_id
            )
        )
        if not account:
            raise NotFoundError("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(user_id=self.user_id, name=data.name.strip())
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        logger.info(f"account_create: user={self.user_id} id={account.id}")
        return account

    def update(self, account_id: int, data: AccountIn) -> Account:
        account = self.get(account_id)
        account.name = data.name.strip()
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> int:
        account = self.get(account_id)
        self.session.execute(
            delete(Transaction).where(Transaction.account_id == account.id)
        )
        self.session.delete(account)
        self.session.commit()
        logger.info(f"account_delete: user={self.user_id} id={account_id}")
        return account_id

    def bulk_delete(self, ids: Iterable[int]) -> list[int]:
        owned = self.session.scalars(
            select(Account.id).where(
                Account.user_id == self.user_id, Account.id.in_(list(ids))
            )
        ).all()
        if not owned:
            return []
        self.session.execute(
            delete(Transaction).where(Transaction.account_id.in_(owned))
        )
        self.session.execute(delete(Account).where(Account.id.in_(owned)))
        self.session.commit()
        logger.info(f"account_bulk_delete: user={self.user_id} count={len(owned)}")
        return list(owned)


class CategoryService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name, Category.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id, Category.id == category_id
            )
        )
        if not category:
            raise NotFoundError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        category = Category(user_id=self.user_id, name=data.name.strip())
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_create: user={self.user_id} id={category.id}")
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        category.name = data.name.strip()
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> int:
        category = self.get(category_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.category_id == category.id)
            .values(category_id=None)
        )
        self.session.delete(category)
        self.session.commit()
        logger.info(f"category_delete: user={self.user_id} id={category_id}")
        return category_id

    def bulk_delete(self, ids: Iterable[int]) -> list[int]:
        owned = self.session.scalars(
            select(Category.id).where(
                Category.user_id == self.user_id, Category.id.in_(list(ids))
            )
        ).all()
        if not owned:
            return []
        self.session.execute(
            update(Transaction)
            .where(Transaction.category_id.in_(owned))
            .values(category_id=None)
        )
        self.session.execute(delete(Category).where(Category.id.in_(owned)))
        self.session.commit()
        logger.info(f"category_bulk_delete: user={self.user_id} count={len(owned)}")
        return list(owned)

    def resolve(self, name: str) -> Category:
        """
        Find the user's category for an imported name: exact case-insensitive
        match first, then a unique match within one edit. Creates the category
        (flushed, not committed) when nothing is close enough.
        """
        # Category.name holds at most 100 characters.
        clean_name = name.strip()[:100].strip()
        if not clean_name:
            raise ValueError("Category name cannot be empty")
        input_lower = clean_name.lower()

        categories = self.list_all()
        for category in categories:
            if category.name.strip().lower() == input_lower:
                return category

        best_distance: Optional[int] = None
        best: list[Category] = []
        if len(input_lower) > 3:
            for category in categories:
                dist = int(
                    Levenshtein.distance(input_lower, category.name.strip().lower())
                )
                if best_distance is None or dist < best_distance:
                    best_distance = dist
                    best = [category]
                elif dist == best_distance:
                    best.append(category)

        if best_distance is not None and best_distance <= 1:
            if len(best) > 1:
                options = ", ".join(sorted({c.name for c in best}))
                raise CategoryAmbiguous(
                    f"Category '{clean_name}' is ambiguous; matches: {options}"
                )
            return best[0]

        category = Category(user_id=self.user_id, name=clean_name)
        self.session.add(category)
        self.session.flush()
        return category


class TransactionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def to_out(txn: Transaction) -> TransactionOut:
        return TransactionOut(
            id=txn.id,
            amount=txn.amount,
            date=txn.date,
            payee=txn.payee,
            notes=txn.notes,
            account_id=txn.account_id,
            account=txn.account.name,
            category_id=txn.category_id,
            category=txn.category.name if txn.category else None,
        )

    def _check_references(
        self, account_ids: set[int], category_ids: set[int]
    ) -> None:
        if account_ids:
            owned = set(
                self.session.scalars(
                    select(Account.id).where(
                        Account.user_id == self.user_id,
                        Account.id.in_(account_ids),
                    )
                ).all()
            )
            if owned != account_ids:
                raise NotFoundError("Account not found")
        if category_ids:
            owned = set(
                self.session.scalars(
                    select(Category.id).where(
                        Category.user_id == self.user_id,
                        Category.id.in_(category_ids),
                    )
                ).all()
            )
            if owned != category_ids:
                raise NotFoundError("Category not found")

    def list(self, period: Period, account_id: Optional[int] = None) -> list[Transaction]:
        stmt = (
            owned_transactions(self.user_id)
            .options(joinedload(Transaction.account), joinedload(Transaction.category))
            .where(Transaction.date.between(period.start, period.end))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if account_id:
            stmt = stmt.where(Transaction.account_id == account_id)
        return self.session.scalars(stmt).all()

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            owned_transactions(self.user_id)
            .options(joinedload(Transaction.account), joinedload(Transaction.category))
            .where(Transaction.id == transaction_id)
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        category_ids = {data.category_id} if data.category_id is not None else set()
        self._check_references({data.account_id}, category_ids)
        txn = Transaction(
            amount=data.amount,
            date=data.date,
            payee=data.payee.strip(),
            notes=data.notes,
            account_id=data.account_id,
            category_id=data.category_id,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(f"transaction_create: user={self.user_id} id={txn.id}")
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        category_ids = {data.category_id} if data.category_id is not None else set()
        self._check_references({data.account_id}, category_ids)
        txn.amount = data.amount
        txn.date = data.date
        txn.payee = data.payee.strip()
        txn.notes = data.notes
        txn.account_id = data.account_id
        txn.category_id = data.category_id
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> int:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_delete: user={self.user_id} id={transaction_id}")
        return transaction_id

    def bulk_delete(self, ids: Iterable[int]) -> list[int]:
        owned = self.session.scalars(
            owned_transaction_ids(self.user_id).where(Transaction.id.in_(list(ids)))
        ).all()
        if not owned:
            return []
        self.session.execute(delete(Transaction).where(Transaction.id.in_(owned)))
        self.session.commit()
        logger.info(
            f"transaction_bulk_delete: user={self.user_id} count={len(owned)}"
        )
        return list(owned)

    def bulk_create(self, items: list[TransactionIn]) -> list[Transaction]:
        if not items:
            return []
        self._check_references(
            {item.account_id for item in items},
            {item.category_id for item in items if item.category_id is not None},
        )
        txns = [
            Transaction(
                amount=item.amount,
                date=item.date,
                payee=item.payee.strip(),
                notes=item.notes,
                account_id=item.account_id,
                category_id=item.category_id,
            )
            for item in items
        ]
        self.session.add_all(txns)
        self.session.commit()
        for txn in txns:
            self.session.refresh(txn)
        logger.info(
            f"transaction_bulk_create: user={self.user_id} count={len(txns)}"
        )
        return txns


class SummaryService:
    def __init__(
        self,
        session: Session,
        user_id: str,
        top_categories: Optional[int] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        if top_categories is None:
            top_categories = get_settings().top_categories
        self.top_categories = top_categories

    def _scoped(
        self, stmt: Select, period: Period, account_id: Optional[int]
    ) -> Select:
        # The ownership join must be present on every summary query.
        stmt = stmt.join(Account, Account.id == Transaction.account_id).where(
            Account.user_id == self.user_id,
            Transaction.date.between(period.start, period.end),
        )
        if account_id:
            stmt = stmt.where(Transaction.account_id == account_id)
        return stmt

    @staticmethod
    def _income_expr():
        return func.coalesce(
            func.sum(
                case((Transaction.amount > 0, Transaction.amount), else_=0)
            ),
            0,
        )

    @staticmethod
    def _expenses_expr():
        return func.coalesce(
            func.sum(
                case((Transaction.amount < 0, func.abs(Transaction.amount)), else_=0)
            ),
            0,
        )

    def totals(
        self, period: Period, account_id: Optional[int] = None
    ) -> tuple[int, int, int]:
        stmt = select(
            self._income_expr().label("income"),
            self._expenses_expr().label("expenses"),
        ).select_from(Transaction)
        row = self.session.execute(self._scoped(stmt, period, account_id)).one()
        income = int(row.income or 0)
        expenses = int(row.expenses or 0)
        return income, expenses, income - expenses

    def daily(
        self, period: Period, account_id: Optional[int] = None
    ) -> list[DayTotals]:
        stmt = (
            select(
                Transaction.date.label("day"),
                self._income_expr().label("income"),
                self._expenses_expr().label("expenses"),
            )
            .select_from(Transaction)
        )
        stmt = self._scoped(stmt, period, account_id).group_by(Transaction.date)
        by_day = {
            row.day: (int(row.income or 0), int(row.expenses or 0))
            for row in self.session.execute(stmt)
        }
        return [
            DayTotals(
                date=day,
                income=by_day.get(day, (0, 0))[0],
                expenses=by_day.get(day, (0, 0))[1],
            )
            for day in period.each_day()
        ]

    def top_spending_categories(
        self, period: Period, account_id: Optional[int] = None
    ) -> list[CategoryTotal]:
        stmt = (
            select(
                Category.name.label("name"),
                func.coalesce(func.sum(func.abs(Transaction.amount)), 0).label("total"),
            )
            .select_from(Transaction)
            .outerjoin(Category, Category.id == Transaction.category_id)
        )
        stmt = (
            self._scoped(stmt, period, account_id)
            .where(Transaction.amount < 0)
            .group_by(Category.name)
        )
        totals: dict[str, int] = {}
        for row in self.session.execute(stmt):
            name = row.name or UNCATEGORIZED
            totals[name] = totals.get(name, 0) + int(row.total or 0)
        ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
        return [
            CategoryTotal(name=name, value=value)
            for name, value in ranked[: self.top_categories]
        ]

    def summary(self, period: Period, account_id: Optional[int] = None) -> SummaryOut:
        previous = period.previous()
        income, expenses, remaining = self.totals(period, account_id)
        prev_income, prev_expenses, prev_remaining = self.totals(previous, account_id)
        return SummaryOut(
            period=PeriodOut(start=period.start, end=period.end),
            previous_period=PeriodOut(start=previous.start, end=previous.end),
            income_amount=income,
            income_change=percentage_change(income, prev_income),
            expenses_amount=expenses,
            expenses_change=percentage_change(expenses, prev_expenses),
            remaining_amount=remaining,
            remaining_change=percentage_change(remaining, prev_remaining),
            categories=self.top_spending_categories(period, account_id),
            days=self.daily(period, account_id),
        )


class ImportService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def preview(self, data: ImportIn) -> ImportPreviewOut:
        AccountService(self.session, self.user_id).get(data.account_id)
        validate_mapping(data.mapping, len(data.headers))
        progress = mapping_progress(data.mapping)
        missing = missing_required_fields(data.mapping)
        if missing:
            names = ", ".join(field.value for field in missing)
            return ImportPreviewOut(
                progress=progress, rows=[], errors=[f"Missing required fields: {names}"]
            )
        rows, errors = map_rows(data.rows, data.mapping)
        if not rows and not errors:
            errors.append("No rows to import")
        return ImportPreviewOut(progress=progress, rows=rows, errors=errors)

    def commit(self, data: ImportIn) -> list[Transaction]:
        preview = self.preview(data)
        if preview.errors:
            raise ValueError("; ".join(preview.errors))

        categories = CategoryService(self.session, self.user_id)
        resolved: dict[str, Optional[int]] = {}
        txns: list[Transaction] = []
        try:
            for number, row in enumerate(preview.rows, start=1):
                category_id: Optional[int] = None
                if row.category:
                    key = row.category.strip().lower()
                    if key not in resolved:
                        try:
                            resolved[key] = categories.resolve(row.category).id
                        except CategoryAmbiguous as exc:
                            raise CategoryAmbiguous(f"Row {number}: {exc}") from exc
                    category_id = resolved[key]
                txns.append(
                    Transaction(
                        amount=row.amount,
                        date=row.date,
                        payee=row.payee,
                        notes=row.notes,
                        account_id=data.account_id,
                        category_id=category_id,
                    )
                )
            self.session.add_all(txns)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        for txn in txns:
            self.session.refresh(txn)
        logger.info(
            f"import_commit: user={self.user_id} account={data.account_id} rows={len(txns)}"
        )
        return txns
