from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Transaction
from periods import Period
from schemas import AccountIn, CategoryIn, TransactionIn
from services import AccountService, CategoryService, NotFoundError, TransactionService


def _txn_in(account_id: int, amount: int = -1000, **overrides) -> TransactionIn:
    values = dict(
        amount=amount,
        date=date(2024, 4, 1),
        payee="Corner Shop",
        notes=None,
        account_id=account_id,
        category_id=None,
    )
    values.update(overrides)
    return TransactionIn(**values)


def test_created_account_is_listed_exactly_once() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        accounts = AccountService(session, "user_a")
        created = accounts.create(AccountIn(name="  Checking "))
        listed = accounts.list_all()
        assert [a.id for a in listed].count(created.id) == 1
        assert listed[0].name == "Checking"


def test_other_users_records_are_not_found() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = AccountService(session, "user_b").create(AccountIn(name="B's bank"))
        category = CategoryService(session, "user_b").create(CategoryIn(name="Rent"))
        txn = TransactionService(session, "user_b").create(_txn_in(account.id))

        assert AccountService(session, "user_a").list_all() == []
        assert CategoryService(session, "user_a").list_all() == []
        with pytest.raises(NotFoundError):
            AccountService(session, "user_a").get(account.id)
        with pytest.raises(NotFoundError):
            CategoryService(session, "user_a").update(category.id, CategoryIn(name="x"))
        with pytest.raises(NotFoundError):
            TransactionService(session, "user_a").get(txn.id)
        with pytest.raises(NotFoundError):
            TransactionService(session, "user_a").delete(txn.id)
        period = Period(date(2024, 1, 1), date(2024, 12, 31))
        assert TransactionService(session, "user_a").list(period) == []
        assert AccountService(session, "user_a").bulk_delete([account.id]) == []
        assert TransactionService(session, "user_a").bulk_delete([txn.id]) == []
        assert TransactionService(session, "user_b").get(txn.id).id == txn.id


def test_cannot_book_onto_someone_elses_account_or_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        theirs = AccountService(session, "user_b").create(AccountIn(name="B"))
        their_category = CategoryService(session, "user_b").create(CategoryIn(name="C"))
        mine = AccountService(session, "user_a").create(AccountIn(name="A"))
        service = TransactionService(session, "user_a")

        with pytest.raises(NotFoundError):
            service.create(_txn_in(theirs.id))
        with pytest.raises(NotFoundError):
            service.create(_txn_in(mine.id, category_id=their_category.id))
        with pytest.raises(NotFoundError):
            service.bulk_create([_txn_in(mine.id), _txn_in(theirs.id)])
        assert session.scalars(select(Transaction)).all() == []


def test_deleting_account_removes_its_transactions() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        accounts = AccountService(session, "user_a")
        doomed = accounts.create(AccountIn(name="Old card"))
        kept = accounts.create(AccountIn(name="Checking"))
        txns = TransactionService(session, "user_a")
        txns.create(_txn_in(doomed.id))
        survivor = txns.create(_txn_in(kept.id))

        accounts.delete(doomed.id)

        remaining = session.scalars(select(Transaction)).all()
        assert [t.id for t in remaining] == [survivor.id]


def test_deleting_category_keeps_transactions_uncategorized() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = AccountService(session, "user_a").create(AccountIn(name="Checking"))
        categories = CategoryService(session, "user_a")
        food = categories.create(CategoryIn(name="Food"))
        txn = TransactionService(session, "user_a").create(
            _txn_in(account.id, category_id=food.id)
        )

        assert categories.bulk_delete([food.id, 9999]) == [food.id]

        txn_after = TransactionService(session, "user_a").get(txn.id)
        assert txn_after.category_id is None
        assert TransactionService.to_out(txn_after).category is None


def test_transaction_update_and_listing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        checking = AccountService(session, "user_a").create(AccountIn(name="Checking"))
        savings = AccountService(session, "user_a").create(AccountIn(name="Savings"))
        service = TransactionService(session, "user_a")
        first = service.create(_txn_in(checking.id, date=date(2024, 4, 1)))
        second = service.create(_txn_in(checking.id, date=date(2024, 4, 3)))
        service.create(_txn_in(checking.id, date=date(2024, 6, 1)))

        updated = service.update(
            first.id,
            _txn_in(savings.id, amount=5000, payee="Refund", notes="returned"),
        )
        out = service.to_out(updated)
        assert (out.amount, out.payee, out.notes, out.account) == (
            5000,
            "Refund",
            "returned",
            "Savings",
        )

        april = Period(date(2024, 4, 1), date(2024, 4, 30))
        assert [t.id for t in service.list(april)] == [second.id, first.id]
        assert [t.id for t in service.list(april, savings.id)] == [first.id]


def test_bulk_create_and_bulk_delete() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = AccountService(session, "user_a").create(AccountIn(name="Checking"))
        service = TransactionService(session, "user_a")
        created = service.bulk_create(
            [_txn_in(account.id, amount=i * 1000) for i in range(1, 4)]
        )
        assert [t.amount for t in created] == [1000, 2000, 3000]

        deleted = service.bulk_delete([created[0].id, created[2].id])
        assert sorted(deleted) == sorted([created[0].id, created[2].id])
        remaining = session.scalars(select(Transaction)).all()
        assert [t.id for t in remaining] == [created[1].id]


def test_category_id_zero_is_checked_like_any_other_id() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = AccountService(session, "user_a").create(AccountIn(name="Checking"))
        service = TransactionService(session, "user_a")
        txn = service.create(_txn_in(account.id))

        with pytest.raises(NotFoundError):
            service.create(_txn_in(account.id, category_id=0))
        with pytest.raises(NotFoundError):
            service.update(txn.id, _txn_in(account.id, category_id=0))
        with pytest.raises(NotFoundError):
            service.bulk_create([_txn_in(account.id, category_id=0)])
        assert service.get(txn.id).category_id is None
