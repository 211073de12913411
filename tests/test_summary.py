from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Account, Category, Transaction
from periods import Period
from services import SummaryService, percentage_change


def _account(session: Session, user_id: str = "user_a", name: str = "Checking") -> Account:
    account = Account(user_id=user_id, name=name)
    session.add(account)
    session.flush()
    return account


def _txn(
    session: Session,
    account: Account,
    amount: int,
    on: date,
    category: Category | None = None,
) -> Transaction:
    txn = Transaction(
        amount=amount,
        date=on,
        payee="Test",
        account_id=account.id,
        category_id=category.id if category else None,
    )
    session.add(txn)
    session.flush()
    return txn


def test_percentage_change_rules() -> None:
    assert percentage_change(0, 0) == 0
    assert percentage_change(500, 0) == 100
    assert percentage_change(300, 200) == 50
    assert percentage_change(100, 200) == -50


def test_totals_bucket_income_and_expenses() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = _account(session)
        _txn(session, account, 100_000, date(2024, 3, 1))
        _txn(session, account, 25_500, date(2024, 3, 2))
        _txn(session, account, -40_000, date(2024, 3, 2))
        _txn(session, account, -1_250, date(2024, 3, 5))
        # outside the window
        _txn(session, account, -99_000, date(2024, 4, 1))
        session.commit()

        income, expenses, remaining = SummaryService(session, "user_a").totals(
            Period(date(2024, 3, 1), date(2024, 3, 31))
        )
        assert income == 125_500
        assert expenses == 41_250
        assert remaining == income - expenses == 84_250


def test_summary_compares_against_previous_period() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = _account(session)
        # previous window: 2024-01-22 .. 2024-01-31
        _txn(session, account, 200_000, date(2024, 1, 25))
        _txn(session, account, -200_000, date(2024, 1, 31))
        # current window: 2024-02-01 .. 2024-02-10
        _txn(session, account, 300_000, date(2024, 2, 1))
        _txn(session, account, -100_000, date(2024, 2, 10))
        session.commit()

        summary = SummaryService(session, "user_a").summary(
            Period(date(2024, 2, 1), date(2024, 2, 10))
        )
        assert summary.previous_period.start == date(2024, 1, 22)
        assert summary.previous_period.end == date(2024, 1, 31)
        assert summary.income_amount == 300_000
        assert summary.income_change == 50
        assert summary.expenses_amount == 100_000
        assert summary.expenses_change == -50
        assert summary.remaining_amount == 200_000
        # previous remaining is zero and current is not: flat 100
        assert summary.remaining_change == 100


def test_summary_with_no_activity_reports_zero_change() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _account(session)
        session.commit()
        summary = SummaryService(session, "user_a").summary(
            Period(date(2024, 2, 1), date(2024, 2, 7))
        )
        assert summary.income_amount == 0
        assert summary.income_change == 0
        assert summary.expenses_change == 0
        assert summary.remaining_change == 0
        assert summary.categories == []
        assert len(summary.days) == 7


def test_daily_series_is_filled_for_every_day() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = _account(session)
        _txn(session, account, 10_000, date(2024, 5, 3))
        _txn(session, account, -2_000, date(2024, 5, 3))
        _txn(session, account, -7_000, date(2024, 5, 9))
        session.commit()

        period = Period(date(2024, 5, 1), date(2024, 5, 10))
        days = SummaryService(session, "user_a").daily(period)

        assert len(days) == 10
        assert [d.date for d in days] == list(period.each_day())
        by_day = {d.date: d for d in days}
        assert (by_day[date(2024, 5, 3)].income, by_day[date(2024, 5, 3)].expenses) == (
            10_000,
            2_000,
        )
        assert by_day[date(2024, 5, 9)].expenses == 7_000
        empty = [d for d in days if d.date not in {date(2024, 5, 3), date(2024, 5, 9)}]
        assert all(d.income == 0 and d.expenses == 0 for d in empty)


def test_category_breakdown_uncategorized_top_four_descending() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = _account(session)
        categories = {}
        for name in ("Rent", "Food", "Fun", "Travel", "Gifts"):
            categories[name] = Category(user_id="user_a", name=name)
            session.add(categories[name])
        session.flush()

        on = date(2024, 6, 15)
        _txn(session, account, -90_000, on, categories["Rent"])
        _txn(session, account, -30_000, on, categories["Food"])
        _txn(session, account, -15_000, on, categories["Food"])
        _txn(session, account, -5_000, on, categories["Fun"])
        _txn(session, account, -60_000, on, categories["Travel"])
        _txn(session, account, -1_000, on, categories["Gifts"])
        _txn(session, account, -50_000, on)
        # income never counts towards spending
        _txn(session, account, 500_000, on, categories["Gifts"])
        session.commit()

        breakdown = SummaryService(session, "user_a").top_spending_categories(
            Period(date(2024, 6, 1), date(2024, 6, 30))
        )

        assert [(c.name, c.value) for c in breakdown] == [
            ("Rent", 90_000),
            ("Travel", 60_000),
            ("Uncategorized", 50_000),
            ("Food", 45_000),
        ]


def test_summary_only_sees_callers_accounts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        mine = _account(session, "user_a")
        theirs = _account(session, "user_b")
        _txn(session, mine, -1_000, date(2024, 7, 1))
        _txn(session, theirs, -9_000, date(2024, 7, 1))
        _txn(session, theirs, 9_000, date(2024, 7, 1))
        session.commit()

        period = Period(date(2024, 7, 1), date(2024, 7, 31))
        summary = SummaryService(session, "user_a").summary(period)
        assert summary.expenses_amount == 1_000
        assert summary.income_amount == 0

        # filtering on someone else's account yields nothing
        foreign = SummaryService(session, "user_a").summary(period, theirs.id)
        assert foreign.expenses_amount == 0
        assert foreign.income_amount == 0
        assert foreign.categories == []


def test_summary_account_filter() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        checking = _account(session, name="Checking")
        savings = _account(session, name="Savings")
        _txn(session, checking, -3_000, date(2024, 8, 2))
        _txn(session, savings, 8_000, date(2024, 8, 2))
        session.commit()

        period = Period(date(2024, 8, 1), date(2024, 8, 31))
        service = SummaryService(session, "user_a")
        assert service.totals(period, checking.id) == (0, 3_000, -3_000)
        assert service.totals(period, savings.id) == (8_000, 0, 8_000)
        assert service.totals(period) == (8_000, 3_000, 5_000)
