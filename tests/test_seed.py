from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Account, Category
from seed import DEMO_ACCOUNTS, DEMO_CATEGORIES, seed_user


def test_seed_is_idempotent_per_user() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        session.add(Account(user_id="user_a", name="Checking"))
        session.flush()

        created = seed_user(session, "user_a")
        assert created == len(DEMO_ACCOUNTS) + len(DEMO_CATEGORIES) - 1
        assert seed_user(session, "user_a") == 0
        assert seed_user(session, "user_b") == len(DEMO_ACCOUNTS) + len(DEMO_CATEGORIES)

        names = session.scalars(
            select(Category.name).where(Category.user_id == "user_a").order_by(Category.name)
        ).all()
        assert names == sorted(DEMO_CATEGORIES)
