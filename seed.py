import logging
import sys

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import session_scope
from models import Account, Category


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_ACCOUNTS = ("Checking", "Savings", "Credit Card")
DEMO_CATEGORIES = ("Groceries", "Rent", "Salary", "Utilities")


def seed_user(session: Session, user_id: str) -> int:
    created = 0
    for model, names in ((Account, DEMO_ACCOUNTS), (Category, DEMO_CATEGORIES)):
        existing = set(
            session.scalars(select(model.name).where(model.user_id == user_id)).all()
        )
        for name in names:
            if name in existing:
                continue
            session.add(model(user_id=user_id, name=name))
            created += 1
    session.flush()
    return created


def main() -> None:
    if len(sys.argv) != 2:
        print("usage: python seed.py <user_id>")
        raise SystemExit(2)
    user_id = sys.argv[1]
    with session_scope() as session:
        created = seed_user(session, user_id)
    logger.info(f"seed: user={user_id} created={created}")


if __name__ == "__main__":
    main()
