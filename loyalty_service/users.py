from typing import Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from loyalty_service import ledger
from loyalty_service.errors import DuplicateLogin
from loyalty_service.models import User

def add_user(db: Session, login: str, password_hash: str) -> int:
    """Insert the user and its zero ledger entry; both land or neither does."""
    user = User(login=login, password_hash=password_hash)
    db.add(user)
    try:
        db.flush()
    except IntegrityError as e:
        raise DuplicateLogin(login) from e
    ledger.bootstrap(db, user.id)
    return user.id

def get_user(db: Session, login: str) -> Optional[User]:
    return db.execute(select(User).where(User.login == login)).scalar_one_or_none()
