from sqlalchemy.orm import Session

from .database import Base, engine
from .routes import router
from .services import seed_default_admin


def init_rbac_module() -> None:
    # Every module's models must be imported before this runs.
    Base.metadata.create_all(bind=engine)
    db = Session(bind=engine)
    try:
        seed_default_admin(db)
    finally:
        db.close()


__all__ = ["router", "init_rbac_module"]
