# ==============================================================================
# DATABASE SESSION MANAGEMENT
# ==============================================================================
# FastAPI dependencies that hand the stores a session factory. Each store
# opens its own short transaction per operation through `db.session_scope`,
# so the endpoints never hold a session open across external HTTP calls.
# ------------------------------------------------------------------------------

from sqlalchemy.orm import sessionmaker

from db import SessionLocal


def get_session_factory() -> sessionmaker:
    """
    FastAPI dependency returning the process-wide session factory.

    Tests override this dependency to point every store at an isolated
    in-memory database.
    """
    return SessionLocal
