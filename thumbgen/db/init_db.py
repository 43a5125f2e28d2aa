from sqlalchemy.engine import Engine

from thumbgen.db.base import Base
from thumbgen.models import account, artifact, compensation, credit_ledger  # noqa: F401  (register tables)


def create_all(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)
