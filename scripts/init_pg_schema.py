from __future__ import annotations

from contact_engine.core.logging import configure_logging
from contact_engine.db.pg import models  # noqa: F401  registers tables on Base.metadata
from contact_engine.db.pg.base import Base
from contact_engine.db.pg.session import engine


def main() -> None:
    configure_logging()
    Base.metadata.create_all(bind=engine)
    for table in sorted(Base.metadata.tables):
        print(f"Ensured table: {table}")


if __name__ == "__main__":
    main()
