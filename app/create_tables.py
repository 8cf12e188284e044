from app.db import engine
from app.models import Base


def create_tables() -> None:
    Base.metadata.create_all(engine)


if __name__ == '__main__':
    create_tables()
    print('Tables created/verified.')
