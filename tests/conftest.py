from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from chat_agent_engine.persistence.sqlalchemy.db import build_engine, build_session_factory, create_schema
from chat_agent_engine.persistence.sqlalchemy.uow import SQLAlchemyUnitOfWork


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    return build_session_factory(engine)


@pytest.fixture()
def uow_factory(session_factory):
    def _factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return _factory


@pytest.fixture()
def seed_turns(uow_factory):
    def _seed(room_id: str, count: int, *, role: str = "user", author_id: str = "user-1") -> None:
        with uow_factory() as uow:
            for index in range(count):
                uow.turns.append(room_id, author_id, role, f"message {index}")
            uow.commit()

    return _seed


@pytest.fixture()
def failing_uow_factory(session_factory):
    """Unit of work whose ``<repo>.<method>`` raises a database error."""

    def _build(repo_name: str, method_name: str):
        class FailingUnitOfWork(SQLAlchemyUnitOfWork):
            def __enter__(self):
                super().__enter__()
                repo = getattr(self, repo_name)

                def _fail(*args, **kwargs):
                    raise OperationalError(f"{repo_name}.{method_name}", {}, Exception("database is locked"))

                setattr(repo, method_name, _fail)
                return self

        def _factory():
            return FailingUnitOfWork(session_factory)

        return _factory

    return _build
