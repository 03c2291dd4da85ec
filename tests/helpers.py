"""Test helpers shared across test modules."""
import os
import time
import uuid

import jwt as pyjwt
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from services.database import create_tables
from services.tenant_scope import TenantScope, tenant_session


def generate_test_jwt(
    user_id: str = None,
    issuer: str = None,
    audience: str = None,
    exp_offset: int = 300,
    secret: str = None,
    **extra_claims,
) -> str:
    """Generate a test JWT with configurable claims."""
    now = int(time.time())
    payload = {
        "user_id": user_id or str(uuid.uuid4()),
        "iss": issuer or "fleet-gateway",
        "aud": audience or "fleet-core",
        "iat": now,
        "exp": now + exp_offset,
        **extra_claims,
    }
    secret = secret or os.environ["INTERNAL_JWT_SECRET"]
    return pyjwt.encode(payload, secret, algorithm="HS256")


def auth_header(user_id) -> dict:
    return {"Authorization": f"Bearer {generate_test_jwt(user_id=str(user_id))}"}


async def new_engine(path=None):
    """Fresh SQLite engine with all tables created.

    In memory by default. With ``path`` the database lives in that file and
    every session opens its own connection, so concurrent transactions
    contend for the write lock as they would on a server.
    """
    if path is None:
        engine = create_async_engine(
            "sqlite+aiosqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{path}",
            connect_args={"timeout": 30},
            poolclass=NullPool,
        )
    await create_tables(engine)
    return engine


async def seed(session_factory, *rows):
    """Insert rows across tenants and commit."""
    async with tenant_session(TenantScope.cross_tenant("test seed"), session_factory) as session:
        for row in rows:
            session.add(row)
        await session.commit()
    return rows
