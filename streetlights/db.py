# streetlights/db.py : Postgres (Supabase direct 5432), SSL + forced IPv4
import socket
import ssl
from typing import Optional
from urllib.parse import urlparse

import asyncpg
import certifi
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from streetlights.config import DATABASE_URL

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker] = None


def resolve_ipv4(host, port):
    """A record of host; falls back to the name and lets asyncpg resolve it."""
    try:
        for fam, _, _, _, sockaddr in socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_STREAM):
            return sockaddr[0]
    except socket.gaierror:
        pass
    return host


def _ssl_ctx() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ctx.load_verify_locations(certifi.where())
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def get_engine(url: str = DATABASE_URL) -> AsyncEngine:
    """Engine built on first use so that importing the app never touches the network."""
    global _engine, _sessionmaker
    if _engine is not None:
        return _engine
    if not url:
        raise RuntimeError("DATABASE_URL is not set")

    base_url = url.split("?")[0]
    parsed = urlparse(base_url.replace("postgresql+asyncpg://", "postgresql://"))
    host = parsed.hostname
    port = parsed.port or 5432
    ipv4 = resolve_ipv4(host, port)
    ctx = _ssl_ctx()

    async def _asyncpg_connect():
        return await asyncpg.connect(
            host=ipv4,
            port=port,
            user=parsed.username,
            password=parsed.password,
            database=parsed.path.lstrip("/") or "postgres",
            ssl=ctx,
            timeout=10.0,
        )

    _engine = create_async_engine(
        base_url,
        poolclass=NullPool,
        pool_pre_ping=True,
        async_creator=_asyncpg_connect,
    )
    _sessionmaker = async_sessionmaker(bind=_engine, expire_on_commit=False)
    return _engine


def SessionLocal() -> AsyncSession:
    get_engine()
    return _sessionmaker()


async def get_db() -> AsyncSession:
    async with SessionLocal() as session:
        yield session
