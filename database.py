from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from settings import DATABASE_URL

# Fail fast: nothing works without a store
if not DATABASE_URL:
    raise ValueError("DATABASE_URL is not set. Please check your .env file.")

engine = create_async_engine(DATABASE_URL, echo=False, future=True)

# Shared by the request dependency and the background sweeper
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(bind=None):
    async with (bind or engine).begin() as conn:
        # This creates the tables if they don't exist
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncSession:
    async with async_session() as session:
        yield session
