from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
import os
from dotenv import load_dotenv

load_dotenv()  # Optional if you're also running locally with a .env file

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./leaderboard.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"

# ✅ Use create_async_engine for async operations
engine = create_async_engine(DATABASE_URL, echo=SQL_ECHO)

# ✅ Create an async session
SessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)

# ✅ Define Base for models
Base = declarative_base()

# ✅ Dependency to get the async session
async def get_db():
    async with SessionLocal() as session:
        yield session


async_session = SessionLocal
