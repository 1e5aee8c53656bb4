import pathlib

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

file_path = pathlib.Path(__file__).parents[1]
file_path /= "./cell_server.sqlite3"
sqlite_url = f"sqlite+aiosqlite:///{file_path}"


def create_engine(url: str = sqlite_url, **kwargs) -> AsyncEngine:
    return create_async_engine(url=url, echo=False, **kwargs)
