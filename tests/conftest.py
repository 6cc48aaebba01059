import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from leaderboard.auth import token_for
from leaderboard.data_access import get_data_access
from leaderboard.elo import INITIAL_RATING
from leaderboard.main import app
from leaderboard.memory_store import InMemoryDataAccess
from leaderboard.ratings import RatingModel, get_rating_model


@pytest.fixture
def store():
    return InMemoryDataAccess()


@pytest.fixture(params=[RatingModel.DERIVED, RatingModel.STORED], ids=["derived", "stored"])
def rating_model(request):
    return request.param


@pytest_asyncio.fixture
async def client(store, rating_model):
    app.dependency_overrides[get_data_access] = lambda: store
    app.dependency_overrides[get_rating_model] = lambda: rating_model

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_header(identity, username=None, role="player"):
    return {"Authorization": f"Bearer {token_for(identity, username or identity, role)}"}


async def add_player(store, model, identity, name):
    rating = INITIAL_RATING if model is RatingModel.STORED else None
    return await store.find_or_create_player(identity, name, rating=rating)
