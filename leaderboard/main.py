from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from typing import List
import uvicorn
import logging
from dotenv import load_dotenv

# ✅ Load environment variables
load_dotenv()

# ✅ Initialize FastAPI app with redirect_slashes=False to avoid automatic redirects
app = FastAPI(title="ELO Leaderboard", redirect_slashes=False)

# ✅ Allow all hosts (or specify your own domain)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=["*"])

# ✅ Import internal modules
from leaderboard.database import Base, engine
from leaderboard import models  # noqa: F401  registers tables on Base.metadata
from leaderboard import ratings
from leaderboard.auth import router as auth_router
from leaderboard.data_access import DataAccess, PersistenceError, get_data_access
from leaderboard.elo import InvalidGameError, InvalidRatingError
from leaderboard.ratings import RatingModel, get_rating_model
from leaderboard.routers.games import router as games_router
from leaderboard.routers.players import router as players_router
from leaderboard.schemas import RankingEntry

# ✅ Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ✅ CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ✅ Health check
@app.get("/")
async def home(model: RatingModel = Depends(get_rating_model)):
    return {"message": "ELO Leaderboard API is running!", "rating_model": model.value}

# ✅ Create DB tables on startup
@app.on_event("startup")
async def startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Rating model: {ratings.RATING_MODEL.value}")

# ✅ Rankings endpoint
@app.get("/rankings", response_model=List[RankingEntry])
async def get_rankings(data: DataAccess = Depends(get_data_access), model: RatingModel = Depends(get_rating_model)):
    try:
        standings = await ratings.load_standings(data, model)
    except (InvalidGameError, InvalidRatingError) as e:
        logger.error(f"Ratings could not be computed: {e}")
        raise HTTPException(status_code=500, detail="Ratings could not be computed")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Database error")

    return [
        RankingEntry(
            rank=i + 1,
            id=s.player.id,
            name=s.player.name,
            rating=round(s.rating),
            games_played=s.games_played,
            wins=s.wins,
            losses=s.losses,
            draws=s.draws,
        )
        for i, s in enumerate(standings)
    ]

# ✅ Register routers
app.include_router(players_router, prefix="/players", tags=["Players"])
app.include_router(games_router, prefix="/games", tags=["Games"])
app.include_router(auth_router, tags=["Auth"])

# ✅ Uvicorn entry point with proxy headers enabled
if __name__ == "__main__":
    import os

    # Optional: Allow from specific IP or set via environment variable
    forwarded_ips = os.getenv("FORWARDED_ALLOW_IPS", "*")

    uvicorn.run(
        "leaderboard.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        proxy_headers=True,           # ✅ Trust proxy headers
        forwarded_allow_ips=forwarded_ips,  # ✅ Accept X-Forwarded-* headers
    )
