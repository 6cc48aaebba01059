from fastapi import APIRouter, Depends, HTTPException
from typing import List
import logging

from leaderboard import ratings
from leaderboard.auth import Identity, is_admin, require_identity
from leaderboard.data_access import DataAccess, NameTakenError, PersistenceError, PlayerNotFoundError, get_data_access
from leaderboard.elo import INITIAL_RATING, InvalidGameError, InvalidRatingError, round_ratings
from leaderboard.ratings import RatingModel, get_rating_model
from leaderboard.schemas import PlayerProfileCreate, PlayerResponse, RecomputeResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/", response_model=List[PlayerResponse])
async def get_players(data: DataAccess = Depends(get_data_access), model: RatingModel = Depends(get_rating_model)):
    try:
        standings = await ratings.load_standings(data, model)
    except (InvalidGameError, InvalidRatingError) as e:
        logger.error(f"Ratings could not be computed: {e}")
        raise HTTPException(status_code=500, detail="Ratings could not be computed")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Database error")

    return [PlayerResponse.from_standing(s) for s in standings]


@router.post("/me", response_model=PlayerResponse)
async def setup_profile(
    profile: PlayerProfileCreate,
    identity: Identity = Depends(require_identity),
    data: DataAccess = Depends(get_data_access),
    model: RatingModel = Depends(get_rating_model),
):
    # ✅ Only the stored model keeps a rating on the player row
    rating = INITIAL_RATING if model is RatingModel.STORED else None

    try:
        await data.find_or_create_player(identity.sub, profile.name, rating=rating)
        standing = await ratings.load_standing(data, model, identity.sub)
    except NameTakenError:
        raise HTTPException(status_code=409, detail="Player with this name already exists")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Database error")

    return PlayerResponse.from_standing(standing)


@router.post("/recompute", response_model=RecomputeResponse)
async def recompute_ratings(
    data: DataAccess = Depends(get_data_access),
    model: RatingModel = Depends(get_rating_model),
    admin: Identity = Depends(is_admin),
):
    if model is not RatingModel.STORED:
        raise HTTPException(status_code=400, detail="Ratings are not stored in the derived rating model")

    logger.info(f"Stored rating rebuild requested by {admin.username}")
    try:
        rebuilt = await ratings.rebuild_stored_ratings(data)
    except InvalidGameError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except PersistenceError:
        raise HTTPException(status_code=409, detail="Players changed during the rebuild, please retry")

    return RecomputeResponse(message=f"Rebuilt ratings for {len(rebuilt)} players", ratings=round_ratings(rebuilt))


@router.get("/{player_id}", response_model=PlayerResponse)
async def get_player(player_id: str, data: DataAccess = Depends(get_data_access), model: RatingModel = Depends(get_rating_model)):
    logger.info(f"Fetching player with ID: {player_id}")

    try:
        standing = await ratings.load_standing(data, model, player_id)
    except PlayerNotFoundError:
        logger.warning(f"Player {player_id} not found.")
        raise HTTPException(status_code=404, detail="Player not found.")
    except (InvalidGameError, InvalidRatingError) as e:
        logger.error(f"Ratings could not be computed: {e}")
        raise HTTPException(status_code=500, detail="Ratings could not be computed")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Database error")

    return PlayerResponse.from_standing(standing)
