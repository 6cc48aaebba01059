from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional
import logging

from leaderboard import ratings
from leaderboard.auth import Identity, is_admin, require_identity
from leaderboard.data_access import (
    DataAccess,
    PersistenceError,
    PlayerNotFoundError,
    StaleRatingError,
    get_data_access,
)
from leaderboard.elo import InvalidGameError, InvalidRatingError
from leaderboard.ratings import RatingModel, get_rating_model
from leaderboard.schemas import (
    AuditResponse,
    DiscrepancyResponse,
    GameCreate,
    GameRecorded,
    GameResponse,
    OddsResponse,
    PlayerSummary,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/", response_model=GameRecorded)
async def submit_game(
    game: GameCreate,
    identity: Identity = Depends(require_identity),
    data: DataAccess = Depends(get_data_access),
    model: RatingModel = Depends(get_rating_model),
):
    logger.info("Received game submission from %s: %s", identity.username, game.model_dump())

    if not identity.is_admin and identity.sub not in (game.player_a_id, game.player_b_id):
        raise HTTPException(status_code=403, detail="You can only submit games you played in.")

    try:
        record = await ratings.submit_game(data, model, game.player_a_id, game.player_b_id, game.winner_id)
    except InvalidGameError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PlayerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StaleRatingError:
        raise HTTPException(status_code=409, detail="Ratings changed while recording the game, please retry.")
    except InvalidRatingError as e:
        logger.error(f"Refusing to rate game: {e}")
        raise HTTPException(status_code=500, detail="Stored rating is corrupt")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Database commit error")

    snap = record.snapshot
    return GameRecorded(
        message="Game successfully recorded",
        game_id=record.id,
        player_a_new_rating=snap.player_a_after,
        player_b_new_rating=snap.player_b_after,
        player_a_change=snap.player_a_after - snap.player_a_before,
        player_b_change=snap.player_b_after - snap.player_b_before,
    )


@router.get("/", response_model=List[GameResponse])
async def get_games(
    limit: Optional[int] = Query(None, ge=1, le=500),
    data: DataAccess = Depends(get_data_access),
    model: RatingModel = Depends(get_rating_model),
):
    try:
        entries = await ratings.load_game_history(data, model, limit)
    except InvalidGameError as e:
        logger.error(f"Game log could not be replayed: {e}")
        raise HTTPException(status_code=500, detail="Game log could not be replayed")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Database error")

    return [GameResponse.from_entry(e) for e in entries]


@router.get("/odds", response_model=OddsResponse)
async def get_odds(
    player_a_id: str,
    player_b_id: str,
    data: DataAccess = Depends(get_data_access),
    model: RatingModel = Depends(get_rating_model),
):
    try:
        odds = await ratings.match_odds(data, model, player_a_id, player_b_id)
    except InvalidGameError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PlayerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidRatingError as e:
        logger.error(f"Ratings could not be computed: {e}")
        raise HTTPException(status_code=500, detail="Ratings could not be computed")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Database error")

    return OddsResponse(
        player_a=PlayerSummary(id=odds.player_a.id, name=odds.player_a.name),
        player_b=PlayerSummary(id=odds.player_b.id, name=odds.player_b.name),
        player_a_rating=odds.rating_a,
        player_b_rating=odds.rating_b,
        player_a_expected_score=odds.expected_a,
        player_b_expected_score=odds.expected_b,
        player_a_change_on_win=odds.a_gains_on_win,
        player_a_change_on_draw=odds.a_gains_on_draw,
        player_a_change_on_loss=odds.a_gains_on_loss,
    )


@router.get("/audit", response_model=AuditResponse)
async def audit_ratings(
    data: DataAccess = Depends(get_data_access),
    model: RatingModel = Depends(get_rating_model),
    admin: Identity = Depends(is_admin),
):
    try:
        found = await ratings.audit_ratings(data, model)
    except InvalidGameError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Database error")

    return AuditResponse(
        rating_model=model.value,
        consistent=not found,
        discrepancies=[DiscrepancyResponse.model_validate(d) for d in found],
    )
