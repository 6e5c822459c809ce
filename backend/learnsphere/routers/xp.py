from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field
from sqlalchemy.orm import Session

from .. import services
from ..db import get_db
from ..errors import ProgressionError
from ..progression import MAX_XP_AWARD
from ..schemas import CamelModel
from ..settings import settings

router = APIRouter(prefix="/api", tags=["xp"])


class AddXPRequest(CamelModel):
	user_id: str = Field(min_length=1)
	amount: int = Field(le=MAX_XP_AWARD)
	source: str = Field(min_length=1)
	source_id: Optional[str] = None


class AchievementRequest(CamelModel):
	user_id: str = Field(min_length=1)
	name: str = Field(min_length=1)
	description: Optional[str] = None
	xp_reward: int = Field(default=0, ge=0, le=MAX_XP_AWARD)


@router.get("/xp/rank/{user_id}")
def get_rank(user_id: str, db: Session = Depends(get_db)):
	try:
		rank = services.get_user_rank(db, user_id)
	except ProgressionError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))
	return {"userId": user_id, "rank": rank}


@router.get("/xp/{user_id}")
def get_xp(user_id: str, db: Session = Depends(get_db)):
	return services.get_ledger(db, user_id)


@router.post("/xp/add")
def add_xp(req: AddXPRequest, db: Session = Depends(get_db)):
	try:
		return services.add_xp(db, req.user_id, req.amount, req.source, req.source_id)
	except ProgressionError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/xp/streak/{user_id}")
def update_streak(user_id: str, db: Session = Depends(get_db)):
	try:
		return services.update_streak(db, user_id)
	except ProgressionError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/xp/achievement")
def add_achievement(req: AchievementRequest, db: Session = Depends(get_db)):
	try:
		return services.add_achievement(db, req.user_id, req.name, req.description, req.xp_reward)
	except ProgressionError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/leaderboard")
def leaderboard(limit: Optional[int] = Query(default=None, ge=1, le=100), db: Session = Depends(get_db)):
	return services.get_leaderboard(db, limit or settings.leaderboard_limit)
