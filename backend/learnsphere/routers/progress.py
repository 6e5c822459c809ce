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

router = APIRouter(prefix="/api", tags=["progress"])

MAX_QUESTIONS = 10_000


class LessonRef(CamelModel):
	user_id: str = Field(min_length=1)
	course_id: str = Field(min_length=1)
	chapter_index: int = Field(ge=0)
	lesson_index: int = Field(ge=0)


class QuizCompleteRequest(LessonRef):
	score: int = Field(ge=0, le=MAX_QUESTIONS)
	total_questions: int = Field(gt=0, le=MAX_QUESTIONS)
	xp_reward: Optional[int] = Field(default=None, ge=0, le=MAX_XP_AWARD)


class LessonCompleteRequest(LessonRef):
	xp_reward: Optional[int] = Field(default=None, ge=0, le=MAX_XP_AWARD)


@router.post("/quiz/complete")
def complete_quiz(req: QuizCompleteRequest, db: Session = Depends(get_db)):
	if req.score > req.total_questions:
		raise HTTPException(status_code=400, detail="score cannot exceed totalQuestions")
	try:
		return services.complete_quiz(
			db,
			req.user_id,
			req.course_id,
			req.chapter_index,
			req.lesson_index,
			req.score,
			req.total_questions,
			req.xp_reward,
		)
	except ProgressionError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/quiz/history/{user_id}")
def quiz_history(user_id: str, limit: int = Query(default=50, ge=1, le=500), db: Session = Depends(get_db)):
	return services.quiz_history(db, user_id, limit)


@router.post("/lesson/complete")
def complete_lesson(req: LessonCompleteRequest, db: Session = Depends(get_db)):
	try:
		return services.complete_lesson(
			db,
			req.user_id,
			req.course_id,
			req.chapter_index,
			req.lesson_index,
			req.xp_reward,
		)
	except ProgressionError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))
