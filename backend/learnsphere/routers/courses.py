from __future__ import annotations
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field
from sqlalchemy.orm import Session

from .. import services
from ..course_generation import generate_course
from ..db import get_db
from ..errors import GenerationError, ProgressionError
from ..gemini_client import GeminiClient
from ..schemas import COURSE_LEVELS, CamelModel
from .deps import get_gemini_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["courses"])


class GenerateCourseRequest(CamelModel):
	topic: str = Field(min_length=1, max_length=200)
	level: str
	user_id: str = Field(min_length=1)


@router.post("/generate-course", status_code=201)
async def generate(
	req: GenerateCourseRequest,
	db: Session = Depends(get_db),
	client: GeminiClient = Depends(get_gemini_client),
):
	topic = req.topic.strip()
	if not topic or req.level not in COURSE_LEVELS:
		raise HTTPException(status_code=400, detail="Topic and level are required.")
	logger.info("generating course topic=%r level=%s for user %s", topic, req.level, req.user_id)
	try:
		document = await generate_course(client, topic, req.level)
	except GenerationError as e:
		logger.error("course generation failed: %s", e)
		raise HTTPException(status_code=502, detail="Failed to generate and save course.")
	course = services.create_course(db, req.user_id, document)
	return services.course_payload(course)


@router.get("/courses")
def list_courses(user_id: str = Query(alias="userId", min_length=1), db: Session = Depends(get_db)):
	return [services.course_payload(c) for c in services.list_courses(db, user_id)]


@router.get("/courses/{course_id}")
def get_course(course_id: str, user_id: str = Query(alias="userId", min_length=1), db: Session = Depends(get_db)):
	try:
		return services.course_payload(services.get_course(db, course_id, user_id))
	except ProgressionError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))


@router.delete("/courses/{course_id}")
def delete_course(course_id: str, user_id: str = Query(alias="userId", min_length=1), db: Session = Depends(get_db)):
	try:
		services.delete_course(db, course_id, user_id)
	except ProgressionError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))
	return {"message": "Course deleted.", "id": course_id}
