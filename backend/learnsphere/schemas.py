from __future__ import annotations
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .progression import MAX_XP_AWARD


COURSE_LEVELS = ("Beginner", "Intermediate", "Advanced")


class CamelModel(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QuizQuestion(CamelModel):
	question: str
	options: List[str] = Field(min_length=2)
	correct_answer: str

	@model_validator(mode="after")
	def _answer_is_an_option(self) -> "QuizQuestion":
		if self.correct_answer not in self.options:
			raise ValueError("correctAnswer must be one of the options")
		return self


class Quiz(CamelModel):
	title: str
	questions: List[QuizQuestion] = Field(min_length=1)


class Lesson(CamelModel):
	title: str
	content: str
	xp: int = Field(default=10, ge=0, le=MAX_XP_AWARD)
	quiz: Optional[Quiz] = None
	completed: bool = False
	attempts: int = Field(default=0, ge=0)
	quiz_score: Optional[int] = Field(default=None, ge=0, le=100)
	quiz_passed: bool = False


class Chapter(CamelModel):
	title: str
	lessons: List[Lesson] = Field(min_length=1)
	completed: bool = False


class CourseDocument(CamelModel):
	title: str
	description: str
	level: str
	image_url: str
	project_description: Optional[str] = None
	chapters: List[Chapter] = Field(min_length=1)

	@field_validator("title")
	@classmethod
	def _strip_title(cls, v: str) -> str:
		v = v.strip()
		if not v:
			raise ValueError("title must not be empty")
		return v

	@field_validator("level")
	@classmethod
	def _known_level(cls, v: str) -> str:
		if v not in COURSE_LEVELS:
			raise ValueError(f"level must be one of {list(COURSE_LEVELS)}")
		return v

	def chapters_json(self) -> List[Dict[str, Any]]:
		return [c.model_dump(by_alias=True, exclude_none=True) for c in self.chapters]

