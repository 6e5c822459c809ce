from __future__ import annotations
import json
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from json_repair import repair_json
from pydantic import ValidationError

from .errors import GenerationError
from .gemini_client import GeminiClient
from .progression import MAX_XP_AWARD
from .schemas import COURSE_LEVELS, CourseDocument

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_LETTER_ANSWER_RE = re.compile(r"^\(?([A-Ha-h])[\).:]?$")


def build_course_prompt(topic: str, level: str) -> str:
	return (
		"You are an expert instructional designer. "
		f'A user wants a course on the topic: "{topic}" at a "{level}" level.\n'
		"Generate a comprehensive, structured course plan tailored to that difficulty level. "
		"Add quizzes to each lesson and include a relevant royalty-free image URL based on the topic.\n"
		"The output MUST be a single, valid JSON object and nothing else.\n\n"
		"The JSON object must have the following structure:\n"
		"{\n"
		'  "title": "Course Title",\n'
		'  "description": "A short, engaging description of the course.",\n'
		f'  "level": "{level}",\n'
		'  "imageUrl": "A royalty-free image URL relevant to the course topic",\n'
		'  "projectDescription": "An optional capstone project idea",\n'
		'  "chapters": [\n'
		'    {"title": "Chapter 1 Title", "lessons": [\n'
		'      {"title": "Lesson 1.1 Title",\n'
		'       "content": "Educational content in detailed HTML with headings, paragraphs and lists.",\n'
		'       "xp": 10,\n'
		'       "quiz": {"title": "Quiz title", "questions": [\n'
		'         {"question": "Sample question?", "options": ["Option A", "Option B", "Option C", "Option D"], "correctAnswer": "Option A"}\n'
		"       ]}}\n"
		"    ]}\n"
		"  ]\n"
		"}\n\n"
		"Requirements:\n"
		"- At least 5 chapters.\n"
		"- Each chapter must have at least 3 lessons.\n"
		"- Each lesson must have at least 150 words of HTML content.\n"
		"- Each lesson must include a quiz with 3-5 multiple-choice questions.\n"
		"- correctAnswer must repeat one of the options verbatim.\n"
		"- The imageUrl should be a royalty-free Unsplash link using the course title as the search keyword."
	)


def extract_course_json(raw: str) -> Dict[str, Any]:
	text = _FENCE_RE.sub("", raw or "").strip()
	try:
		data = json.loads(text)
	except json.JSONDecodeError:
		logger.warning("course JSON invalid, attempting repair")
		try:
			data = json.loads(repair_json(text))
		except (json.JSONDecodeError, ValueError) as err:
			raise GenerationError("Gemini output could not be parsed as JSON") from err
	if not isinstance(data, dict):
		raise GenerationError("Gemini output is not a JSON object")
	return data


def fallback_image_url(title: Optional[str], topic: str) -> str:
	return f"https://source.unsplash.com/800x600/?{quote(title or topic, safe='')}"


def _resolve_answer(question: Dict[str, Any]) -> Optional[str]:
	options = [str(o).strip() for o in question.get("options") or [] if str(o).strip()]
	question["options"] = options
	answer = question.get("correctAnswer")
	if answer is None:
		answer = question.get("answer")
	if isinstance(answer, int) and not isinstance(answer, bool):
		return options[answer] if 0 <= answer < len(options) else None
	if answer is None:
		return None
	answer = str(answer).strip()
	if answer in options:
		return answer
	lowered = {o.lower(): o for o in options}
	if answer.lower() in lowered:
		return lowered[answer.lower()]
	letter = _LETTER_ANSWER_RE.match(answer)
	if letter:
		idx = ord(letter.group(1).upper()) - ord("A")
		if idx < len(options):
			return options[idx]
	return None


def _lesson_xp(value: Any) -> int:
	if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= MAX_XP_AWARD:
		return 10
	return value


def _normalize_quiz(quiz: Dict[str, Any], lesson_title: str) -> Optional[Dict[str, Any]]:
	if not quiz.get("title"):
		quiz["title"] = f"Quiz for {lesson_title}"
	questions: List[Dict[str, Any]] = []
	for q in quiz.get("questions") or []:
		if not isinstance(q, dict):
			continue
		if not q.get("question") and q.get("text"):
			q["question"] = q["text"]
		answer = _resolve_answer(q)
		if not q.get("question") or answer is None:
			logger.warning("dropping quiz question without a usable answer in %r", lesson_title)
			continue
		questions.append({"question": str(q["question"]).strip(), "options": q["options"], "correctAnswer": answer})
	if not questions:
		return None
	return {"title": str(quiz["title"]), "questions": questions}


def normalize_course(data: Dict[str, Any], topic: str, level: str) -> CourseDocument:
	"""Coerce Gemini's course JSON into a valid ``CourseDocument`` with fresh progress flags."""
	data = dict(data)
	data["level"] = level
	if not data.get("imageUrl"):
		data["imageUrl"] = data.pop("image_url", None) or fallback_image_url(data.get("title"), topic)
	chapters = []
	for chapter in data.get("chapters") or []:
		if not isinstance(chapter, dict):
			continue
		lessons = []
		for lesson in chapter.get("lessons") or []:
			if not isinstance(lesson, dict):
				continue
			title = str(lesson.get("title") or "").strip()
			normalized: Dict[str, Any] = {
				"title": title,
				"content": lesson.get("content") or "",
				"xp": _lesson_xp(lesson.get("xp")),
			}
			if isinstance(lesson.get("quiz"), dict):
				quiz = _normalize_quiz(lesson["quiz"], title)
				if quiz is not None:
					normalized["quiz"] = quiz
			lessons.append(normalized)
		chapters.append({"title": chapter.get("title"), "lessons": lessons})
	data["chapters"] = chapters
	try:
		return CourseDocument.model_validate(data)
	except ValidationError as err:
		raise GenerationError(f"Generated course failed validation: {err.error_count()} errors") from err


async def generate_course(client: GeminiClient, topic: str, level: str) -> CourseDocument:
	if level not in COURSE_LEVELS:
		raise ValueError(f"level must be one of {list(COURSE_LEVELS)}")
	raw = await client.generate(build_course_prompt(topic, level), json_mode=True)
	return normalize_course(extract_course_json(raw), topic, level)
