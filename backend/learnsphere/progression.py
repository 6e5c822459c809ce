"""XP, leveling, streak and quiz-gating rules.

Everything here is pure over its inputs: ledgers are mutated in place and
course chapters are plain JSON-style lists of dicts. Persisting the result is
the caller's job (see ``services``).
"""
from __future__ import annotations
import copy
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from .errors import InvalidProgressError, LockedLessonError, NotFoundError

logger = logging.getLogger(__name__)

BASE_LEVEL_XP = 100
# Single award ceiling and the largest total the ledger column holds
MAX_XP_AWARD = 1_000_000
MAX_TOTAL_XP = 2 ** 31 - 1

Chapters = List[Dict[str, Any]]


@dataclass(frozen=True)
class ProgressionConfig:
	pass_threshold: int = 50
	perfect_bonus: int = 10
	excellent_bonus: int = 5
	excellent_threshold: int = 90
	chapter_bonus: int = 50
	streak_bonus_per_day: int = 5
	streak_bonus_cap: int = 50
	default_quiz_xp: int = 15

	@classmethod
	def from_settings(cls, s) -> "ProgressionConfig":
		return cls(
			pass_threshold=s.pass_threshold,
			perfect_bonus=s.perfect_bonus,
			excellent_bonus=s.excellent_bonus,
			chapter_bonus=s.chapter_bonus,
			streak_bonus_per_day=s.streak_bonus_per_day,
			streak_bonus_cap=s.streak_bonus_cap,
			default_quiz_xp=s.default_quiz_xp,
		)


class LevelInfo(NamedTuple):
	level: int
	xp_to_next_level: int


class XPChange(NamedTuple):
	leveled_up: bool
	new_level: int
	amount: int


class StreakUpdate(NamedTuple):
	continued: bool
	was_reset: bool
	current: int
	longest: int


class QuizEvaluation(NamedTuple):
	percentage: int
	passed: bool


@dataclass
class CompletionOutcome:
	newly_completed: bool = False
	chapter_completed: bool = False
	xp_awarded: int = 0
	xp_breakdown: Dict[str, int] = field(default_factory=dict)
	next_lesson: Optional[Tuple[int, int]] = None
	next_lesson_unlocked: bool = False
	next_chapter_unlocked: bool = False


@dataclass
class QuizOutcome(CompletionOutcome):
	percentage: int = 0
	passed: bool = False
	attempts: int = 0


# ---- Leveling ----

def xp_for_level_up(level: int) -> int:
	"""XP needed to go from ``level`` to ``level + 1``: floor(100 * 1.5^(level-1))."""
	n = level - 1
	# Integer form of the 1.5^n curve so large levels stay exact
	return (BASE_LEVEL_XP * 3 ** n) // (2 ** n)


def level_for_xp(total_xp: int) -> LevelInfo:
	if total_xp < 0:
		raise InvalidProgressError("total XP cannot be negative")
	level = 1
	floor_xp = 0
	while True:
		ceiling = floor_xp + xp_for_level_up(level)
		if total_xp < ceiling:
			return LevelInfo(level, ceiling - total_xp)
		floor_xp = ceiling
		level += 1


def add_xp(ledger, amount: int, source: str, source_id: Optional[str] = None) -> XPChange:
	if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
		raise InvalidProgressError("amount must be a positive integer")
	if not source or not str(source).strip():
		raise InvalidProgressError("source is required")
	if (ledger.total_xp or 0) + amount > MAX_TOTAL_XP:
		raise InvalidProgressError(f"total XP cannot exceed {MAX_TOTAL_XP}")
	old_level = ledger.current_level or 1
	ledger.total_xp = (ledger.total_xp or 0) + amount
	info = level_for_xp(ledger.total_xp)
	ledger.current_level = info.level
	ledger.xp_to_next_level = info.xp_to_next_level
	leveled_up = info.level > old_level
	if leveled_up:
		logger.info("user %s reached level %d (%s:%s)", ledger.user_id, info.level, source, source_id)
	return XPChange(leveled_up, info.level, amount)


# ---- Streaks ----

def update_streak(ledger, today: date) -> StreakUpdate:
	last = ledger.streak_last_activity
	current = ledger.streak_current or 0
	longest = ledger.streak_longest or 0
	if last == today:
		return StreakUpdate(False, False, current, longest)
	was_reset = False
	if last is None or last == today - timedelta(days=1):
		current += 1
	elif last > today:
		# Clock skew between requests; treat as same-day activity
		return StreakUpdate(False, False, current, longest)
	else:
		logger.info("streak reset for user %s after %s", ledger.user_id, last.isoformat())
		current = 1
		was_reset = True
	longest = max(longest, current)
	ledger.streak_current = current
	ledger.streak_longest = longest
	ledger.streak_last_activity = today
	return StreakUpdate(True, was_reset, current, longest)


def streak_bonus(update: StreakUpdate, config: ProgressionConfig) -> int:
	if not update.continued or update.was_reset or update.current <= 1:
		return 0
	return min(update.current * config.streak_bonus_per_day, config.streak_bonus_cap)


# ---- Quiz gate ----

def evaluate_quiz(score: int, total_questions: int, pass_threshold: int = 50) -> QuizEvaluation:
	if total_questions <= 0:
		raise InvalidProgressError("totalQuestions must be greater than zero")
	if score < 0 or score > total_questions:
		raise InvalidProgressError("score must be between 0 and totalQuestions")
	# round-half-up in integers
	percentage = (score * 200 + total_questions) // (2 * total_questions)
	return QuizEvaluation(percentage, percentage >= pass_threshold)


# ---- Unlock propagation ----

def _chapter(chapters: Chapters, chapter_idx: int) -> Dict[str, Any]:
	if chapter_idx < 0 or chapter_idx >= len(chapters):
		raise NotFoundError(f"chapter {chapter_idx} not found")
	return chapters[chapter_idx]


def _lesson(chapters: Chapters, chapter_idx: int, lesson_idx: int) -> Dict[str, Any]:
	lessons = _chapter(chapters, chapter_idx).get("lessons") or []
	if lesson_idx < 0 or lesson_idx >= len(lessons):
		raise NotFoundError(f"lesson {lesson_idx} not found in chapter {chapter_idx}")
	return lessons[lesson_idx]


def is_lesson_completed(chapters: Chapters, chapter_idx: int, lesson_idx: int) -> bool:
	return bool(_lesson(chapters, chapter_idx, lesson_idx).get("completed"))


def is_chapter_completed(chapters: Chapters, chapter_idx: int) -> bool:
	lessons = _chapter(chapters, chapter_idx).get("lessons") or []
	return all(bool(lesson.get("completed")) for lesson in lessons)


def is_chapter_unlocked(chapters: Chapters, chapter_idx: int) -> bool:
	_chapter(chapters, chapter_idx)
	if chapter_idx == 0:
		return True
	return is_chapter_completed(chapters, chapter_idx - 1)


def is_lesson_unlocked(chapters: Chapters, chapter_idx: int, lesson_idx: int) -> bool:
	_lesson(chapters, chapter_idx, lesson_idx)
	if lesson_idx > 0:
		previous = chapters[chapter_idx]["lessons"][lesson_idx - 1]
		return bool(previous.get("completed"))
	return is_chapter_unlocked(chapters, chapter_idx)


def update_chapter_completion(chapters: Chapters, chapter_idx: int) -> bool:
	"""Refresh the chapter's ``completed`` flag; True only when this call completed it."""
	chapter = _chapter(chapters, chapter_idx)
	was_completed = bool(chapter.get("completed"))
	now_completed = is_chapter_completed(chapters, chapter_idx)
	chapter["completed"] = now_completed
	return now_completed and not was_completed


def next_lesson_position(chapters: Chapters, chapter_idx: int, lesson_idx: int) -> Optional[Tuple[int, int]]:
	lessons = _chapter(chapters, chapter_idx).get("lessons") or []
	if lesson_idx + 1 < len(lessons):
		return chapter_idx, lesson_idx + 1
	for c in range(chapter_idx + 1, len(chapters)):
		if chapters[c].get("lessons"):
			return c, 0
	return None


def annotate_progress(chapters: Chapters) -> Chapters:
	"""Copy of ``chapters`` with the derived ``unlocked``/``completed`` flags filled in."""
	view = copy.deepcopy(chapters)
	for c, chapter in enumerate(view):
		chapter["completed"] = is_chapter_completed(chapters, c)
		chapter["unlocked"] = is_chapter_unlocked(chapters, c)
		for l, lesson in enumerate(chapter.get("lessons") or []):
			lesson["unlocked"] = is_lesson_unlocked(chapters, c, l)
	return view


def _finish_completion(
	chapters: Chapters,
	chapter_idx: int,
	lesson_idx: int,
	outcome: CompletionOutcome,
	xp_parts: Dict[str, int],
	config: ProgressionConfig,
) -> None:
	lesson = _lesson(chapters, chapter_idx, lesson_idx)
	was_completed = bool(lesson.get("completed"))
	lesson["completed"] = True
	outcome.chapter_completed = update_chapter_completion(chapters, chapter_idx)
	if not was_completed:
		outcome.newly_completed = True
		if outcome.chapter_completed and config.chapter_bonus > 0:
			xp_parts["chapter"] = config.chapter_bonus
		outcome.xp_breakdown = {k: v for k, v in xp_parts.items() if v > 0}
		outcome.xp_awarded = sum(outcome.xp_breakdown.values())
	nxt = next_lesson_position(chapters, chapter_idx, lesson_idx)
	outcome.next_lesson = nxt
	if nxt is not None:
		outcome.next_lesson_unlocked = is_lesson_unlocked(chapters, *nxt)
		outcome.next_chapter_unlocked = nxt[0] != chapter_idx and outcome.next_lesson_unlocked


def apply_quiz_result(
	chapters: Chapters,
	chapter_idx: int,
	lesson_idx: int,
	score: int,
	total_questions: int,
	config: ProgressionConfig,
	base_xp: Optional[int] = None,
) -> QuizOutcome:
	"""Run the quiz gate against one lesson and mutate its progress flags.

	XP is only awarded when the lesson moves into ``completed``; passing an
	already-completed lesson again records the attempt and awards nothing.
	"""
	evaluation = evaluate_quiz(score, total_questions, config.pass_threshold)
	lesson = _lesson(chapters, chapter_idx, lesson_idx)
	if not is_lesson_unlocked(chapters, chapter_idx, lesson_idx):
		raise LockedLessonError(f"lesson {chapter_idx}.{lesson_idx} is locked")
	lesson["attempts"] = int(lesson.get("attempts") or 0) + 1
	lesson["quizScore"] = evaluation.percentage
	lesson["quizPassed"] = evaluation.passed
	outcome = QuizOutcome(percentage=evaluation.percentage, passed=evaluation.passed, attempts=lesson["attempts"])
	if not evaluation.passed:
		return outcome
	xp_parts = {
		"base": config.default_quiz_xp if base_xp is None else base_xp,
		"perfect": config.perfect_bonus if evaluation.percentage == 100 else 0,
		"excellent": config.excellent_bonus if evaluation.percentage >= config.excellent_threshold else 0,
	}
	_finish_completion(chapters, chapter_idx, lesson_idx, outcome, xp_parts, config)
	return outcome


def apply_lesson_completion(
	chapters: Chapters,
	chapter_idx: int,
	lesson_idx: int,
	config: ProgressionConfig,
	xp_reward: Optional[int] = None,
) -> CompletionOutcome:
	lesson = _lesson(chapters, chapter_idx, lesson_idx)
	if not is_lesson_unlocked(chapters, chapter_idx, lesson_idx):
		raise LockedLessonError(f"lesson {chapter_idx}.{lesson_idx} is locked")
	reward = int(lesson.get("xp") or 0) if xp_reward is None else xp_reward
	outcome = CompletionOutcome()
	_finish_completion(chapters, chapter_idx, lesson_idx, outcome, {"lesson": reward}, config)
	return outcome


# ---- Milestone achievements ----

MILESTONES: List[Tuple[str, str, str, int]] = [
	("Week Warrior", "7+ day streak", "streak", 7),
	("Month Master", "30+ day streak", "streak", 30),
	("Rising Star", "Reached Level 5", "level", 5),
	("Learning King", "Reached Level 10", "level", 10),
	("Quiz Master", "10+ quizzes completed", "quizzes", 10),
]


def due_milestones(ledger, passed_quizzes: int = 0) -> List[Tuple[str, str]]:
	earned = ledger.achievement_names()
	measures = {
		"streak": ledger.streak_longest or 0,
		"level": ledger.current_level or 1,
		"quizzes": passed_quizzes,
	}
	return [
		(name, description)
		for name, description, measure, threshold in MILESTONES
		if name not in earned and measures[measure] >= threshold
	]
