"""Persistence-aware progression operations.

Each public function runs as one transaction: the course document, the XP
ledger and the audit rows it touches are committed together or not at all.
Ledger and course rows carry a version counter; a concurrent writer makes the
flush fail with ``StaleDataError`` and the whole operation is replayed.
"""
from __future__ import annotations
import copy
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from . import progression
from .errors import ConcurrencyError, DuplicateAchievementError, InvalidProgressError, NotFoundError
from .models import Achievement, Course, QuizAttempt, XPEvent, XPLedger
from .progression import ProgressionConfig, StreakUpdate
from .schemas import CourseDocument
from .settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SOURCE_MANUAL = "manual"
SOURCE_LESSON = "lesson"
SOURCE_QUIZ = "quiz"
SOURCE_STREAK = "streak"
SOURCE_ACHIEVEMENT = "achievement"


def default_config() -> ProgressionConfig:
	return ProgressionConfig.from_settings(settings)


def utc_today() -> date:
	return datetime.now(timezone.utc).date()


def run_in_transaction(db: Session, operation: Callable[[], T], *, retries: Optional[int] = None) -> T:
	attempts = (settings.conflict_retries if retries is None else retries) + 1
	for attempt in range(1, attempts + 1):
		try:
			result = operation()
			db.commit()
			return result
		except (StaleDataError, IntegrityError) as err:
			db.rollback()
			logger.warning("write conflict (attempt %d/%d): %s", attempt, attempts, err.__class__.__name__)
		except Exception:
			db.rollback()
			raise
	raise ConcurrencyError("too many concurrent updates, please retry")


# ---- Ledger ----

def _find_ledger(db: Session, user_id: str) -> Optional[XPLedger]:
	return db.execute(select(XPLedger).where(XPLedger.user_id == user_id)).scalar_one_or_none()


def get_or_create_ledger(db: Session, user_id: str) -> XPLedger:
	ledger = _find_ledger(db, user_id)
	if ledger is None:
		ledger = XPLedger.fresh(user_id)
		db.add(ledger)
		# A concurrent insert of the same user surfaces here as IntegrityError
		db.flush()
		logger.info("created XP ledger for user %s", user_id)
	return ledger


def ledger_snapshot(ledger: XPLedger) -> Dict[str, Any]:
	last = ledger.streak_last_activity
	return {
		"userId": ledger.user_id,
		"totalXP": ledger.total_xp,
		"currentLevel": ledger.current_level,
		"xpToNextLevel": ledger.xp_to_next_level,
		"streak": {
			"current": ledger.streak_current,
			"longest": ledger.streak_longest,
			"lastActivity": last.isoformat() if last else None,
		},
		"achievements": [
			{
				"name": a.name,
				"description": a.description,
				"xpReward": a.xp_reward,
				"earnedAt": a.earned_at.isoformat() if a.earned_at else None,
			}
			for a in ledger.achievements
		],
	}


def _award(db: Session, ledger: XPLedger, amount: int, source: str, source_id: Optional[str] = None) -> Optional[progression.XPChange]:
	if amount <= 0:
		return None
	change = progression.add_xp(ledger, amount, source, source_id)
	db.add(XPEvent(user_id=ledger.user_id, amount=amount, source=source, source_id=source_id))
	return change


def _passed_quiz_count(db: Session, user_id: str) -> int:
	# Distinct lessons, so resubmitting one quiz does not count twice
	passed = (
		select(QuizAttempt.course_id, QuizAttempt.chapter_index, QuizAttempt.lesson_index)
		.where(QuizAttempt.user_id == user_id, QuizAttempt.passed.is_(True))
		.distinct()
		.subquery()
	)
	return db.execute(select(func.count()).select_from(passed)).scalar_one()


def _grant_milestones(db: Session, ledger: XPLedger) -> List[str]:
	db.flush()
	granted = []
	for name, description in progression.due_milestones(ledger, _passed_quiz_count(db, ledger.user_id)):
		ledger.achievements.append(Achievement(name=name, description=description, xp_reward=0))
		granted.append(name)
		logger.info("user %s earned milestone %r", ledger.user_id, name)
	return granted


def _record_activity(db: Session, ledger: XPLedger, today: date, config: ProgressionConfig) -> Dict[str, Any]:
	update = progression.update_streak(ledger, today)
	bonus = progression.streak_bonus(update, config)
	_award(db, ledger, bonus, SOURCE_STREAK, today.isoformat())
	return _streak_payload(update, bonus)


def _streak_payload(update: StreakUpdate, bonus: int) -> Dict[str, Any]:
	return {
		"streakContinued": update.continued,
		"wasReset": update.was_reset,
		"currentStreak": update.current,
		"longestStreak": update.longest,
		"bonusXP": bonus,
	}


def _level_payload(ledger: XPLedger, old_level: int) -> Dict[str, Any]:
	return {
		"leveledUp": ledger.current_level > old_level,
		"newLevel": ledger.current_level,
		"totalXP": ledger.total_xp,
		"currentLevel": ledger.current_level,
		"xpToNextLevel": ledger.xp_to_next_level,
	}


def get_ledger(db: Session, user_id: str) -> Dict[str, Any]:
	return run_in_transaction(db, lambda: ledger_snapshot(get_or_create_ledger(db, user_id)))


def add_xp(db: Session, user_id: str, amount: int, source: str, source_id: Optional[str] = None) -> Dict[str, Any]:
	if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
		raise InvalidProgressError("amount must be a positive integer")

	def op() -> Dict[str, Any]:
		ledger = get_or_create_ledger(db, user_id)
		old_level = ledger.current_level
		_award(db, ledger, amount, source or SOURCE_MANUAL, source_id)
		result = _level_payload(ledger, old_level)
		result["newAchievements"] = _grant_milestones(db, ledger)
		return result

	return run_in_transaction(db, op)


def update_streak(db: Session, user_id: str, today: Optional[date] = None, config: Optional[ProgressionConfig] = None) -> Dict[str, Any]:
	config = config or default_config()
	today = today or utc_today()

	def op() -> Dict[str, Any]:
		ledger = get_or_create_ledger(db, user_id)
		result = _record_activity(db, ledger, today, config)
		result["totalXP"] = ledger.total_xp
		result["currentLevel"] = ledger.current_level
		result["newAchievements"] = _grant_milestones(db, ledger)
		return result

	return run_in_transaction(db, op)


def add_achievement(db: Session, user_id: str, name: str, description: Optional[str], xp_reward: int = 0) -> Dict[str, Any]:
	name = (name or "").strip()
	if not name:
		raise InvalidProgressError("achievement name is required")
	if xp_reward < 0:
		raise InvalidProgressError("xpReward cannot be negative")

	def op() -> Dict[str, Any]:
		ledger = get_or_create_ledger(db, user_id)
		if name in ledger.achievement_names():
			raise DuplicateAchievementError(f"achievement {name!r} already earned")
		achievement = Achievement(name=name, description=description, xp_reward=xp_reward)
		ledger.achievements.append(achievement)
		old_level = ledger.current_level
		_award(db, ledger, xp_reward, SOURCE_ACHIEVEMENT, name)
		result = {
			"achievement": {"name": name, "description": description, "xpReward": xp_reward},
			**_level_payload(ledger, old_level),
		}
		result["newAchievements"] = _grant_milestones(db, ledger)
		return result

	return run_in_transaction(db, op)


def get_leaderboard(db: Session, limit: int) -> List[Dict[str, Any]]:
	rows = db.execute(
		select(XPLedger).order_by(XPLedger.total_xp.desc(), XPLedger.id.asc()).limit(limit)
	).scalars().all()
	return [
		{"rank": i, "userId": r.user_id, "totalXP": r.total_xp, "currentLevel": r.current_level}
		for i, r in enumerate(rows, start=1)
	]


def get_user_rank(db: Session, user_id: str) -> int:
	ledger = _find_ledger(db, user_id)
	if ledger is None:
		raise NotFoundError(f"user {user_id} not found")
	ahead = db.execute(
		select(func.count(XPLedger.id)).where(
			or_(
				XPLedger.total_xp > ledger.total_xp,
				and_(XPLedger.total_xp == ledger.total_xp, XPLedger.id < ledger.id),
			)
		)
	).scalar_one()
	return ahead + 1


# ---- Courses ----

def create_course(db: Session, owner_id: str, document: CourseDocument) -> Course:
	course = Course(
		owner_id=owner_id,
		title=document.title,
		description=document.description,
		level=document.level,
		image_url=document.image_url,
		project_description=document.project_description,
		chapters=document.chapters_json(),
	)

	def op() -> Course:
		db.add(course)
		db.flush()
		return course

	run_in_transaction(db, op, retries=0)
	logger.info("course %r saved for user %s", course.title, owner_id)
	return course


def list_courses(db: Session, owner_id: str) -> List[Course]:
	return db.execute(
		select(Course).where(Course.owner_id == owner_id).order_by(Course.created_at.desc())
	).scalars().all()


def get_course(db: Session, course_id: str, owner_id: str) -> Course:
	course = db.get(Course, course_id)
	# Foreign courses are indistinguishable from missing ones
	if course is None or course.owner_id != owner_id:
		raise NotFoundError(f"course {course_id} not found")
	return course


def delete_course(db: Session, course_id: str, owner_id: str) -> None:
	def op() -> None:
		db.delete(get_course(db, course_id, owner_id))

	run_in_transaction(db, op, retries=0)


def course_payload(course: Course) -> Dict[str, Any]:
	return {
		"id": course.id,
		"ownerId": course.owner_id,
		"title": course.title,
		"description": course.description,
		"level": course.level,
		"imageUrl": course.image_url,
		"projectDescription": course.project_description,
		"chapters": progression.annotate_progress(course.chapters or []),
		"createdAt": course.created_at,
		"updatedAt": course.updated_at,
	}


def _completion_payload(outcome: progression.CompletionOutcome) -> Dict[str, Any]:
	nxt = outcome.next_lesson
	return {
		"xpAwarded": outcome.xp_awarded,
		"xpBreakdown": outcome.xp_breakdown,
		"lessonCompleted": True,
		"alreadyCompleted": not outcome.newly_completed,
		"chapterCompleted": outcome.chapter_completed,
		"nextLesson": {"chapterIndex": nxt[0], "lessonIndex": nxt[1]} if nxt else None,
		"nextLessonUnlocked": outcome.next_lesson_unlocked,
		"nextChapterUnlocked": outcome.next_chapter_unlocked,
	}


def complete_quiz(
	db: Session,
	user_id: str,
	course_id: str,
	chapter_index: int,
	lesson_index: int,
	score: int,
	total_questions: int,
	xp_reward: Optional[int] = None,
	*,
	today: Optional[date] = None,
	config: Optional[ProgressionConfig] = None,
) -> Dict[str, Any]:
	config = config or default_config()
	today = today or utc_today()

	def op() -> Dict[str, Any]:
		course = get_course(db, course_id, user_id)
		chapters = copy.deepcopy(course.chapters or [])
		outcome = progression.apply_quiz_result(
			chapters, chapter_index, lesson_index, score, total_questions, config, base_xp=xp_reward
		)
		course.chapters = chapters
		ledger = get_or_create_ledger(db, user_id)
		old_level = ledger.current_level
		db.add(QuizAttempt(
			user_id=user_id,
			course_id=course_id,
			chapter_index=chapter_index,
			lesson_index=lesson_index,
			score=score,
			total_questions=total_questions,
			percentage=outcome.percentage,
			passed=outcome.passed,
			xp_awarded=outcome.xp_awarded,
		))
		result: Dict[str, Any] = {
			"passed": outcome.passed,
			"percentage": outcome.percentage,
			"score": score,
			"totalQuestions": total_questions,
			"attempts": outcome.attempts,
			"passThreshold": config.pass_threshold,
		}
		if outcome.passed:
			source_id = f"{course_id}_{chapter_index}_{lesson_index}"
			_award(db, ledger, outcome.xp_awarded, SOURCE_QUIZ, source_id)
			result.update(_completion_payload(outcome))
			result["streak"] = _record_activity(db, ledger, today, config)
		else:
			result.update({
				"xpAwarded": 0,
				"xpBreakdown": {},
				"lessonCompleted": progression.is_lesson_completed(chapters, chapter_index, lesson_index),
				"chapterCompleted": False,
				"nextLesson": None,
				"nextLessonUnlocked": False,
				"nextChapterUnlocked": False,
			})
		result.update(_level_payload(ledger, old_level))
		result["newAchievements"] = _grant_milestones(db, ledger)
		return result

	return run_in_transaction(db, op)


def complete_lesson(
	db: Session,
	user_id: str,
	course_id: str,
	chapter_index: int,
	lesson_index: int,
	xp_reward: Optional[int] = None,
	*,
	today: Optional[date] = None,
	config: Optional[ProgressionConfig] = None,
) -> Dict[str, Any]:
	config = config or default_config()
	today = today or utc_today()
	if xp_reward is not None and xp_reward < 0:
		raise InvalidProgressError("xpReward cannot be negative")

	def op() -> Dict[str, Any]:
		course = get_course(db, course_id, user_id)
		chapters = copy.deepcopy(course.chapters or [])
		outcome = progression.apply_lesson_completion(chapters, chapter_index, lesson_index, config, xp_reward)
		course.chapters = chapters
		ledger = get_or_create_ledger(db, user_id)
		old_level = ledger.current_level
		_award(db, ledger, outcome.xp_awarded, SOURCE_LESSON, f"{course_id}_{chapter_index}_{lesson_index}")
		result = _completion_payload(outcome)
		result["streak"] = _record_activity(db, ledger, today, config) if outcome.newly_completed else None
		result.update(_level_payload(ledger, old_level))
		result["newAchievements"] = _grant_milestones(db, ledger)
		return result

	return run_in_transaction(db, op)


def quiz_history(db: Session, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
	rows = db.execute(
		select(QuizAttempt)
		.where(QuizAttempt.user_id == user_id)
		.order_by(QuizAttempt.created_at.desc(), QuizAttempt.id.desc())
		.limit(limit)
	).scalars().all()
	return [
		{
			"courseId": r.course_id,
			"chapterIndex": r.chapter_index,
			"lessonIndex": r.lesson_index,
			"score": r.score,
			"totalQuestions": r.total_questions,
			"percentage": r.percentage,
			"passed": r.passed,
			"xpAwarded": r.xp_awarded,
			"date": r.created_at.isoformat(),
		}
		for r in rows
	]
