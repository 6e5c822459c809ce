from datetime import date

import pytest

from learnsphere import progression
from learnsphere.errors import InvalidProgressError, LockedLessonError, NotFoundError
from learnsphere.models import XPLedger
from learnsphere.progression import ProgressionConfig

from conftest import course_dict


CONFIG = ProgressionConfig()


def chapters(n_chapters=2, n_lessons=2):
	return course_dict(n_chapters, n_lessons)["chapters"]


class TestLeveling:
	def test_threshold_curve(self):
		assert [progression.xp_for_level_up(l) for l in range(1, 6)] == [100, 150, 225, 337, 506]

	def test_zero_xp_is_level_one(self):
		assert progression.level_for_xp(0) == (1, 100)

	def test_boundaries(self):
		assert progression.level_for_xp(99) == (1, 1)
		assert progression.level_for_xp(100) == (2, 150)
		assert progression.level_for_xp(249) == (2, 1)
		assert progression.level_for_xp(250) == (3, 225)
		assert progression.level_for_xp(812) == (5, 506)

	def test_monotone_and_non_negative(self):
		previous = 1
		for xp in range(0, 5000, 7):
			info = progression.level_for_xp(xp)
			assert info.level >= previous
			assert info.xp_to_next_level > 0
			previous = info.level

	def test_negative_rejected(self):
		with pytest.raises(InvalidProgressError):
			progression.level_for_xp(-1)


class TestAddXP:
	def test_zero_amount_is_rejected_and_ledger_unchanged(self):
		ledger = XPLedger.fresh("u1")
		with pytest.raises(InvalidProgressError):
			progression.add_xp(ledger, 0, "manual")
		assert ledger.total_xp == 0
		assert ledger.current_level == 1

	def test_negative_and_bool_rejected(self):
		ledger = XPLedger.fresh("u1")
		for bad in (-5, True):
			with pytest.raises(InvalidProgressError):
				progression.add_xp(ledger, bad, "manual")

	def test_level_up(self):
		ledger = XPLedger.fresh("u1")
		change = progression.add_xp(ledger, 60, "quiz")
		assert change.leveled_up is False
		change = progression.add_xp(ledger, 60, "quiz", "c1_0_0")
		assert change.leveled_up is True
		assert change.new_level == 2
		assert ledger.total_xp == 120
		assert ledger.xp_to_next_level == 130

	def test_total_is_capped_to_column_range(self):
		ledger = XPLedger.fresh("u1")
		ledger.total_xp = progression.MAX_TOTAL_XP - 5
		with pytest.raises(InvalidProgressError):
			progression.add_xp(ledger, 10, "manual")
		assert ledger.total_xp == progression.MAX_TOTAL_XP - 5
		progression.add_xp(ledger, 5, "manual")
		assert ledger.total_xp == progression.MAX_TOTAL_XP


class TestStreak:
	def test_first_activity_starts_streak(self):
		ledger = XPLedger.fresh("u1")
		update = progression.update_streak(ledger, date(2024, 3, 1))
		assert update == (True, False, 1, 1)
		assert ledger.streak_last_activity == date(2024, 3, 1)

	def test_same_day_is_noop(self):
		ledger = XPLedger.fresh("u1")
		progression.update_streak(ledger, date(2024, 3, 1))
		update = progression.update_streak(ledger, date(2024, 3, 1))
		assert update.continued is False
		assert ledger.streak_current == 1

	def test_consecutive_days_continue(self):
		ledger = XPLedger.fresh("u1")
		for day in (1, 2, 3):
			update = progression.update_streak(ledger, date(2024, 3, day))
		assert update.current == 3
		assert update.longest == 3

	def test_gap_resets_but_keeps_longest(self):
		ledger = XPLedger.fresh("u1")
		progression.update_streak(ledger, date(2024, 3, 1))
		progression.update_streak(ledger, date(2024, 3, 2))
		update = progression.update_streak(ledger, date(2024, 3, 5))
		assert update.continued is True
		assert update.was_reset is True
		assert ledger.streak_current == 1
		assert ledger.streak_longest == 2

	def test_bonus_is_capped(self):
		config = ProgressionConfig(streak_bonus_per_day=5, streak_bonus_cap=20)
		assert progression.streak_bonus(progression.StreakUpdate(True, False, 1, 1), config) == 0
		assert progression.streak_bonus(progression.StreakUpdate(True, False, 3, 3), config) == 15
		assert progression.streak_bonus(progression.StreakUpdate(True, False, 9, 9), config) == 20
		assert progression.streak_bonus(progression.StreakUpdate(False, False, 9, 9), config) == 0


class TestQuizGate:
	def test_half_passes(self):
		assert progression.evaluate_quiz(1, 2) == (50, True)

	def test_forty_nine_fails(self):
		assert progression.evaluate_quiz(49, 100) == (49, False)

	def test_rounding(self):
		assert progression.evaluate_quiz(2, 3).percentage == 67
		assert progression.evaluate_quiz(1, 3).percentage == 33

	def test_invalid_inputs(self):
		with pytest.raises(InvalidProgressError):
			progression.evaluate_quiz(1, 0)
		with pytest.raises(InvalidProgressError):
			progression.evaluate_quiz(3, 2)

	def test_custom_threshold(self):
		assert progression.evaluate_quiz(3, 5, pass_threshold=70) == (60, False)


class TestUnlocks:
	def test_initial_state(self):
		chs = chapters()
		assert progression.is_lesson_unlocked(chs, 0, 0)
		assert not progression.is_lesson_unlocked(chs, 0, 1)
		assert not progression.is_chapter_unlocked(chs, 1)
		assert not progression.is_lesson_unlocked(chs, 1, 0)

	def test_non_last_lesson_unlocks_only_next(self):
		chs = chapters()
		outcome = progression.apply_quiz_result(chs, 0, 0, 2, 2, CONFIG)
		assert outcome.passed
		assert outcome.next_lesson == (0, 1)
		assert outcome.next_lesson_unlocked
		assert not outcome.chapter_completed
		assert progression.is_lesson_unlocked(chs, 0, 1)
		assert not progression.is_lesson_unlocked(chs, 1, 0)

	def test_last_lesson_completes_chapter_and_unlocks_next(self):
		chs = chapters()
		progression.apply_quiz_result(chs, 0, 0, 1, 2, CONFIG)
		outcome = progression.apply_quiz_result(chs, 0, 1, 1, 2, CONFIG)
		assert outcome.chapter_completed
		assert outcome.next_chapter_unlocked
		assert chs[0]["completed"] is True
		assert progression.is_chapter_unlocked(chs, 1)
		assert progression.is_lesson_unlocked(chs, 1, 0)
		assert not progression.is_lesson_unlocked(chs, 1, 1)

	def test_chapter_completion_is_edge_triggered(self):
		chs = chapters(1, 1)
		chs[0]["lessons"][0]["completed"] = True
		assert progression.update_chapter_completion(chs, 0) is True
		assert progression.update_chapter_completion(chs, 0) is False

	def test_bad_indexes(self):
		with pytest.raises(NotFoundError):
			progression.is_lesson_unlocked(chapters(), 0, 5)
		with pytest.raises(NotFoundError):
			progression.is_chapter_unlocked(chapters(), 9)

	def test_annotate_does_not_mutate(self):
		chs = chapters()
		view = progression.annotate_progress(chs)
		assert view[0]["lessons"][0]["unlocked"] is True
		assert view[1]["unlocked"] is False
		assert "unlocked" not in chs[0]["lessons"][0]


class TestQuizOutcome:
	def test_perfect_score_bonuses(self):
		outcome = progression.apply_quiz_result(chapters(), 0, 0, 2, 2, CONFIG)
		assert outcome.xp_breakdown == {"base": 15, "perfect": 10, "excellent": 5}
		assert outcome.xp_awarded == 30

	def test_chapter_bonus_added_once(self):
		chs = chapters(2, 1)
		outcome = progression.apply_quiz_result(chs, 0, 0, 1, 2, CONFIG, base_xp=20)
		assert outcome.xp_breakdown == {"base": 20, "chapter": 50}
		again = progression.apply_quiz_result(chs, 0, 0, 2, 2, CONFIG, base_xp=20)
		assert again.xp_awarded == 0
		assert again.newly_completed is False
		assert chs[0]["lessons"][0]["attempts"] == 2

	def test_failure_records_attempt_only(self):
		chs = chapters()
		outcome = progression.apply_quiz_result(chs, 0, 0, 0, 2, CONFIG)
		lesson = chs[0]["lessons"][0]
		assert outcome.passed is False
		assert outcome.xp_awarded == 0
		assert lesson["attempts"] == 1
		assert lesson["quizScore"] == 0
		assert lesson["quizPassed"] is False
		assert not lesson.get("completed")
		assert not progression.is_lesson_unlocked(chs, 0, 1)

	def test_failed_retry_keeps_completion(self):
		chs = chapters()
		progression.apply_quiz_result(chs, 0, 0, 2, 2, CONFIG)
		progression.apply_quiz_result(chs, 0, 0, 0, 2, CONFIG)
		assert chs[0]["lessons"][0]["completed"] is True
		assert progression.is_lesson_unlocked(chs, 0, 1)

	def test_locked_lesson_rejected_without_mutation(self):
		chs = chapters()
		with pytest.raises(LockedLessonError):
			progression.apply_quiz_result(chs, 1, 0, 2, 2, CONFIG)
		assert "attempts" not in chs[1]["lessons"][0]

	def test_lesson_completion_uses_lesson_xp(self):
		chs = chapters(1, 2)
		outcome = progression.apply_lesson_completion(chs, 0, 0, CONFIG)
		assert outcome.xp_awarded == 10
		repeat = progression.apply_lesson_completion(chs, 0, 0, CONFIG)
		assert repeat.xp_awarded == 0


def test_due_milestones():
	ledger = XPLedger.fresh("u1")
	ledger.streak_longest = 7
	ledger.current_level = 5
	names = [name for name, _ in progression.due_milestones(ledger, passed_quizzes=3)]
	assert names == ["Week Warrior", "Rising Star"]
