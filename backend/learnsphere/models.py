from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Date, Integer, Text, Boolean, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from .db import Base


def _new_course_id() -> str:
	return uuid.uuid4().hex


class XPLedger(Base):
	__tablename__ = "xp_ledgers"
	# Autoincrement id doubles as insertion order for leaderboard ties
	id = Column(Integer, primary_key=True, autoincrement=True)
	user_id = Column(String(128), unique=True, index=True, nullable=False)
	total_xp = Column(Integer, default=0, nullable=False)
	current_level = Column(Integer, default=1, nullable=False)
	xp_to_next_level = Column(Integer, default=100, nullable=False)
	streak_current = Column(Integer, default=0, nullable=False)
	streak_longest = Column(Integer, default=0, nullable=False)
	streak_last_activity = Column(Date, nullable=True)
	version = Column(Integer, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	achievements = relationship(
		"Achievement",
		back_populates="ledger",
		order_by="Achievement.id",
		cascade="all, delete-orphan",
		lazy="selectin",
	)

	__mapper_args__ = {"version_id_col": version}

	@classmethod
	def fresh(cls, user_id: str) -> "XPLedger":
		return cls(
			user_id=user_id,
			total_xp=0,
			current_level=1,
			xp_to_next_level=100,
			streak_current=0,
			streak_longest=0,
			streak_last_activity=None,
		)

	def achievement_names(self) -> set[str]:
		return {a.name for a in self.achievements}


class Achievement(Base):
	__tablename__ = "achievements"
	__table_args__ = (UniqueConstraint("ledger_id", "name", name="uq_achievement_ledger_name"),)
	id = Column(Integer, primary_key=True, autoincrement=True)
	ledger_id = Column(Integer, ForeignKey("xp_ledgers.id", ondelete="CASCADE"), nullable=False, index=True)
	name = Column(String(128), nullable=False)
	description = Column(Text, nullable=True)
	xp_reward = Column(Integer, default=0, nullable=False)
	earned_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	ledger = relationship("XPLedger", back_populates="achievements")


class XPEvent(Base):
	__tablename__ = "xp_events"
	id = Column(Integer, primary_key=True, autoincrement=True)
	user_id = Column(String(128), index=True, nullable=False)
	amount = Column(Integer, nullable=False)
	source = Column(String(64), nullable=False)
	source_id = Column(String(256), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class QuizAttempt(Base):
	__tablename__ = "quiz_attempts"
	id = Column(Integer, primary_key=True, autoincrement=True)
	user_id = Column(String(128), index=True, nullable=False)
	course_id = Column(String(64), index=True, nullable=False)
	chapter_index = Column(Integer, nullable=False)
	lesson_index = Column(Integer, nullable=False)
	score = Column(Integer, nullable=False)
	total_questions = Column(Integer, nullable=False)
	percentage = Column(Integer, nullable=False)
	passed = Column(Boolean, nullable=False)
	xp_awarded = Column(Integer, default=0, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Course(Base):
	__tablename__ = "courses"
	id = Column(String(64), primary_key=True, default=_new_course_id)
	owner_id = Column(String(128), index=True, nullable=False)
	title = Column(String(256), nullable=False)
	description = Column(Text, nullable=False)
	level = Column(String(32), nullable=False)
	image_url = Column(Text, nullable=False)
	project_description = Column(Text, nullable=True)
	# Chapter/lesson tree as a JSON document; order and progress flags live here
	chapters = Column(JSON, default=list, nullable=False)
	version = Column(Integer, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	__mapper_args__ = {"version_id_col": version}
