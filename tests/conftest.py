import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from learnsphere import models  # noqa: F401
from learnsphere.db import Base, get_db
from learnsphere.main import app
from learnsphere.routers.deps import get_gemini_client
from learnsphere.schemas import CourseDocument


def course_dict(chapters: int = 2, lessons: int = 2, *, title: str = "Intro to Rust") -> dict:
	return {
		"title": title,
		"description": "Learn the basics.",
		"level": "Beginner",
		"imageUrl": "https://example.com/rust.png",
		"chapters": [
			{
				"title": f"Chapter {c + 1}",
				"lessons": [
					{
						"title": f"Lesson {c + 1}.{l + 1}",
						"content": "<p>Body</p>",
						"xp": 10,
						"quiz": {
							"title": f"Quiz {c + 1}.{l + 1}",
							"questions": [
								{"question": "Pick A", "options": ["A", "B"], "correctAnswer": "A"},
								{"question": "Pick B", "options": ["A", "B"], "correctAnswer": "B"},
							],
						},
					}
					for l in range(lessons)
				],
			}
			for c in range(chapters)
		],
	}


def make_document(chapters: int = 2, lessons: int = 2) -> CourseDocument:
	return CourseDocument.model_validate(course_dict(chapters, lessons))


class FakeGemini:
	def __init__(self) -> None:
		self.replies: list = []
		self.calls: list = []

	def queue(self, reply) -> None:
		self.replies.append(reply)

	def _next(self):
		reply = self.replies.pop(0)
		if isinstance(reply, Exception):
			raise reply
		return reply

	async def generate(self, prompt, *, json_mode=False):
		self.calls.append({"prompt": prompt, "json_mode": json_mode})
		return self._next()

	async def chat(self, message, *, history=None, system_instruction=None):
		self.calls.append({"message": message, "history": history, "system_instruction": system_instruction})
		return self._next()


@pytest.fixture
def session_factory(tmp_path):
	engine = create_engine(
		f"sqlite:///{tmp_path / 'test.db'}",
		connect_args={"check_same_thread": False},
		future=True,
	)
	Base.metadata.create_all(bind=engine)
	factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine, future=True)
	yield factory
	engine.dispose()


@pytest.fixture
def db(session_factory):
	session = session_factory()
	yield session
	session.close()


@pytest.fixture
def fake_gemini():
	return FakeGemini()


@pytest.fixture
def client(session_factory, fake_gemini):
	def _get_db():
		session = session_factory()
		try:
			yield session
		finally:
			session.close()

	app.dependency_overrides[get_db] = _get_db
	app.dependency_overrides[get_gemini_client] = lambda: fake_gemini
	yield TestClient(app)
	app.dependency_overrides.clear()


@pytest.fixture
def generated_course_json():
	return json.dumps(course_dict(title="Generated"))
