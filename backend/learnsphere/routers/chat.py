from __future__ import annotations
import logging
from typing import List, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..errors import GenerationError
from ..gemini_client import GeminiClient
from .deps import get_gemini_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

TUTOR_INSTRUCTION = (
	"You are LearnSphere Tutor, a friendly and encouraging AI assistant. "
	"Explain concepts clearly and concisely, use short examples, and ask a follow-up question "
	"when the learner seems unsure. Stay on educational topics."
)


class ChatPart(BaseModel):
	text: str


class ChatTurn(BaseModel):
	role: Literal["user", "model"]
	parts: List[ChatPart]


class ChatRequest(BaseModel):
	message: str = Field(min_length=1)
	history: List[ChatTurn] = Field(default_factory=list)


@router.post("/chat")
async def chat(req: ChatRequest, client: GeminiClient = Depends(get_gemini_client)):
	message = req.message.strip()
	if not message:
		raise HTTPException(status_code=400, detail="Message is required.")
	try:
		reply = await client.chat(
			message,
			history=[t.model_dump() for t in req.history],
			system_instruction=TUTOR_INSTRUCTION,
		)
	except GenerationError as e:
		logger.error("tutor chat failed: %s", e)
		raise HTTPException(status_code=502, detail="Failed to get a response from the AI tutor.")
	return {"reply": reply}
