from fastapi import HTTPException

from ..gemini_client import GeminiClient


async def get_gemini_client():
	try:
		client = GeminiClient()
	except ValueError as err:
		raise HTTPException(status_code=500, detail="API Key not configured on server.") from err
	try:
		yield client
	finally:
		await client.aclose()
