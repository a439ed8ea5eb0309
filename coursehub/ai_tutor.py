import logging

from flask import current_app
from groq import Groq

from coursehub.errors import BadRequest, UpstreamError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are an AI tutor helping students with programming and computer science topics."


def get_groq_client():
    api_key = current_app.config.get("GROQ_API_KEY")
    if not api_key: return None
    return Groq(api_key=api_key)


def ask_tutor(question):
    """Forward a question to the chat model and return its answer verbatim."""
    if not question or not question.strip():
        raise BadRequest("Question required")

    client = get_groq_client()
    if not client:
        logger.error("AI tutor requested but GROQ_API_KEY is not set")
        raise UpstreamError("Server AI is not configured.")

    try:
        completion = client.chat.completions.create(
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": question},
            ],
            model=current_app.config["GROQ_MODEL"],
        )
        return completion.choices[0].message.content
    except Exception as e:
        logger.error("AI tutor error: %s", e)
        raise UpstreamError() from e
