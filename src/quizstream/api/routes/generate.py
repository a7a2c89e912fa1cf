from __future__ import annotations

from fastapi import APIRouter

from quizstream.api.dependencies import Quizzes
from quizstream.models.api_models import QuizRequest, QuizResponse

router = APIRouter()


@router.post("/quiz", response_model=QuizResponse)
async def generate_quiz(body: QuizRequest, quizzes: Quizzes) -> QuizResponse:
    """Generate a whole quiz in one request.

    Lines the model got wrong are skipped and counted in ``parse_failures``.
    Upstream failures return the standard error envelope.
    """
    result = await quizzes.collect(body.topic, count=body.count, difficulty=body.difficulty)
    return QuizResponse(
        topic=body.topic,
        questions=result.records,
        count=len(result.records),
        parse_failures=result.stats.parse_failures,
    )
