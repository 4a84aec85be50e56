from __future__ import annotations

import redis
from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from fluency.api.deps import EngineRegistry, get_engines, get_redis, validate_learner_id
from fluency.api.models import (
    AnswerRequest,
    AnswerResponse,
    ModeRequest,
    QuestionBlockResponse,
    QuestionOut,
    UserDataPayload,
)
from fluency.core.models import StudentState
from fluency.engine import FluencyEngine
from fluency.progress import ProgressSummary, summarize_progress
from fluency.storage import RedisStorageAdapter

router = APIRouter()

_KEY_PATTERN = r"^[A-Za-z0-9_.-]{1,128}$"


def _engine(engines: EngineRegistry, learner_id: str) -> FluencyEngine:
    try:
        return engines.engine_for(learner_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e


def _user_data_store(r: redis.Redis, learner_id: str) -> RedisStorageAdapter:
    try:
        validate_learner_id(learner_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return RedisStorageAdapter(r=r, learner_id=learner_id)


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/user-data/{learner_id}/{key}", response_model=UserDataPayload)
async def get_user_data_route(
    learner_id: str,
    key: str = Path(..., pattern=_KEY_PATTERN),
    r: redis.Redis = Depends(get_redis),
) -> UserDataPayload:
    blob = _user_data_store(r, learner_id).load(key)
    if blob is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User data not found")
    return UserDataPayload(data=blob)


@router.put("/user-data/{learner_id}/{key}", response_model=UserDataPayload)
async def put_user_data_route(
    learner_id: str,
    payload: UserDataPayload,
    key: str = Path(..., pattern=_KEY_PATTERN),
    r: redis.Redis = Depends(get_redis),
) -> UserDataPayload:
    if not _user_data_store(r, learner_id).save(key, payload.data):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="User data store unavailable")
    return payload


@router.delete("/user-data/{learner_id}/{key}")
async def delete_user_data_route(
    learner_id: str,
    key: str = Path(..., pattern=_KEY_PATTERN),
    r: redis.Redis = Depends(get_redis),
) -> dict[str, str]:
    if not _user_data_store(r, learner_id).delete(key):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User data not found")
    return {"status": "deleted"}


@router.post("/learners/{learner_id}/questions/next", response_model=QuestionBlockResponse)
async def next_questions_route(
    learner_id: str,
    count: int | None = Query(None, ge=1, le=100),
    engines: EngineRegistry = Depends(get_engines),
) -> QuestionBlockResponse:
    engine = _engine(engines, learner_id)
    block = engine.scheduler.get_next_question_block(limit=count)
    return QuestionBlockResponse(questions=[QuestionOut.from_question(q) for q in block])


@router.post("/learners/{learner_id}/answers", response_model=AnswerResponse)
async def submit_answer_route(
    learner_id: str,
    payload: AnswerRequest,
    engines: EngineRegistry = Depends(get_engines),
) -> AnswerResponse:
    engine = _engine(engines, learner_id)
    result = engine.scheduler.submit_answer(payload.question_id, payload.answer, payload.response_time_ms)
    if not result.found or result.correct_answer is None or result.answer_type is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not found or expired")
    return AnswerResponse(
        question_id=payload.question_id,
        is_correct=result.is_correct,
        correct_answer=result.correct_answer,
        answer_type=result.answer_type,
        retry=result.retry,
    )


@router.get("/learners/{learner_id}/state", response_model=StudentState)
async def get_state_route(learner_id: str, engines: EngineRegistry = Depends(get_engines)) -> StudentState:
    return _engine(engines, learner_id).scheduler.get_state()


@router.post("/learners/{learner_id}/reset", response_model=StudentState)
async def reset_route(learner_id: str, engines: EngineRegistry = Depends(get_engines)) -> StudentState:
    engine = _engine(engines, learner_id)
    engine.scheduler.reset()
    return engine.scheduler.get_state()


@router.put("/learners/{learner_id}/mode", response_model=StudentState)
async def set_mode_route(
    learner_id: str,
    payload: ModeRequest,
    engines: EngineRegistry = Depends(get_engines),
) -> StudentState:
    engine = _engine(engines, learner_id)
    engine.scheduler.set_mode(payload.mode)
    return engine.scheduler.get_state()


@router.get("/learners/{learner_id}/progress", response_model=ProgressSummary)
async def progress_route(learner_id: str, engines: EngineRegistry = Depends(get_engines)) -> ProgressSummary:
    engine = _engine(engines, learner_id)
    return summarize_progress(engine.scheduler.get_state(), engine.catalog)
