from __future__ import annotations

import io
import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, status
from pydantic import BaseModel, Field, validator

from bfasm.config import DEFAULT_TAPE_SIZE, MAX_RUN_TAPE_SIZE, TapeConfig
from bfasm.interpreter import RunInterpreter, StepLimitExceeded
from bfasm.translator import TranslationError, Translator

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 1_000_000


def _translation_error(exc: TranslationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={
            "error": type(exc).__name__,
            "message": exc.message,
            "line": exc.line,
            "column": exc.column,
        },
    )


class TranslateRequest(BaseModel):
    source: str
    tape_size: int = DEFAULT_TAPE_SIZE


class TranslateResponse(BaseModel):
    assembly: str
    tape_size: int
    label_count: int
    run_count: int
    final_pointer: int
    notices: List[str]


class RunRequest(BaseModel):
    source: str
    input: str = ""
    tape_size: int = Field(default=DEFAULT_TAPE_SIZE, ge=1, le=MAX_RUN_TAPE_SIZE)
    max_steps: int = Field(default=DEFAULT_MAX_STEPS, ge=1)

    @validator("input")
    def validate_input(cls, value: str) -> str:
        if any(ord(ch) > 255 for ch in value):
            raise ValueError("input must only contain characters in the range 0-255")
        return value


class RunResponse(BaseModel):
    output: str
    steps: int


def create_app(*, max_steps: Optional[int] = None) -> FastAPI:
    step_cap = max_steps or DEFAULT_MAX_STEPS
    app = FastAPI(title="bfasm API", version="0.1.0")

    @app.post("/api/translate", response_model=TranslateResponse)
    def translate(payload: TranslateRequest) -> TranslateResponse:
        config = TapeConfig.from_size(payload.tape_size)
        translator = Translator(config=config)
        buffer = io.StringIO()
        try:
            result = translator.translate(payload.source, buffer)
        except TranslationError as exc:
            raise _translation_error(exc) from exc
        return TranslateResponse(
            assembly=buffer.getvalue(),
            tape_size=result.tape_size,
            label_count=result.label_count,
            run_count=result.run_count,
            final_pointer=result.final_pointer,
            notices=list(config.notices),
        )

    @app.post("/api/run", response_model=RunResponse)
    def run(payload: RunRequest) -> RunResponse:
        interpreter = RunInterpreter(tape_size=payload.tape_size)
        steps = 0
        try:
            for state in interpreter.step(
                payload.source,
                input_data=[ord(ch) for ch in payload.input],
                max_steps=min(payload.max_steps, step_cap),
            ):
                steps = state.step
        except TranslationError as exc:
            raise _translation_error(exc) from exc
        except StepLimitExceeded as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        logger.debug("ran program for %d steps", steps)
        return RunResponse(output=bytes(interpreter.output_buffer).decode("latin-1"), steps=steps)

    return app


__all__ = ["create_app"]
