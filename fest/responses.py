# fest/responses.py
"""The JSON envelope every route answers with: ``{status, message, data}``."""

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from fest.batch import BatchOutcome
from fest.errors import FestError


def ok(data: Any = None, message: str = "OK", status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": True, "message": message, "data": jsonable_encoder(data)},
    )


def failure(exc: FestError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_payload()))


def batch(outcome: BatchOutcome, *, verb: str, noun: str, extra: Optional[dict] = None) -> JSONResponse:
    """Render a batch outcome: 201 all recorded, 207 some, 400 none."""

    code = outcome.status_code
    data = outcome.to_data()
    if extra:
        data.update(extra)
    return JSONResponse(
        status_code=code,
        content={
            "status": code != 400,
            "message": outcome.message(verb=verb, noun=noun),
            "data": jsonable_encoder(data),
        },
    )
