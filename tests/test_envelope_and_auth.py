import json
import sqlite3

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from starlette.requests import Request

from fest.auth_token import create_access_token, decode_user_id, get_current_user, require_admin, require_ops
from fest.errors import Conflict, InternalFailure, NotFound, PaymentRequired
from fest.main import fest_error_handler, integrity_error_handler, unhandled_error_handler
from fest.models.enums import Role
from fest.models.user import User
from fest.responses import failure, ok


def _request(path="/ops/events/1/rounds/1/check-in"):
    return Request({"type": "http", "method": "POST", "path": path, "headers": [], "query_string": b""})


def _body(response):
    return json.loads(response.body)


def test_ok_envelope():
    response = ok({"id": 1}, "Fetched")
    assert response.status_code == 200
    assert _body(response) == {"status": True, "message": "Fetched", "data": {"id": 1}}


def test_failure_envelope_flattens_details():
    exc = PaymentRequired(
        "Some members have not paid", code="payment_pending", details={"payment_pending_emails": ["x@y.edu"]}
    )
    response = failure(exc)

    assert response.status_code == 402
    assert _body(response) == {
        "status": False,
        "message": "Some members have not paid",
        "code": "payment_pending",
        "payment_pending_emails": ["x@y.edu"],
    }


@pytest.mark.anyio
async def test_domain_errors_render_with_their_status():
    response = await fest_error_handler(_request(), NotFound("Round not found", code="round_not_found"))
    assert response.status_code == 404
    assert _body(response)["code"] == "round_not_found"

    internal = await fest_error_handler(_request(), InternalFailure("boom"))
    assert internal.status_code == 500


@pytest.mark.anyio
async def test_integrity_errors_become_conflicts():
    exc = IntegrityError(
        "INSERT ...", {}, sqlite3.IntegrityError("UNIQUE constraint failed: teams.name")
    )
    response = await integrity_error_handler(_request("/teams"), exc)

    assert response.status_code == 409
    assert _body(response)["code"] == "team_name_taken"


@pytest.mark.anyio
async def test_unexpected_errors_hide_details():
    response = await unhandled_error_handler(_request(), RuntimeError("secret stack detail"))
    body = _body(response)

    assert response.status_code == 500
    assert body["code"] == "internal_error"
    assert "secret" not in body["message"]


def test_conflict_defaults():
    exc = Conflict("dup")
    assert (exc.status_code, exc.code, exc.details) == (409, "conflict", {})


def test_token_round_trip_and_garbage():
    token = create_access_token({"user_id": 42})
    assert decode_user_id(token) == 42
    assert decode_user_id("not-a-token") is None
    assert decode_user_id(create_access_token({"user_id": "abc"})) is None


@pytest.mark.anyio
async def test_current_user_resolution(session, factory):
    uid = await factory.user("ana@inst2.edu")

    user = await get_current_user(token=create_access_token({"user_id": uid}), db=session)
    assert user.id == uid

    with pytest.raises(HTTPException) as excinfo:
        await get_current_user(token=create_access_token({"user_id": uid + 100}), db=session)
    assert excinfo.value.status_code == 401


def test_role_guards():
    volunteer = User(email="v@fest.edu", role=Role.VOLUNTEER)
    participant = User(email="p@fest.edu", role=Role.PARTICIPANT)
    admin = User(email="a@fest.edu", role=Role.ADMIN)

    assert require_ops(volunteer) is volunteer
    assert require_admin(admin) is admin
    for guard, user in ((require_ops, participant), (require_admin, volunteer)):
        with pytest.raises(HTTPException) as excinfo:
            guard(user)
        assert excinfo.value.status_code == 403
