# fest/constraints.py
"""Translate store constraint violations into domain errors.

Postgres (asyncpg) reports the violated constraint by name. SQLite only
reports the table and column list, so each known constraint also records the
columns it covers and SQLite messages are matched on those.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from fest.errors import Conflict, FestError, InternalFailure

logger = logging.getLogger("constraints")


@dataclass(frozen=True)
class ConstraintRule:
    table: str
    columns: Tuple[str, ...]
    code: str
    message: str


CONSTRAINT_RULES: Dict[str, ConstraintRule] = {
    "uq_teams_name": ConstraintRule(
        "teams", ("name",), "team_name_taken", "Team name already exists"
    ),
    "uq_team_members_team_user": ConstraintRule(
        "team_members", ("team_id", "user_id"), "already_member", "User is already a member of this team"
    ),
    "uq_invitations_pending": ConstraintRule(
        "invitations", ("team_id", "invitee_id"), "invitation_pending", "User already has a pending invitation to this team"
    ),
    "uq_round_checkins_user_round": ConstraintRule(
        "round_checkins", ("user_id", "round_id"), "already_checked_in", "Participant already checked in for this round"
    ),
    "uq_gate_checkins_user": ConstraintRule(
        "gate_checkins", ("user_id",), "already_checked_in", "Participant already checked in"
    ),
    "uq_event_rounds_event_round_no": ConstraintRule(
        "event_rounds", ("event_id", "round_no"), "duplicate_round", "Round number already exists for this event"
    ),
    "uq_round_rules_round_rule_no": ConstraintRule(
        "round_rules", ("round_id", "rule_no"), "duplicate_rule", "Rule number already exists for this round"
    ),
    "uq_event_prizes_event_position": ConstraintRule(
        "event_prizes", ("event_id", "position"), "duplicate_prize_position", "Prize position already exists for this event"
    ),
    "uq_event_crew_event_user": ConstraintRule(
        "event_crew", ("event_id", "user_id"), "duplicate_crew", "User is already crew for this event"
    ),
    "uq_event_registrations_event_user": ConstraintRule(
        "event_registrations", ("event_id", "user_id"), "already_registered", "User is already registered for this event"
    ),
    "uq_event_registrations_event_team": ConstraintRule(
        "event_registrations", ("event_id", "team_id"), "already_registered", "Team is already registered for this event"
    ),
    "uq_round_results_round_user": ConstraintRule(
        "round_results", ("round_id", "user_id"), "duplicate_result", "Result already recorded for this participant"
    ),
    "uq_round_results_round_team": ConstraintRule(
        "round_results", ("round_id", "team_id"), "duplicate_result", "Result already recorded for this team"
    ),
    "uq_prize_awards_event_user": ConstraintRule(
        "prize_awards", ("event_id", "user_id"), "duplicate_award", "Prize already awarded to this participant"
    ),
    "uq_prize_awards_event_team": ConstraintRule(
        "prize_awards", ("event_id", "team_id"), "duplicate_award", "Prize already awarded to this team"
    ),
}

_SQLITE_UNIQUE_RE = re.compile(r"UNIQUE constraint failed: (?P<cols>[\w.,\s]+)")


def _pg_constraint_name(exc: IntegrityError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        name = getattr(candidate, "constraint_name", None)
        if name:
            return name
    return None


def _sqlite_constraint_name(exc: IntegrityError) -> Optional[str]:
    match = _SQLITE_UNIQUE_RE.search(str(getattr(exc, "orig", exc)))
    if not match:
        return None

    qualified = [part.strip() for part in match.group("cols").split(",") if part.strip()]
    tables = {part.split(".", 1)[0] for part in qualified if "." in part}
    if len(tables) != 1:
        return None
    table = tables.pop()
    columns = {part.split(".", 1)[1] for part in qualified}

    for name, rule in CONSTRAINT_RULES.items():
        if rule.table == table and set(rule.columns) == columns:
            return name
    return None


def constraint_name(exc: IntegrityError) -> Optional[str]:
    """Best-effort name of the violated constraint, or None if unknown."""

    return _pg_constraint_name(exc) or _sqlite_constraint_name(exc)


def translate_integrity_error(
    exc: IntegrityError, *, details: Optional[dict] = None
) -> FestError:
    """Map an IntegrityError to Conflict, or InternalFailure when unrecognised."""

    name = constraint_name(exc)
    rule = CONSTRAINT_RULES.get(name) if name else None
    if rule is None:
        logger.error("Unmapped integrity error: %s", exc.orig if hasattr(exc, "orig") else exc)
        return InternalFailure("Database constraint violated")
    return Conflict(rule.message, code=rule.code, details=details)


__all__ = ["CONSTRAINT_RULES", "ConstraintRule", "constraint_name", "translate_integrity_error"]
