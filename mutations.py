"""
Membership, RSVP and voting writes.

Each rule is built on MongoDB's single-document atomic operators so that
concurrent requests cannot double-insert a member or count a vote twice.
Joining, leaving and RSVPing again are silent no-ops; voting again is an
error.
"""

import logging
from typing import Any, Dict, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from database import collection_name, to_object_id, utcnow
from errors import AlreadyVoted, InvalidOption, NotFound, ValidationError
from schemas import Club, Event, Poll, Student

logger = logging.getLogger(__name__)


def _club_and_student(db: Database, club_id: str, user_id: ObjectId) -> Tuple[ObjectId, Dict[str, Any]]:
    student = db[collection_name(Student)].find_one({"user": user_id}, {"_id": 1})
    if not student:
        raise NotFound("Student profile not found")
    oid = to_object_id(club_id)
    if oid is None or db[collection_name(Club)].find_one({"_id": oid}, {"_id": 1}) is None:
        raise NotFound("Club not found")
    return oid, student


def _update_membership(db: Database, club_id: str, user_id: ObjectId, op: str) -> Dict[str, Any]:
    """
    Apply `op` ($addToSet or $pull) to both sides of a membership.

    The student side is written first; if the club side then fails or the club
    has vanished, the student write is reversed before the error surfaces.
    """
    oid, student = _club_and_student(db, club_id, user_id)
    undo = "$pull" if op == "$addToSet" else "$addToSet"
    students = db[collection_name(Student)]
    before = students.find_one_and_update(
        {"_id": student["_id"]},
        {op: {"joined_clubs": oid}, "$set": {"updated_at": utcnow()}},
        projection={"joined_clubs": 1},
        return_document=ReturnDocument.BEFORE,
    )
    student_changed = (oid in (before or {}).get("joined_clubs", [])) != (op == "$addToSet")

    try:
        club = db[collection_name(Club)].find_one_and_update(
            {"_id": oid},
            {op: {"members": user_id}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
    except Exception:
        if student_changed:
            students.update_one({"_id": student["_id"]}, {undo: {"joined_clubs": oid}})
        logger.error(f"Club membership update failed for club {club_id}; student side reverted")
        raise

    if club is None:
        if student_changed:
            students.update_one({"_id": student["_id"]}, {undo: {"joined_clubs": oid}})
        raise NotFound("Club not found")
    return club


def join_club(db: Database, club_id: str, user_id: ObjectId) -> Dict[str, Any]:
    return _update_membership(db, club_id, user_id, "$addToSet")


def leave_club(db: Database, club_id: str, user_id: ObjectId) -> Dict[str, Any]:
    return _update_membership(db, club_id, user_id, "$pull")


def rsvp_event(db: Database, event_id: str, user_id: ObjectId) -> Tuple[Dict[str, Any], bool]:
    """Add the user to the attendee set. Returns (event, already_attending)."""
    oid = to_object_id(event_id)
    if oid is None:
        raise NotFound("Event not found")
    events = db[collection_name(Event)]
    before = events.find_one_and_update(
        {"_id": oid},
        {"$addToSet": {"attendees": user_id}},
        return_document=ReturnDocument.BEFORE,
    )
    if before is None:
        raise NotFound("Event not found")
    already = user_id in before.get("attendees", [])
    if already:
        return before, True
    return events.find_one({"_id": oid}), False


def cast_vote(db: Database, poll_id: str, user_id: ObjectId, option_key: str) -> Dict[str, Any]:
    key = (option_key or "").strip()
    if not key:
        raise ValidationError("Option key is required")
    oid = to_object_id(poll_id)
    polls = db[collection_name(Poll)]
    poll = polls.find_one({"_id": oid}) if oid else None
    if not poll:
        raise NotFound("Poll not found")

    if any(v.get("user") == user_id for v in poll.get("votes", [])):
        raise AlreadyVoted("User already voted")

    keys = [opt.get("option_key") for opt in poll.get("options", [])]
    if key not in keys:
        raise InvalidOption("Invalid option")
    index = keys.index(key)

    # counter and vote record move together, guarded on this user not having voted
    updated = polls.find_one_and_update(
        {"_id": oid, "votes.user": {"$ne": user_id}},
        {
            "$inc": {f"options.{index}.votes": 1},
            "$push": {"votes": {"user": user_id, "option_key": key}},
            "$set": {"updated_at": utcnow()},
        },
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        if polls.find_one({"_id": oid}, {"_id": 1}) is None:
            raise NotFound("Poll not found")
        raise AlreadyVoted("User already voted")
    return updated
