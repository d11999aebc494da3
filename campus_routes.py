import logging
import re
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional, Set, Union

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BeforeValidator, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import (
    as_utc, collection_name, create_document, get_db, get_documents,
    serialize_doc, serialize_list, to_object_id, utcnow,
)
from errors import Conflict, NotFound, ValidationError, format_validation_errors
from mutations import cast_vote, rsvp_event
from responses import ok
from schemas import (
    Announcement, Club, Event, Feedback, LostItem, LOST_ITEM_STATUSES,
    Payload, Poll, PollOption, Resource, Student, STUDENT_ID_PATTERN, Teacher, User,
)
from security import Principal, get_current_user, require_roles
from uploads import save_lost_found_image

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(get_current_user)])

def calendar_digits(value: Any) -> Any:
    """Read a bare four-digit string as a year rather than a Unix timestamp."""
    if isinstance(value, str) and value.strip().isdigit():
        digits = value.strip()
        if len(digits) != 4:
            raise ValueError("Input should be a valid date")
        return f"{digits}-01-01T00:00:00"
    return value


CalendarDatetime = Annotated[datetime, BeforeValidator(calendar_digits)]

_datetime = TypeAdapter(CalendarDatetime)


# -------------------- Response shaping -------------------- #

def shape_club(club: Dict[str, Any], joined_club_ids: Optional[Set[str]] = None) -> Dict[str, Any]:
    club_id = str(club["_id"])
    return {
        "id": club_id,
        "name": club.get("name"),
        "description": club.get("description"),
        "category": club.get("category"),
        "members": len(club.get("members") or []),
        "event_count": len(club.get("events_hosted") or []),
        "joined": club_id in (joined_club_ids or set()),
        **serialize_doc({"created_at": club.get("created_at"), "updated_at": club.get("updated_at")}),
    }


def shape_event(event: Dict[str, Any]) -> Dict[str, Any]:
    data = serialize_doc(event)
    data["attendee_count"] = len(event.get("attendees") or [])
    return data


def shape_poll(poll: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    votes = poll.get("votes") or []
    mine = next((v for v in votes if str(v.get("user")) == user_id), None)
    data = serialize_doc({k: v for k, v in poll.items() if k != "votes"})
    data["total_votes"] = len(votes)
    data["user_vote"] = mine["option_key"] if mine else None
    data["voted"] = mine is not None
    return data


def list_clubs_for(db: Database, user: Principal) -> List[Dict[str, Any]]:
    joined: Set[str] = set()
    if user.role == "student":
        student = db[collection_name(Student)].find_one({"user": user.oid}, {"joined_clubs": 1})
        joined = {str(c) for c in (student or {}).get("joined_clubs", [])}
    clubs = get_documents(db, collection_name(Club), sort=[("name", ASCENDING)])
    return [shape_club(c, joined) for c in clubs]


def build_profile(db: Database, user: Dict[str, Any]) -> Dict[str, Any]:
    """The signed-in user plus the details of their student or teacher profile."""
    role_details = None
    if user["role"] == "student":
        student = db[collection_name(Student)].find_one(
            {"user": user["_id"]}, {"department": 1, "year": 1, "joined_clubs": 1, "profile_pic": 1}
        )
        if student:
            clubs = db[collection_name(Club)].find(
                {"_id": {"$in": student.get("joined_clubs", [])}}, {"name": 1, "category": 1}
            )
            role_details = serialize_doc({**student, "joined_clubs": list(clubs)})
    elif user["role"] == "teacher":
        teacher = db[collection_name(Teacher)].find_one(
            {"user": user["_id"]}, {"department": 1, "designation": 1, "managed_events": 1, "profile_pic": 1}
        )
        if teacher:
            events = db[collection_name(Event)].find(
                {"_id": {"$in": teacher.get("managed_events", [])}}, {"title": 1, "date": 1, "location": 1}
            )
            role_details = serialize_doc({**teacher, "managed_events": list(events)})

    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role"),
        "profile_pic": user.get("profile_pic", ""),
        "role_details": role_details,
    }


def parse_datetime(value: Any) -> Optional[datetime]:
    try:
        return as_utc(_datetime.validate_python(value))
    except PydanticValidationError:
        return None


# -------------------- Current user -------------------- #

@router.get("/user/me")
def get_me(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    account = db[collection_name(User)].find_one({"_id": user.oid})
    if not account:
        raise NotFound("User not found")
    return ok("User profile fetched", build_profile(db, account))


# -------------------- Announcements -------------------- #

class AnnouncementCreate(Payload):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    category: Optional[str] = None
    pinned: bool = False


@router.get("/announcements")
def list_announcements(db: Database = Depends(get_db)):
    docs = get_documents(db, collection_name(Announcement), sort=[("pinned", DESCENDING), ("posted_at", DESCENDING)])
    return ok("Announcements fetched", serialize_list(docs))


@router.post("/announcements", status_code=201)
def create_announcement(
    payload: AnnouncementCreate,
    user: Principal = Depends(require_roles("admin")),
    db: Database = Depends(get_db),
):
    announcement = Announcement(
        title=payload.title,
        content=payload.content,
        category=payload.category or "General",
        pinned=payload.pinned,
        posted_by=user.name,
        posted_at=utcnow(),
    )
    doc = create_document(db, collection_name(Announcement), announcement)
    return ok("Announcement created", serialize_doc(doc))


@router.delete("/announcements/{announcement_id}")
def delete_announcement(
    announcement_id: str,
    user: Principal = Depends(require_roles("admin")),
    db: Database = Depends(get_db),
):
    oid = to_object_id(announcement_id)
    res = db[collection_name(Announcement)].delete_one({"_id": oid}) if oid else None
    if not res or res.deleted_count == 0:
        raise NotFound("Announcement not found")
    return ok("Announcement deleted")


# -------------------- Events -------------------- #

class EventCreate(Payload):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    date: CalendarDatetime
    location: str = Field(..., min_length=1)
    category: Optional[str] = None


@router.get("/events")
def list_events(db: Database = Depends(get_db)):
    docs = get_documents(db, collection_name(Event), sort=[("date", ASCENDING)])
    return ok("Events fetched", [shape_event(d) for d in docs])


@router.post("/events", status_code=201)
def create_event(
    payload: EventCreate,
    user: Principal = Depends(require_roles("teacher", "admin")),
    db: Database = Depends(get_db),
):
    event = Event(
        title=payload.title,
        description=payload.description,
        date=as_utc(payload.date),
        location=payload.location,
        category=payload.category or "General",
        created_by=user.oid,
    )
    doc = create_document(db, collection_name(Event), event)
    if user.role == "teacher":
        db[collection_name(Teacher)].update_one({"user": user.oid}, {"$addToSet": {"managed_events": doc["_id"]}})
    return ok("Event created", shape_event(doc))


@router.post("/events/{event_id}/rsvp")
def rsvp(event_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    event, already = rsvp_event(db, event_id, user.oid)
    return ok("Already RSVP'd" if already else "RSVP recorded", shape_event(event))


# -------------------- Clubs -------------------- #

class ClubCreate(Payload):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)


@router.get("/clubs")
def list_clubs(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok("Clubs fetched", list_clubs_for(db, user))


@router.post("/clubs", status_code=201)
def create_club(
    payload: ClubCreate,
    user: Principal = Depends(require_roles("admin")),
    db: Database = Depends(get_db),
):
    clubs = db[collection_name(Club)]
    if clubs.find_one({"name": payload.name}):
        raise Conflict("A club with this name already exists")
    try:
        doc = create_document(db, collection_name(Club), Club(**payload.model_dump()))
    except DuplicateKeyError:
        raise Conflict("A club with this name already exists")
    return ok("Club created", shape_club(doc))


@router.delete("/clubs/{club_id}")
def delete_club(
    club_id: str,
    user: Principal = Depends(require_roles("admin")),
    db: Database = Depends(get_db),
):
    oid = to_object_id(club_id)
    deleted = db[collection_name(Club)].find_one_and_delete({"_id": oid}) if oid else None
    if not deleted:
        raise NotFound("Club not found")
    db[collection_name(Student)].update_many({"joined_clubs": oid}, {"$pull": {"joined_clubs": oid}})
    return ok("Club deleted")


# -------------------- Lost & found -------------------- #

class LostItemForm(Payload):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    student_id: str = Field(..., min_length=1)

    @field_validator("student_id")
    @classmethod
    def ten_digits(cls, v: str) -> str:
        if not re.match(STUDENT_ID_PATTERN, v):
            raise ValueError("Student ID must be a 10-digit number")
        return v


class LostItemStatusUpdate(Payload):
    status: str = ""


@router.get("/lost-found")
def list_lost_items(db: Database = Depends(get_db)):
    docs = get_documents(db, collection_name(LostItem), sort=[("created_at", DESCENDING)])
    return ok("Lost & found items fetched", serialize_list(docs))


@router.post("/lost-found", status_code=201)
def create_lost_item(
    title: str = Form(""),
    description: str = Form(""),
    category: str = Form(""),
    location: str = Form(""),
    date: str = Form(""),
    status: str = Form(""),
    image_url: str = Form(""),
    student_id: str = Form(""),
    image: Optional[UploadFile] = File(None),
    user: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    try:
        form = LostItemForm(title=title, description=description, location=location, student_id=student_id)
    except PydanticValidationError as e:
        raise ValidationError(format_validation_errors(e.errors()))

    normalized_status = status.strip().lower()
    resolved_image_url = image_url.strip()
    if image is not None and image.filename:
        resolved_image_url = save_lost_found_image(image)

    item = LostItem(
        title=form.title,
        description=form.description,
        category=category.strip() or "Others",
        location=form.location,
        date=(parse_datetime(date.strip()) if date.strip() else None) or utcnow(),
        status=normalized_status if normalized_status in LOST_ITEM_STATUSES else "lost",
        image_url=resolved_image_url,
        student_id=form.student_id,
        reported_by=user.oid,
    )
    doc = create_document(db, collection_name(LostItem), item)
    return ok("Item submitted", serialize_doc(doc))


@router.patch("/lost-found/{item_id}/status")
def update_lost_item_status(
    item_id: str,
    payload: LostItemStatusUpdate,
    user: Principal = Depends(require_roles("teacher", "admin")),
    db: Database = Depends(get_db),
):
    status = payload.status.lower()
    if status not in LOST_ITEM_STATUSES:
        raise ValidationError("Invalid status")
    oid = to_object_id(item_id)
    item = db[collection_name(LostItem)].find_one_and_update(
        {"_id": oid},
        {"$set": {"status": status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    ) if oid else None
    if not item:
        raise NotFound("Item not found")
    return ok("Item status updated", serialize_doc(item))


# -------------------- Polls -------------------- #

class PollOptionInput(Payload):
    text: str = ""
    option_key: Optional[str] = None


class PollCreate(Payload):
    question: str = Field(..., min_length=1)
    description: str = ""
    options: List[Union[str, PollOptionInput]] = Field(default_factory=list)
    end_date: Any = None


class VotePayload(Payload):
    option_key: str = ""


@router.get("/polls")
def list_polls(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    docs = get_documents(db, collection_name(Poll), sort=[("created_at", DESCENDING)])
    return ok("Polls fetched", [shape_poll(d, user.id) for d in docs])


@router.post("/polls", status_code=201)
def create_poll(payload: PollCreate, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    options: List[PollOption] = []
    for index, entry in enumerate(payload.options):
        text = (entry if isinstance(entry, str) else entry.text).strip()
        if not text:
            continue
        key = None if isinstance(entry, str) else (entry.option_key or "").strip()
        options.append(PollOption(option_key=key or f"option_{index + 1}", text=text))

    if len(options) < 2:
        raise ValidationError("At least two poll options are required")
    if len({o.option_key for o in options}) != len(options):
        raise ValidationError("Poll option keys must be unique")
    end_date = parse_datetime(payload.end_date)
    if end_date is None:
        raise ValidationError("A valid end date is required")

    poll = Poll(
        question=payload.question,
        description=payload.description,
        options=options,
        end_date=end_date,
        created_by=user.oid,
    )
    doc = create_document(db, collection_name(Poll), poll)
    return ok("Poll created", shape_poll(doc, user.id))


@router.post("/polls/{poll_id}/vote")
def vote(poll_id: str, payload: VotePayload, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    poll = cast_vote(db, poll_id, user.oid, payload.option_key)
    return ok("Vote recorded", shape_poll(poll, user.id))


# -------------------- Resources -------------------- #

@router.get("/resources")
def list_resources(db: Database = Depends(get_db)):
    docs = get_documents(db, collection_name(Resource), sort=[("created_at", DESCENDING)])
    return ok("Resources fetched", serialize_list(docs))


@router.post("/resources/{resource_id}/download")
def register_download(resource_id: str, db: Database = Depends(get_db)):
    oid = to_object_id(resource_id)
    resource = db[collection_name(Resource)].find_one_and_update(
        {"_id": oid},
        {"$inc": {"downloads": 1}},
        return_document=ReturnDocument.AFTER,
    ) if oid else None
    if not resource:
        raise NotFound("Resource not found")
    return ok("Download registered", serialize_doc(resource))


# -------------------- Feedback -------------------- #

class FeedbackCreate(Payload):
    category: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)


@router.post("/feedback", status_code=201)
def submit_feedback(payload: FeedbackCreate, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    feedback = Feedback(
        category=payload.category,
        description=payload.description,
        submitted_by=user.oid,
        submitted_at=utcnow(),
    )
    doc = create_document(db, collection_name(Feedback), feedback)
    return ok("Feedback submitted", serialize_doc(doc))


@router.get("/feedback")
def list_feedback(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    # students only ever see their own submissions
    filt = {"submitted_by": user.oid} if user.role == "student" else None
    docs = get_documents(db, collection_name(Feedback), filter_dict=filt, sort=[("created_at", DESCENDING)])
    return ok("Feedback fetched", serialize_list(docs))
