import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database

from campus_routes import CalendarDatetime, shape_event
from database import (
    as_utc, collection_name, create_document, get_db, serialize_doc, to_object_id, utcnow,
)
from errors import NotFound, ValidationError
from responses import ok
from schemas import Event, Feedback, FEEDBACK_STATUSES, Payload, Resource, Teacher
from security import Principal, require_roles

logger = logging.getLogger(__name__)

teacher_only = require_roles("teacher")

router = APIRouter(dependencies=[Depends(teacher_only)])


def _non_empty_updates(payload: Payload, message: str) -> dict:
    """Fields the client actually sent; any of them left blank is an error."""
    updates = payload.model_dump(exclude_unset=True)
    blank = [k for k, v in updates.items() if v is None or (isinstance(v, str) and not v)]
    if blank:
        raise ValidationError(f"{message}: {', '.join(blank)}")
    if not updates:
        raise ValidationError("No fields to update")
    return updates


# -------------------- Dashboard -------------------- #

@router.get("/dashboard")
def teacher_dashboard(user: Principal = Depends(teacher_only), db: Database = Depends(get_db)):
    profile = db[collection_name(Teacher)].find_one({"user": user.oid})
    summary = {
        "managed_events": db[collection_name(Event)].count_documents({"created_by": user.oid}),
        "uploaded_resources": db[collection_name(Resource)].count_documents({"uploaded_by": user.oid}),
        "pending_feedback": db[collection_name(Feedback)].count_documents({"status": "submitted"}),
        "teacher_profile": serialize_doc(profile),
    }
    message = "Teacher dashboard summary" if profile else "Teacher profile not found, returning default metrics"
    return ok(message, summary)


# -------------------- Feedback -------------------- #

class FeedbackResponsePayload(Payload):
    response: str = ""
    status: Optional[str] = None


@router.post("/feedback/{feedback_id}/respond")
def respond_to_feedback(
    feedback_id: str,
    payload: FeedbackResponsePayload,
    user: Principal = Depends(teacher_only),
    db: Database = Depends(get_db),
):
    if not payload.response:
        raise ValidationError("Response message is required")
    status = (payload.status or "").lower()
    oid = to_object_id(feedback_id)
    feedback = db[collection_name(Feedback)].find_one_and_update(
        {"_id": oid},
        {"$set": {
            "response": payload.response,
            "status": status if status in FEEDBACK_STATUSES else "in_review",
            "responded_by": user.oid,
            "updated_at": utcnow(),
        }},
        return_document=ReturnDocument.AFTER,
    ) if oid else None
    if not feedback:
        raise NotFound("Feedback not found")
    return ok("Feedback updated", serialize_doc(feedback))


# -------------------- Resources -------------------- #

class ResourceCreate(Payload):
    title: str = ""
    type: str = ""
    department: str = ""
    semester: str = ""
    file_url: str = ""


class ResourceUpdate(Payload):
    title: Optional[str] = None
    type: Optional[str] = None
    department: Optional[str] = None
    semester: Optional[str] = None
    file_url: Optional[str] = None


@router.post("/resources", status_code=201)
def upload_resource(payload: ResourceCreate, user: Principal = Depends(teacher_only), db: Database = Depends(get_db)):
    missing = [f for f in ("title", "type", "department", "semester") if not getattr(payload, f)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    resource = Resource(
        title=payload.title,
        type=payload.type,
        department=payload.department,
        semester=payload.semester,
        file_url=payload.file_url,
        uploaded_by=user.oid,
        uploader_name=user.name,
        uploaded_at=utcnow(),
    )
    doc = create_document(db, collection_name(Resource), resource)
    return ok("Resource uploaded", serialize_doc(doc))


@router.patch("/resources/{resource_id}")
def update_resource(
    resource_id: str,
    payload: ResourceUpdate,
    user: Principal = Depends(teacher_only),
    db: Database = Depends(get_db),
):
    updates = _non_empty_updates(payload, "Resource fields cannot be empty")
    oid = to_object_id(resource_id)
    resource = db[collection_name(Resource)].find_one_and_update(
        {"_id": oid, "uploaded_by": user.oid},
        {"$set": {**updates, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    ) if oid else None
    if not resource:
        raise NotFound("Resource not found")
    return ok("Resource updated", serialize_doc(resource))


@router.delete("/resources/{resource_id}")
def delete_resource(resource_id: str, user: Principal = Depends(teacher_only), db: Database = Depends(get_db)):
    oid = to_object_id(resource_id)
    res = db[collection_name(Resource)].delete_one({"_id": oid, "uploaded_by": user.oid}) if oid else None
    if not res or res.deleted_count == 0:
        raise NotFound("Resource not found")
    return ok("Resource deleted")


# -------------------- Events -------------------- #

class EventUpdate(Payload):
    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[CalendarDatetime] = None
    location: Optional[str] = None
    category: Optional[str] = None


@router.patch("/events/{event_id}")
def update_event(
    event_id: str,
    payload: EventUpdate,
    user: Principal = Depends(teacher_only),
    db: Database = Depends(get_db),
):
    updates = _non_empty_updates(payload, "Event fields cannot be empty")
    if "date" in updates:
        updates["date"] = as_utc(updates["date"])
    oid = to_object_id(event_id)
    event = db[collection_name(Event)].find_one_and_update(
        {"_id": oid, "created_by": user.oid},
        {"$set": {**updates, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    ) if oid else None
    if not event:
        raise NotFound("Event not found")
    return ok("Event updated", shape_event(event))


@router.delete("/events/{event_id}")
def delete_event(event_id: str, user: Principal = Depends(teacher_only), db: Database = Depends(get_db)):
    oid = to_object_id(event_id)
    res = db[collection_name(Event)].delete_one({"_id": oid, "created_by": user.oid}) if oid else None
    if not res or res.deleted_count == 0:
        raise NotFound("Event not found")
    db[collection_name(Teacher)].update_one({"user": user.oid}, {"$pull": {"managed_events": oid}})
    logger.info(f"Teacher {user.id} deleted event {event_id}")
    return ok("Event deleted")
