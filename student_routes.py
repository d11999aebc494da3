from fastapi import APIRouter, Depends
from pymongo.database import Database

from campus_routes import list_clubs_for, shape_club
from database import collection_name, get_db, utcnow
from mutations import join_club, leave_club
from responses import ok
from schemas import Event, Poll, Resource, Student
from security import Principal, require_roles

student_only = require_roles("student")

router = APIRouter(dependencies=[Depends(student_only)])


@router.get("/dashboard")
def student_dashboard(user: Principal = Depends(student_only), db: Database = Depends(get_db)):
    profile = db[collection_name(Student)].find_one({"user": user.oid}, {"joined_clubs": 1})
    now = utcnow()
    summary = {
        "joined_clubs": len((profile or {}).get("joined_clubs", [])),
        "active_events": db[collection_name(Event)].count_documents({"date": {"$gte": now}}),
        "available_resources": db[collection_name(Resource)].count_documents({}),
        "open_polls": db[collection_name(Poll)].count_documents({"end_date": {"$gte": now}}),
    }
    message = "Student dashboard summary" if profile else "Student profile not found, returning default metrics"
    return ok(message, summary)


@router.get("/clubs")
def student_clubs(user: Principal = Depends(student_only), db: Database = Depends(get_db)):
    return ok("Clubs fetched", list_clubs_for(db, user))


@router.post("/clubs/{club_id}/join")
def join(club_id: str, user: Principal = Depends(student_only), db: Database = Depends(get_db)):
    club = join_club(db, club_id, user.oid)
    return ok("Joined club", shape_club(club, {club_id}))


@router.post("/clubs/{club_id}/leave")
def leave(club_id: str, user: Principal = Depends(student_only), db: Database = Depends(get_db)):
    club = leave_club(db, club_id, user.oid)
    return ok("Left club", shape_club(club))
