"""
Database Schemas for the Smart Campus system

Each Pydantic model below maps to a MongoDB collection (class name lowercased).
Use these to validate data and as the source of truth for the application domain.

Examples:
- User -> "user"
- LostItem -> "lostitem"
"""

from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field

Role = Literal["student", "teacher", "admin"]
FeedbackStatus = Literal["submitted", "in_review", "resolved"]
LostItemStatus = Literal["lost", "found", "claimed"]

ROLES = ("student", "teacher", "admin")
FEEDBACK_STATUSES = ("submitted", "in_review", "resolved")
LOST_ITEM_STATUSES = ("lost", "found", "claimed")
STUDENT_ID_PATTERN = r"^\d{10}$"


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


class Payload(BaseModel):
    """Base for request bodies: strings arrive trimmed."""
    model_config = ConfigDict(str_strip_whitespace=True)


# Identities
class User(Document):
    name: str
    email: str = Field(..., description="Lowercased, unique")
    external_id: str = Field(..., description="Identity provider subject, unique")
    profile_pic: str = ""
    role: Role


class Student(Document):
    user: ObjectId
    name: str
    email: str
    external_id: str
    profile_pic: str = ""
    role: Literal["student"] = "student"
    department: str = "CSE"
    year: str = "1"
    joined_clubs: List[ObjectId] = Field(default_factory=list)


class Teacher(Document):
    user: ObjectId
    name: str
    email: str
    external_id: str
    profile_pic: str = ""
    role: Literal["teacher"] = "teacher"
    department: str = "General"
    designation: str = "Faculty"
    managed_events: List[ObjectId] = Field(default_factory=list)


# Campus life
class Club(Document):
    name: str = Field(..., description="Unique")
    description: str
    category: str
    members: List[ObjectId] = Field(default_factory=list)
    events_hosted: List[ObjectId] = Field(default_factory=list)


class Event(Document):
    title: str
    description: str
    date: datetime
    location: str
    category: str = "General"
    created_by: Optional[ObjectId] = None
    attendees: List[ObjectId] = Field(default_factory=list)


class PollOption(BaseModel):
    option_key: str
    text: str
    votes: int = Field(0, ge=0)


class PollVote(Document):
    user: ObjectId
    option_key: str


class Poll(Document):
    question: str
    description: str = ""
    options: List[PollOption] = Field(..., min_length=2)
    end_date: datetime
    created_by: Optional[ObjectId] = None
    votes: List[PollVote] = Field(default_factory=list, description="At most one entry per user")


class Announcement(Document):
    title: str
    content: str
    category: str = "General"
    pinned: bool = False
    posted_by: str = Field(..., description="Display name of the poster")
    posted_at: datetime


# Academic support
class Resource(Document):
    title: str
    type: str = Field(..., description="notes|slides|paper|...")
    department: str
    semester: str
    uploaded_by: ObjectId
    uploader_name: str
    downloads: int = Field(0, ge=0)
    file_url: str = ""
    uploaded_at: datetime


class Feedback(Document):
    category: str
    description: str
    status: FeedbackStatus = "submitted"
    submitted_by: ObjectId
    response: Optional[str] = None
    responded_by: Optional[ObjectId] = None
    submitted_at: datetime


class LostItem(Document):
    title: str
    description: str
    category: str = "Others"
    location: str
    date: datetime
    status: LostItemStatus = "lost"
    image_url: str = ""
    student_id: str = Field(..., pattern=STUDENT_ID_PATTERN)
    reported_by: Optional[ObjectId] = None
