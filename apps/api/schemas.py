from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, date, timezone
from uuid import UUID
from typing import Optional, List, Dict, Any, Literal
import re

from core.password_policy import validate_password

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

ActivityTypeName = Literal["RUNNING", "CYCLING", "SWIMMING", "STRENGTH", "YOGA", "OTHER"]
FeedbackCategoryName = Literal["TECHNIQUE", "PERFORMANCE", "MOTIVATION", "RECOVERY", "NUTRITION", "GENERAL"]
ProviderName = Literal["STRAVA", "GARMIN", "POLAR", "FITBIT", "SUUNTO"]
Difficulty = Literal["BEGINNER", "INTERMEDIATE", "ADVANCED"]
Priority = Literal["LOW", "MEDIUM", "HIGH"]


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize incoming datetimes to UTC; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _normalize_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email address")
    return value


def _check_password(value: str) -> str:
    is_valid, errors = validate_password(value)
    if not is_valid:
        raise ValueError("; ".join(errors))
    return value


class CamelModel(BaseModel):
    """Request bodies accept camelCase (and snake_case) keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class RegisterRequest(CamelModel):
    email: str
    password: str
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    role: Literal["COACH", "ATHLETE"] = "ATHLETE"

    normalize_email = field_validator("email")(_normalize_email)
    check_password = field_validator("password")(_check_password)


class LoginRequest(CamelModel):
    email: str
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(min_length=1)
    new_password: str

    check_new_password = field_validator("new_password")(_check_password)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class ProfileUpdate(CamelModel):
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    avatar: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Literal["MALE", "FEMALE", "OTHER"]] = None
    height: Optional[float] = Field(default=None, ge=50, le=300)
    weight: Optional[float] = Field(default=None, ge=20, le=500)
    phone: Optional[str] = Field(default=None, max_length=30)
    bio: Optional[str] = Field(default=None, max_length=500)
    location: Optional[str] = Field(default=None, max_length=120)
    timezone: Optional[str] = Field(default=None, max_length=64)
    language: Optional[Literal["es", "en", "fr", "de"]] = None
    fitness_level: Optional[Literal["BEGINNER", "INTERMEDIATE", "ADVANCED", "PROFESSIONAL"]] = None
    resting_hr: Optional[int] = Field(default=None, ge=30, le=120, alias="restingHR")
    max_hr: Optional[int] = Field(default=None, ge=120, le=250, alias="maxHR")
    vo2_max: Optional[float] = Field(default=None, ge=10, le=100)
    sport_types: Optional[List[str]] = None
    goals: Optional[List[str]] = None
    specialization: Optional[str] = Field(default=None, max_length=200)
    experience: Optional[int] = Field(default=None, ge=0, le=80)
    is_public: Optional[bool] = None
    allow_messages: Optional[bool] = None

    @field_validator("date_of_birth")
    @classmethod
    def not_in_future(cls, value: Optional[date]) -> Optional[date]:
        if value is not None and value > date.today():
            raise ValueError("dateOfBirth cannot be in the future")
        return value


class InviteAthleteRequest(CamelModel):
    email: str
    message: Optional[str] = Field(default=None, max_length=500)

    normalize_email = field_validator("email")(_normalize_email)


class RespondInvitationRequest(CamelModel):
    accept: bool


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------

class ActivityMetricsIn(CamelModel):
    avg_heart_rate: Optional[int] = Field(default=None, ge=0, le=300)
    max_heart_rate: Optional[int] = Field(default=None, ge=0, le=300)
    avg_power: Optional[int] = Field(default=None, ge=0)
    max_power: Optional[int] = Field(default=None, ge=0)
    avg_speed: Optional[float] = Field(default=None, ge=0)
    max_speed: Optional[float] = Field(default=None, ge=0)
    elevation_gain: Optional[float] = Field(default=None, ge=0)
    training_load: Optional[float] = Field(default=None, ge=0)
    zones: Optional[Any] = None
    splits: Optional[Any] = None


class ActivityCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    type: ActivityTypeName
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, ge=1)  # seconds
    distance: Optional[float] = Field(default=None, ge=0)  # km
    calories: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_public: bool = False
    workout_assignment_id: Optional[UUID] = None
    metrics: Optional[ActivityMetricsIn] = None

    utc_datetimes = field_validator("start_time", "end_time")(to_utc)

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError("endTime must be after startTime")
        return self


class ActivityUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_public: Optional[bool] = None


# ---------------------------------------------------------------------------
# Workouts
# ---------------------------------------------------------------------------

class ExerciseCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Optional[str] = Field(default=None, max_length=50)
    muscle_groups: List[str] = Field(default_factory=list)
    equipment: List[str] = Field(default_factory=list)
    instructions: Optional[str] = None


class TemplateExerciseIn(CamelModel):
    exercise_id: UUID
    sets: int = Field(ge=1, le=100)
    reps: Optional[int] = Field(default=None, ge=1)
    duration: Optional[int] = Field(default=None, ge=1)
    rest_time: Optional[int] = Field(default=None, ge=0)
    weight: Optional[float] = Field(default=None, ge=0)
    distance: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)
    order: Optional[int] = Field(default=None, ge=0)


class TemplateCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Optional[str] = Field(default=None, max_length=50)
    difficulty: Optional[Difficulty] = None
    estimated_duration: Optional[int] = Field(default=None, ge=1)  # minutes
    tags: List[str] = Field(default_factory=list)
    is_public: bool = False
    exercises: List[TemplateExerciseIn] = Field(min_length=1)


class TemplateUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Optional[str] = Field(default=None, max_length=50)
    difficulty: Optional[Difficulty] = None
    estimated_duration: Optional[int] = Field(default=None, ge=1)
    tags: Optional[List[str]] = None
    is_public: Optional[bool] = None
    exercises: Optional[List[TemplateExerciseIn]] = Field(default=None, min_length=1)


class AssignWorkoutRequest(CamelModel):
    template_id: UUID
    athlete_id: UUID
    scheduled_date: datetime
    notes: Optional[str] = Field(default=None, max_length=1000)
    priority: Priority = "MEDIUM"

    utc_datetimes = field_validator("scheduled_date")(to_utc)


class AssignmentStatusUpdate(CamelModel):
    status: Literal["IN_PROGRESS", "COMPLETED", "SKIPPED"]
    notes: Optional[str] = Field(default=None, max_length=1000)


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------

class FeedbackCreate(CamelModel):
    activity_id: UUID
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: str = Field(min_length=1, max_length=1000)
    category: FeedbackCategoryName = "GENERAL"
    is_private: bool = False
    recommendations: List[str] = Field(default_factory=list)


class FeedbackUpdate(CamelModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    category: Optional[FeedbackCategoryName] = None
    is_private: Optional[bool] = None
    recommendations: Optional[List[str]] = None


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class MessageCreate(CamelModel):
    recipient_id: UUID
    subject: Optional[str] = Field(default=None, max_length=200)
    content: str = Field(min_length=1, max_length=5000)
    type: Literal["DIRECT", "FEEDBACK_REPLY", "WORKOUT_QUESTION", "GENERAL"] = "DIRECT"
    parent_id: Optional[UUID] = None


class MessageReply(CamelModel):
    content: str = Field(min_length=1, max_length=5000)
    subject: Optional[str] = Field(default=None, max_length=200)


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------

class IntegrationConnect(CamelModel):
    provider: ProviderName
    auth_code: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    external_user_id: Optional[str] = Field(default=None, max_length=100)
    sync_settings: Dict[str, Any] = Field(default_factory=dict)


class IntegrationUpdate(CamelModel):
    is_active: Optional[bool] = None
    sync_settings: Optional[Dict[str, Any]] = None


class SyncRequest(CamelModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    force_sync: bool = False

    utc_datetimes = field_validator("start_date", "end_date")(to_utc)
