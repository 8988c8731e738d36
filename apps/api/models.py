from sqlalchemy import Column, Integer, Boolean, Float, Date, DateTime, ForeignKey, Text, String, Index, UniqueConstraint, Uuid, JSON
from sqlalchemy.orm import relationship
from core.database import Base
import uuid
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value):
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UserRole:
    COACH = "COACH"
    ATHLETE = "ATHLETE"
    ADMIN = "ADMIN"
    ALL = (COACH, ATHLETE, ADMIN)


class RelationStatus:
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REJECTED = "REJECTED"
    INACTIVE = "INACTIVE"
    ALL = (PENDING, ACTIVE, REJECTED, INACTIVE)


class ActivityType:
    RUNNING = "RUNNING"
    CYCLING = "CYCLING"
    SWIMMING = "SWIMMING"
    STRENGTH = "STRENGTH"
    YOGA = "YOGA"
    OTHER = "OTHER"
    ALL = (RUNNING, CYCLING, SWIMMING, STRENGTH, YOGA, OTHER)


class ActivitySource:
    MANUAL = "MANUAL"
    STRAVA = "STRAVA"
    GARMIN = "GARMIN"
    POLAR = "POLAR"
    FITBIT = "FITBIT"
    SUUNTO = "SUUNTO"
    ALL = (MANUAL, STRAVA, GARMIN, POLAR, FITBIT, SUUNTO)
    PROVIDERS = (STRAVA, GARMIN, POLAR, FITBIT, SUUNTO)


class AssignmentStatus:
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    ALL = (ASSIGNED, IN_PROGRESS, COMPLETED, SKIPPED)
    OPEN = (ASSIGNED, IN_PROGRESS)


class WorkoutStatus:
    PLANNED = "PLANNED"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class FeedbackCategory:
    TECHNIQUE = "TECHNIQUE"
    PERFORMANCE = "PERFORMANCE"
    MOTIVATION = "MOTIVATION"
    RECOVERY = "RECOVERY"
    NUTRITION = "NUTRITION"
    GENERAL = "GENERAL"
    ALL = (TECHNIQUE, PERFORMANCE, MOTIVATION, RECOVERY, NUTRITION, GENERAL)


class MessageType:
    DIRECT = "DIRECT"
    FEEDBACK_REPLY = "FEEDBACK_REPLY"
    WORKOUT_QUESTION = "WORKOUT_QUESTION"
    GENERAL = "GENERAL"
    ALL = (DIRECT, FEEDBACK_REPLY, WORKOUT_QUESTION, GENERAL)


class NotificationType:
    WORKOUT_ASSIGNED = "WORKOUT_ASSIGNED"
    WORKOUT_COMPLETED = "WORKOUT_COMPLETED"
    FEEDBACK_RECEIVED = "FEEDBACK_RECEIVED"
    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"
    COACH_INVITATION = "COACH_INVITATION"
    INVITATION_ACCEPTED = "INVITATION_ACCEPTED"
    INVITATION_REJECTED = "INVITATION_REJECTED"
    INTEGRATION_CONNECTED = "INTEGRATION_CONNECTED"
    SYNC_COMPLETED = "SYNC_COMPLETED"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(Text, nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    role = Column(String(20), default=UserRole.ATHLETE, nullable=False)  # COACH | ATHLETE | ADMIN
    avatar = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    profile = relationship("Profile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    activities = relationship("Activity", back_populates="user", lazy="dynamic")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(10), nullable=True)  # MALE | FEMALE | OTHER
    height = Column(Float, nullable=True)  # cm
    weight = Column(Float, nullable=True)  # kg
    phone = Column(String(30), nullable=True)
    bio = Column(Text, nullable=True)
    location = Column(String(120), nullable=True)
    timezone = Column(String(64), default="Europe/Madrid", nullable=False)
    language = Column(String(5), default="es", nullable=False)
    fitness_level = Column(String(20), nullable=True)
    resting_hr = Column(Integer, nullable=True)
    max_hr = Column(Integer, nullable=True)
    vo2_max = Column(Float, nullable=True)
    sport_types = Column(JSON, default=list, nullable=False)
    goals = Column(JSON, default=list, nullable=False)
    # Coaches fill these in; shown to their athletes on the dashboard
    specialization = Column(Text, nullable=True)
    experience = Column(Integer, nullable=True)  # years
    is_public = Column(Boolean, default=False, nullable=False)
    allow_messages = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    user = relationship("User", back_populates="profile")


class CoachAthlete(Base):
    __tablename__ = "coach_athletes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    athlete_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), default=RelationStatus.PENDING, nullable=False)
    message = Column(Text, nullable=True)  # invitation note
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    coach = relationship("User", foreign_keys=[coach_id])
    athlete = relationship("User", foreign_keys=[athlete_id])

    __table_args__ = (
        UniqueConstraint("coach_id", "athlete_id", name="uq_coach_athlete_pair"),
        Index("ix_coach_athletes_coach_status", "coach_id", "status"),
    )


class Activity(Base):
    __tablename__ = "activities"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(20), nullable=False)  # ActivityType; immutable after creation
    source = Column(String(20), default=ActivitySource.MANUAL, nullable=False)  # immutable after creation
    external_id = Column(String(100), nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration = Column(Integer, nullable=True)  # seconds
    distance = Column(Float, nullable=True)  # km
    calories = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    is_public = Column(Boolean, default=False, nullable=False)
    workout_assignment_id = Column(
        Uuid, ForeignKey("workout_assignments.id", ondelete="SET NULL"), unique=True, nullable=True
    )
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    user = relationship("User", back_populates="activities")
    metrics = relationship("ActivityMetrics", back_populates="activity", uselist=False, cascade="all, delete-orphan")
    workout_assignment = relationship("WorkoutAssignment", back_populates="activity")
    feedback = relationship("Feedback", back_populates="activity", cascade="all, delete-orphan",
                            order_by="Feedback.created_at")

    __table_args__ = (
        Index("ix_activities_user_start", "user_id", "start_time"),
    )


class ActivityMetrics(Base):
    __tablename__ = "activity_metrics"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    activity_id = Column(Uuid, ForeignKey("activities.id", ondelete="CASCADE"), unique=True, nullable=False)
    avg_heart_rate = Column(Integer, nullable=True)
    max_heart_rate = Column(Integer, nullable=True)
    avg_power = Column(Integer, nullable=True)
    max_power = Column(Integer, nullable=True)
    avg_speed = Column(Float, nullable=True)  # km/h
    max_speed = Column(Float, nullable=True)
    elevation_gain = Column(Float, nullable=True)  # m
    training_load = Column(Float, nullable=True)
    zones = Column(JSON, nullable=True)
    splits = Column(JSON, nullable=True)

    activity = relationship("Activity", back_populates="metrics")


class Exercise(Base):
    __tablename__ = "exercises"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=True)
    muscle_groups = Column(JSON, default=list, nullable=False)
    equipment = Column(JSON, default=list, nullable=False)
    instructions = Column(Text, nullable=True)
    created_by_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class WorkoutTemplate(Base):
    __tablename__ = "workout_templates"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=True)
    difficulty = Column(String(20), nullable=True)  # BEGINNER | INTERMEDIATE | ADVANCED
    estimated_duration = Column(Integer, nullable=True)  # minutes
    tags = Column(JSON, default=list, nullable=False)
    is_public = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    coach = relationship("User")
    exercises = relationship(
        "TemplateExercise",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="TemplateExercise.order",
    )
    workouts = relationship("Workout", back_populates="template")


class TemplateExercise(Base):
    __tablename__ = "template_exercises"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    template_id = Column(Uuid, ForeignKey("workout_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    exercise_id = Column(Uuid, ForeignKey("exercises.id"), nullable=False)
    order = Column(Integer, default=0, nullable=False)
    sets = Column(Integer, nullable=False)
    reps = Column(Integer, nullable=True)
    duration = Column(Integer, nullable=True)  # seconds
    rest_time = Column(Integer, nullable=True)  # seconds
    weight = Column(Float, nullable=True)
    distance = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)

    template = relationship("WorkoutTemplate", back_populates="exercises")
    exercise = relationship("Exercise", lazy="joined")


class Workout(Base):
    """A concrete workout instantiated from a template when a coach assigns it."""
    __tablename__ = "workouts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    template_id = Column(Uuid, ForeignKey("workout_templates.id", ondelete="SET NULL"), nullable=True)
    creator_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    difficulty = Column(String(20), nullable=True)
    estimated_duration = Column(Integer, nullable=True)
    status = Column(String(20), default=WorkoutStatus.PLANNED, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    template = relationship("WorkoutTemplate", back_populates="workouts")
    creator = relationship("User")
    assignments = relationship("WorkoutAssignment", back_populates="workout", cascade="all, delete-orphan")


class WorkoutAssignment(Base):
    __tablename__ = "workout_assignments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workout_id = Column(Uuid, ForeignKey("workouts.id", ondelete="CASCADE"), nullable=False, index=True)
    athlete_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), default=AssignmentStatus.ASSIGNED, nullable=False)
    priority = Column(String(10), default="MEDIUM", nullable=False)  # LOW | MEDIUM | HIGH
    scheduled_date = Column(DateTime(timezone=True), nullable=False)
    assigned_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    workout = relationship("Workout", back_populates="assignments", lazy="joined")
    athlete = relationship("User")
    activity = relationship("Activity", back_populates="workout_assignment", uselist=False)

    @property
    def coach_id(self):
        return self.workout.creator_id if self.workout else None


class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    activity_id = Column(Uuid, ForeignKey("activities.id", ondelete="CASCADE"), nullable=False, index=True)
    coach_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    rating = Column(Integer, nullable=True)  # 1-5
    comment = Column(Text, nullable=False)
    category = Column(String(20), default=FeedbackCategory.GENERAL, nullable=False)
    is_private = Column(Boolean, default=False, nullable=False)
    recommendations = Column(JSON, default=list, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    activity = relationship("Activity", back_populates="feedback")
    coach = relationship("User")

    __table_args__ = (
        UniqueConstraint("activity_id", "coach_id", name="uq_feedback_activity_coach"),
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sender_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=True, index=True)
    subject = Column(String(200), nullable=True)
    content = Column(Text, nullable=False)
    type = Column(String(20), default=MessageType.DIRECT, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    sender = relationship("User", foreign_keys=[sender_id])
    recipient = relationship("User", foreign_keys=[recipient_id])
    parent = relationship("Message", remote_side=[id], back_populates="replies")
    replies = relationship("Message", back_populates="parent", order_by="Message.created_at")

    __table_args__ = (
        Index("ix_messages_recipient_read", "recipient_id", "is_read"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(40), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class UserIntegration(Base):
    __tablename__ = "user_integrations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(20), nullable=False)  # ActivitySource.PROVIDERS
    external_id = Column(String(100), nullable=True)
    # Encrypted at rest (services/token_encryption.py)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_sync = Column(DateTime(timezone=True), nullable=True)
    sync_settings = Column(JSON, default=dict, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_user_integration_provider"),
    )
