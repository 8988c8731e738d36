"""
Workouts API

Exercise catalogue, coach workout templates and workout assignments.

Assigning a template instantiates a Workout owned by the coach and a
WorkoutAssignment for the athlete. Athletes move their assignments
through ASSIGNED -> IN_PROGRESS -> COMPLETED / SKIPPED.
"""
import logging
from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from core.auth import get_current_user, require_coach
from core.database import get_db
from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from core.permissions import ensure_active_relation
from models import (
    AssignmentStatus,
    Exercise,
    NotificationType,
    TemplateExercise,
    User,
    UserRole,
    Workout,
    WorkoutAssignment,
    WorkoutTemplate,
    utc_now,
)
from schemas import (
    AssignmentStatusUpdate,
    AssignWorkoutRequest,
    Difficulty,
    ExerciseCreate,
    TemplateCreate,
    TemplateExerciseIn,
    TemplateUpdate,
    to_utc,
)
from services.notifications import queue_notification
from services.serializers import assignment_dict, exercise_dict, pagination, template_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/workouts", tags=["workouts"])

# Allowed athlete-driven status changes; COMPLETED and SKIPPED are final
STATUS_TRANSITIONS = {
    AssignmentStatus.ASSIGNED: {AssignmentStatus.IN_PROGRESS, AssignmentStatus.COMPLETED, AssignmentStatus.SKIPPED},
    AssignmentStatus.IN_PROGRESS: {AssignmentStatus.COMPLETED, AssignmentStatus.SKIPPED},
}


def _build_template_exercises(db: Session, items: List[TemplateExerciseIn]) -> List[TemplateExercise]:
    exercise_ids = {item.exercise_id for item in items}
    found = {row[0] for row in db.query(Exercise.id).filter(Exercise.id.in_(exercise_ids)).all()}
    missing = exercise_ids - found
    if missing:
        raise ValidationError(
            f"Unknown exercise ids: {', '.join(sorted(str(m) for m in missing))}",
            error_code="INVALID_EXERCISE",
        )

    return [
        TemplateExercise(
            exercise_id=item.exercise_id,
            order=item.order if item.order is not None else index,
            sets=item.sets,
            reps=item.reps,
            duration=item.duration,
            rest_time=item.rest_time,
            weight=item.weight,
            distance=item.distance,
            notes=item.notes,
        )
        for index, item in enumerate(items)
    ]


def _get_template(db: Session, template_id: UUID) -> WorkoutTemplate:
    template = db.query(WorkoutTemplate).filter(WorkoutTemplate.id == template_id).first()
    if not template:
        raise NotFoundError("Workout template not found", error_code="TEMPLATE_NOT_FOUND")
    return template


def _get_owned_template(db: Session, template_id: UUID, user: User) -> WorkoutTemplate:
    template = _get_template(db, template_id)
    if template.coach_id != user.id:
        raise ForbiddenError("You can only manage your own templates", error_code="NOT_TEMPLATE_OWNER")
    return template


def _assignments_count(db: Session, template_id: UUID) -> int:
    return db.query(WorkoutAssignment).join(Workout).filter(Workout.template_id == template_id).count()


# ---------------------------------------------------------------------------
# Exercises
# ---------------------------------------------------------------------------

@router.get("/exercises")
def list_exercises(
    search: Optional[str] = Query(None, max_length=100),
    category: Optional[str] = Query(None, max_length=50),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(Exercise)
    if search:
        query = query.filter(Exercise.name.ilike(f"%{search}%"))
    if category:
        query = query.filter(Exercise.category == category)
    return {"exercises": [exercise_dict(e) for e in query.order_by(Exercise.name).all()]}


@router.post("/exercises", status_code=201)
def create_exercise(
    payload: ExerciseCreate,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    exercise = Exercise(**payload.model_dump(), created_by_id=current_user.id)
    db.add(exercise)
    db.commit()
    return {"message": "Exercise created", "exercise": exercise_dict(exercise)}


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

@router.get("/templates")
def list_templates(
    search: Optional[str] = Query(None, max_length=100),
    category: Optional[str] = Query(None, max_length=50),
    difficulty: Optional[Difficulty] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """The coach's templates, newest first, with how often each was assigned."""
    query = db.query(WorkoutTemplate).filter(WorkoutTemplate.coach_id == current_user.id)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(WorkoutTemplate.name.ilike(pattern), WorkoutTemplate.description.ilike(pattern)))
    if category:
        query = query.filter(WorkoutTemplate.category == category)
    if difficulty:
        query = query.filter(WorkoutTemplate.difficulty == difficulty)

    total = query.count()
    templates = (
        query.order_by(WorkoutTemplate.created_at.desc(), WorkoutTemplate.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    counts = {}
    if templates:
        counts = dict(
            db.query(Workout.template_id, func.count(WorkoutAssignment.id))
            .join(WorkoutAssignment, WorkoutAssignment.workout_id == Workout.id)
            .filter(Workout.template_id.in_([t.id for t in templates]))
            .group_by(Workout.template_id)
            .all()
        )

    return {
        "templates": [
            template_dict(t, assignments_count=counts.get(t.id, 0))
            for t in templates
        ],
        "pagination": pagination(page, limit, total),
    }


@router.post("/templates", status_code=201)
def create_template(
    payload: TemplateCreate,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    template = WorkoutTemplate(
        coach_id=current_user.id,
        name=payload.name,
        description=payload.description,
        category=payload.category,
        difficulty=payload.difficulty,
        estimated_duration=payload.estimated_duration,
        tags=payload.tags,
        is_public=payload.is_public,
    )
    template.exercises = _build_template_exercises(db, payload.exercises)
    db.add(template)
    db.commit()
    db.refresh(template)

    logger.info(f"Template {template.id} created by coach {current_user.id}")
    return {"message": "Template created", "template": template_dict(template)}


@router.get("/templates/{template_id}")
def get_template(
    template_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    template = _get_template(db, template_id)
    if template.coach_id != current_user.id and current_user.role != UserRole.ADMIN:
        raise ForbiddenError("You do not have access to this template", error_code="RESOURCE_ACCESS_DENIED")
    return {"template": template_dict(template, assignments_count=_assignments_count(db, template.id))}


@router.put("/templates/{template_id}")
def update_template(
    template_id: UUID,
    payload: TemplateUpdate,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Update template fields; a given exercise list replaces the current one."""
    template = _get_owned_template(db, template_id, current_user)

    changes = payload.model_dump(exclude_unset=True, exclude={"exercises"})
    for field, value in changes.items():
        if value is None and field in ("name", "tags", "is_public"):
            continue
        setattr(template, field, value)

    if payload.exercises is not None:
        template.exercises = _build_template_exercises(db, payload.exercises)

    db.commit()
    db.refresh(template)
    return {"message": "Template updated", "template": template_dict(template)}


@router.delete("/templates/{template_id}")
def delete_template(
    template_id: UUID,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    template = _get_owned_template(db, template_id, current_user)

    open_assignments = db.query(WorkoutAssignment).join(Workout).filter(
        Workout.template_id == template.id,
        WorkoutAssignment.status.in_(AssignmentStatus.OPEN),
    ).count()
    if open_assignments:
        raise ValidationError(
            f"Template has {open_assignments} active assignments",
            error_code="TEMPLATE_IN_USE",
        )

    db.delete(template)
    db.commit()
    return {"message": "Template deleted"}


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

@router.post("/assign", status_code=201)
def assign_workout(
    payload: AssignWorkoutRequest,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Instantiate one of the coach's templates for an athlete they actively coach."""
    template = _get_owned_template(db, payload.template_id, current_user)
    ensure_active_relation(
        db, current_user.id, payload.athlete_id,
        "You can only assign workouts to your active athletes",
    )

    workout = Workout(
        template_id=template.id,
        creator_id=current_user.id,
        name=template.name,
        description=template.description,
        difficulty=template.difficulty,
        estimated_duration=template.estimated_duration,
    )
    assignment = WorkoutAssignment(
        athlete_id=payload.athlete_id,
        status=AssignmentStatus.ASSIGNED,
        priority=payload.priority,
        scheduled_date=payload.scheduled_date,
        notes=payload.notes,
    )
    workout.assignments.append(assignment)
    db.add(workout)
    db.flush()

    queue_notification(
        db,
        payload.athlete_id,
        NotificationType.WORKOUT_ASSIGNED,
        "New workout assigned",
        f"{current_user.full_name} assigned you {workout.name}",
        {"assignmentId": assignment.id, "workoutId": workout.id},
    )
    db.commit()

    logger.info(f"Workout {workout.id} assigned to athlete {payload.athlete_id}")
    return {"message": "Workout assigned", "assignment": assignment_dict(assignment)}


@router.get("/assignments")
def list_assignments(
    athlete_id: Optional[UUID] = Query(None, alias="athleteId"),
    status: Optional[Literal["ASSIGNED", "IN_PROGRESS", "COMPLETED", "SKIPPED"]] = Query(None),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Coaches see the assignments of workouts they created (optionally for
    one athlete); everyone else sees the assignments addressed to them.
    Dates filter on scheduledDate.
    """
    query = db.query(WorkoutAssignment).join(Workout, WorkoutAssignment.workout_id == Workout.id)

    if current_user.role == UserRole.COACH:
        query = query.filter(Workout.creator_id == current_user.id)
        if athlete_id:
            query = query.filter(WorkoutAssignment.athlete_id == athlete_id)
    else:
        query = query.filter(WorkoutAssignment.athlete_id == current_user.id)

    if status:
        query = query.filter(WorkoutAssignment.status == status)
    if date_from:
        query = query.filter(WorkoutAssignment.scheduled_date >= to_utc(date_from))
    if date_to:
        query = query.filter(WorkoutAssignment.scheduled_date <= to_utc(date_to))

    total = query.count()
    assignments = (
        query.options(joinedload(WorkoutAssignment.athlete))
        .order_by(WorkoutAssignment.scheduled_date.asc(), WorkoutAssignment.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "assignments": [assignment_dict(a) for a in assignments],
        "pagination": pagination(page, limit, total),
    }


@router.put("/assignments/{assignment_id}/status")
def update_assignment_status(
    assignment_id: UUID,
    payload: AssignmentStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    assignment = db.query(WorkoutAssignment).filter(WorkoutAssignment.id == assignment_id).first()
    if not assignment:
        raise NotFoundError("Workout assignment not found", error_code="ASSIGNMENT_NOT_FOUND")
    if assignment.athlete_id != current_user.id:
        raise ForbiddenError("This workout is not assigned to you", error_code="NOT_ASSIGNMENT_OWNER")

    allowed = STATUS_TRANSITIONS.get(assignment.status, set())
    if payload.status not in allowed:
        raise ValidationError(
            f"Cannot change status from {assignment.status} to {payload.status}",
            error_code="INVALID_STATUS_TRANSITION",
        )

    assignment.status = payload.status
    if payload.notes is not None:
        assignment.notes = payload.notes
    if payload.status == AssignmentStatus.COMPLETED:
        assignment.completed_at = utc_now()
        queue_notification(
            db,
            assignment.coach_id,
            NotificationType.WORKOUT_COMPLETED,
            "Workout completed",
            f"{current_user.full_name} completed {assignment.workout.name}",
            {"assignmentId": assignment.id, "athleteId": current_user.id},
        )
    db.commit()

    return {"message": "Assignment updated", "assignment": assignment_dict(assignment)}
