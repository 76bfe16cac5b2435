import logging
from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, HTTPException, Path, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from labportal.auth.dependencies import get_token_claims, require_roles
from labportal.auth.jwt_handler import TokenClaims
from labportal.database import get_db
from labportal.models.logbook import LogBook
from labportal.records.form_parser import MAX_ID, parse_logbook_form
from labportal.records.merge import merge_logbook

router = APIRouter(tags=['logbook'])

logger = logging.getLogger(__name__)

REVIEWER_ROLES = ('faculty', 'admin')
STUDENTS_CANNOT_CREATE = 'Only students can create logbooks. Faculty can view and manage student logbooks.'
STUDENTS_OWN_LOGBOOK_ONLY = 'Students can only view their own logbook'

PathId = Annotated[int, Path(gt=0, le=MAX_ID)]


class LogbookResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    id: int
    name: str
    rollno: int
    rgno: int
    subject: str
    code: str | None = ''
    semester: int | None = None
    experiments: list[dict[str, Any]] = []
    open_ended_project: dict[str, Any] = {}
    lab_exams: list[dict[str, Any]] = []
    final_assessment: dict[str, Any] = {}
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LogbookSaveResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    message: str
    id: int
    is_update: bool


class LogbookDetailResponse(BaseModel):
    success: bool = True
    data: LogbookResponse


class LogbookListResponse(BaseModel):
    success: bool = True
    count: int
    data: list[LogbookResponse]


class MessageResponse(BaseModel):
    success: bool = True
    message: str


def _list_response(logbooks: list[LogBook]) -> LogbookListResponse:
    return LogbookListResponse(
        count=len(logbooks),
        data=[LogbookResponse.model_validate(logbook) for logbook in logbooks],
    )


def _newest_first(query):
    return query.order_by(LogBook.created_at.desc(), LogBook.id.desc())


def find_logbook(db: Session, rollno: int, rgno: int, subject: str) -> LogBook | None:
    return db.query(LogBook).filter(
        LogBook.rollno == rollno,
        LogBook.rgno == rgno,
        LogBook.subject == subject,
    ).first()


def get_logbook_or_404(db: Session, logbook_id: int) -> LogBook:
    logbook = db.query(LogBook).filter(LogBook.id == logbook_id).first()
    if logbook is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Not found')
    return logbook


def ensure_student_owns(claims: TokenClaims, rgno: int, detail: str) -> None:
    if claims.role == 'student' and rgno != claims.rgno:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def upsert_logbook(db: Session, document: dict) -> tuple[LogBook, bool]:
    """Insert a new logbook or merge ``document`` into the one with the same identity.

    The identity is the (roll number, register number, subject) triple.
    Returns the stored row and whether it was newly created.
    """
    now = datetime.now(timezone.utc)
    identity = (document['rollno'], document['rgno'], document['subject'])
    existing = find_logbook(db, *identity)

    if existing is None:
        logbook = LogBook(created_at=now, updated_at=now)
        logbook.apply_document(document)
        try:
            db.add(logbook)
            db.commit()
        except IntegrityError:
            # Lost a race with a concurrent first save of the same logbook.
            db.rollback()
            existing = find_logbook(db, *identity)
            if existing is None:
                raise
        except SQLAlchemyError:
            db.rollback()
            raise
        else:
            db.refresh(logbook)
            logger.info('Created logbook %s for register number %s', logbook.id, logbook.rgno)
            return logbook, True

    try:
        existing.apply_document(merge_logbook(existing.to_document(), document))
        existing.updated_at = now
        db.commit()
        db.refresh(existing)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info('Merged submission into logbook %s for register number %s', existing.id, existing.rgno)
    return existing, False


@router.post('/create', response_model=LogbookSaveResponse)
def create_logbook(
    body: dict[str, Any] = Body(...),
    claims: TokenClaims = Depends(get_token_claims),
    db: Session = Depends(get_db),
):
    if claims.role != 'student':
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=STUDENTS_CANNOT_CREATE)

    logger.info('Received logbook submission from register number %s', claims.rgno)
    document = parse_logbook_form(body)

    if document['rgno'] != claims.rgno:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only edit your own logbook')

    logbook, created = upsert_logbook(db, document)
    return LogbookSaveResponse(
        message='Log book saved successfully' if created else 'Log book updated successfully',
        id=logbook.id,
        is_update=not created,
    )


@router.get('/all', response_model=LogbookListResponse)
def list_all_logbooks(
    claims: TokenClaims = Depends(require_roles(*REVIEWER_ROLES, detail=STUDENTS_OWN_LOGBOOK_ONLY)),
    db: Session = Depends(get_db),
):
    return _list_response(_newest_first(db.query(LogBook)).all())


@router.get('/my-logbooks', response_model=LogbookListResponse)
def list_my_logbooks(
    claims: TokenClaims = Depends(get_token_claims),
    db: Session = Depends(get_db),
):
    logbooks = _newest_first(db.query(LogBook).filter(LogBook.rgno == claims.rgno)).all()
    logger.info('Register number %s has %s logbooks', claims.rgno, len(logbooks))
    return _list_response(logbooks)


@router.get('/roll/{rollno}', response_model=LogbookListResponse)
def list_logbooks_by_roll(
    rollno: PathId,
    claims: TokenClaims = Depends(require_roles(*REVIEWER_ROLES, detail=STUDENTS_OWN_LOGBOOK_ONLY)),
    db: Session = Depends(get_db),
):
    logbooks = _newest_first(db.query(LogBook).filter(LogBook.rollno == rollno)).all()
    logger.info('Found %s logbooks for roll number %s', len(logbooks), rollno)
    return _list_response(logbooks)


@router.get('/register/{rgno}', response_model=LogbookListResponse)
def list_logbooks_by_register(
    rgno: PathId,
    claims: TokenClaims = Depends(get_token_claims),
    db: Session = Depends(get_db),
):
    ensure_student_owns(claims, rgno, 'You can only view your own logbooks')

    logbooks = _newest_first(db.query(LogBook).filter(LogBook.rgno == rgno)).all()
    logger.info('Found %s logbooks for register number %s (role %s)', len(logbooks), rgno, claims.role)
    return _list_response(logbooks)


@router.get('/{logbook_id}', response_model=LogbookDetailResponse)
def get_logbook(
    logbook_id: PathId,
    claims: TokenClaims = Depends(get_token_claims),
    db: Session = Depends(get_db),
):
    logbook = get_logbook_or_404(db, logbook_id)
    ensure_student_owns(claims, logbook.rgno, 'You can only view your own logbook')
    return LogbookDetailResponse(data=LogbookResponse.model_validate(logbook))


@router.delete('/{logbook_id}', response_model=MessageResponse)
def delete_logbook(
    logbook_id: PathId,
    claims: TokenClaims = Depends(get_token_claims),
    db: Session = Depends(get_db),
):
    logbook = get_logbook_or_404(db, logbook_id)
    ensure_student_owns(claims, logbook.rgno, 'You can only delete your own logbook')

    try:
        db.delete(logbook)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info('Deleted logbook %s (by %s %s)', logbook_id, claims.role, claims.rgno)
    return MessageResponse(message='Deleted successfully')
