"""Question bank endpoints."""

import json

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session, select

from handscore.db import get_session
from handscore.models import Question
from handscore.schemas import QuestionCreate, QuestionRead

router = APIRouter(prefix="/questions", tags=["questions"])


@router.post("", response_model=QuestionRead, status_code=status.HTTP_201_CREATED)
def create_question(payload: QuestionCreate, session: Session = Depends(get_session)) -> QuestionRead:
    question = Question(
        title=payload.title,
        content=payload.content,
        subject=payload.subject,
        marks=payload.marks,
        keywords_json=json.dumps([keyword.strip() for keyword in payload.keywords if keyword.strip()]),
        sample_answer=payload.sample_answer,
    )
    session.add(question)
    session.commit()
    session.refresh(question)
    return QuestionRead.from_model(question)


@router.get("", response_model=list[QuestionRead])
def list_questions(
    subject: str | None = Query(None),
    session: Session = Depends(get_session),
) -> list[QuestionRead]:
    statement = select(Question)
    if subject:
        statement = statement.where(Question.subject == subject)
    questions = session.exec(statement.order_by(Question.created_at.desc(), Question.id.desc())).all()
    return [QuestionRead.from_model(question) for question in questions]


@router.get("/{question_id}", response_model=QuestionRead)
def get_question(question_id: int, session: Session = Depends(get_session)) -> QuestionRead:
    question = session.get(Question, question_id)
    if not question:
        raise HTTPException(status_code=404, detail="Question not found")
    return QuestionRead.from_model(question)
