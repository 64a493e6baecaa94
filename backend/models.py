from sqlalchemy import Column, Integer, String, Text, DateTime, JSON
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class InterviewSessionRow(Base):
    __tablename__ = "interview_sessions"

    # Autoincrement pk keeps insertion order; listing is pk descending.
    pk = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False)
    job_description = Column(Text, nullable=True)
    resume_ref = Column(Text, nullable=True)
    questions = Column(JSON, nullable=False)  # list of {question_text, user_answer_text, model_answer_text}
    accumulated_context = Column(Text, nullable=False, default="")
    feedback_text = Column(Text, nullable=True)
    score = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False)


class BankedQuestionRow(Base):
    __tablename__ = "banked_questions"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    question_id = Column(String, unique=True, nullable=False)
    question_text = Column(Text, nullable=False)
    category = Column(String, nullable=False)
    difficulty = Column(String, nullable=False)  # Easy, Medium, Hard
    tips = Column(JSON, nullable=False)  # list of strings
    ideal_answer = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False)
