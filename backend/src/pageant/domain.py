from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationInfo, field_validator


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def _strip_required(v: object, field: str) -> str:
    if not isinstance(v, str):
        raise TypeError(f"{field} must be a string")
    s = v.strip()
    if not s:
        raise ValueError(f"{field} must not be blank")
    return s


class Event(BaseModel):
    id: str
    name: str
    description: str = ""
    event_date: date
    is_active: bool = False
    created_at: datetime


class Contestant(BaseModel):
    id: str
    event_id: str
    name: str
    age: int
    course: str
    year: str
    photo: str | None = None


class Category(BaseModel):
    id: str
    event_id: str
    name: str
    max_score: int
    weight: float
    created_at: datetime


class Judge(BaseModel):
    id: str
    event_id: str
    name: str
    role: str
    judge_key: str | None = None

    @property
    def is_placeholder(self) -> bool:
        return not self.judge_key


class Score(BaseModel):
    event_id: str
    contestant_id: str
    category_id: str
    judge_id: str
    score: float


# --- requests ---


class CreateEventRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=1000)
    event_date: date

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v: object) -> str:
        return _strip_required(v, "name")


class ContestantRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    age: int = Field(gt=0, lt=150)
    course: str = Field(min_length=1, max_length=100)
    year: str = Field(min_length=1, max_length=30)
    photo: str | None = None

    @field_validator("name", "course", "year", mode="before")
    @classmethod
    def _strip_text(cls, v: object, info: ValidationInfo) -> str:
        return _strip_required(v, info.field_name)

    @field_validator("photo", mode="before")
    @classmethod
    def _blank_photo_is_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class CategoryRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    max_score: int = Field(gt=0)
    weight: float = Field(gt=0, le=1)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v: object) -> str:
        return _strip_required(v, "name")


class JudgeRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    role: str = Field(min_length=1, max_length=50)
    # True なら審査員キーを発行する（未発行の審査員は採点できない）
    create_account: bool = False

    @field_validator("name", "role", mode="before")
    @classmethod
    def _strip_text(cls, v: object, info: ValidationInfo) -> str:
        return _strip_required(v, info.field_name)


class SubmitScoresRequest(BaseModel):
    # 値の検証は validation.validate_and_normalize_submission で行う
    scores: dict[str, Any]


# --- results ---


class CategoryScore(BaseModel):
    category_id: str
    average: float
    weighted: float
    average_display: float
    weighted_display: float


class RankedEntry(BaseModel):
    contestant_id: str
    total: float
    rank: int
    candidate_number: int
    label: str
    contestant: Contestant


class EventStatistics(BaseModel):
    total_contestants: int
    total_judges: int
    total_categories: int
    total_possible_score: int
    average_total_score: float
    total_scores_submitted: int
    total_possible_submissions: int
    completion_percentage: int
    generated_at: datetime


class AnonymousJudge(BaseModel):
    id: str
    name: str
    role: str


class JudgeScoreCell(BaseModel):
    judge_id: str
    judge_name: str
    score: float | None


class CategoryBreakdown(BaseModel):
    category_id: str
    category_name: str
    max_score: int
    weight: float
    judge_scores: list[JudgeScoreCell]
    average_score: float
    weighted_score: float


class ContestantBreakdown(BaseModel):
    contestant: Contestant
    candidate_number: int
    category_scores: list[CategoryBreakdown]
    total_score: float


class NumberedContestant(Contestant):
    candidate_number: int


class PublicResultsResponse(BaseModel):
    event: Event
    judges: list[AnonymousJudge]
    categories: list[Category]
    rankings: list[RankedEntry]
    total_scores: dict[str, float]


class EventReportResponse(BaseModel):
    event: Event
    contestants: list[NumberedContestant]
    judges: list[AnonymousJudge]
    categories: list[Category]
    rankings: list[RankedEntry]
    detailed_scores: list[ContestantBreakdown]
    statistics: EventStatistics


class EventSummary(Event):
    contestant_count: int
    judge_count: int
    category_count: int


class EventDetailResponse(BaseModel):
    event: Event
    contestants: list[Contestant]
    categories: list[Category]
    judges: list[Judge]
    weight_total: float
    score_count: int


class JudgeEventDataResponse(BaseModel):
    event: Event
    judge_id: str
    contestants: list[NumberedContestant]
    categories: list[Category]
    scores: list[Score]


class JudgeContestantResponse(BaseModel):
    contestant: NumberedContestant
    categories: list[Category]
    scores: dict[str, float]
