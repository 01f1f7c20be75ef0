from __future__ import annotations

import logging
from pathlib import Path

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mangum import Mangum

from .config import Settings, configure_logging, load_env_file
from .domain import (
    Category,
    CategoryRequest,
    Contestant,
    ContestantRequest,
    CreateEventRequest,
    Event,
    EventDetailResponse,
    EventReportResponse,
    EventSummary,
    Judge,
    JudgeContestantResponse,
    JudgeEventDataResponse,
    JudgeRequest,
    PublicResultsResponse,
    SubmitScoresRequest,
)
from .report import build_event_report, build_public_results, number_contestants
from .store import Store, build_store
from .validation import SubmissionError, validate_and_normalize_submission

logger = logging.getLogger(__name__)

NO_STORE = "no-store, max-age=0"


def create_app(settings: Settings | None = None, store: Store | None = None) -> FastAPI:
    repo_root = Path(__file__).resolve().parents[3]
    load_env_file(repo_root)
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(title="Pageant Scoring")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = store or build_store(settings.store_backend)
    if not settings.admin_api_key:
        logger.warning("ADMIN_API_KEY is not set; admin endpoints are disabled")

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "internal server error"})

    # --- dependencies ---

    def require_admin(x_admin_key: str | None = Header(default=None, alias="X-Admin-Key")) -> None:
        if not settings.admin_api_key:
            raise HTTPException(status_code=503, detail="admin access is not configured")
        if not x_admin_key:
            raise HTTPException(status_code=401, detail="X-Admin-Key is required")
        if x_admin_key != settings.admin_api_key:
            raise HTTPException(status_code=403, detail="invalid admin key")

    def require_judge(
        x_judge_key: str | None = Header(default=None, alias="X-Judge-Key"),
    ) -> Judge:
        if not x_judge_key:
            raise HTTPException(status_code=401, detail="X-Judge-Key is required")
        event = store.get_active_event()
        if event is None:
            raise HTTPException(status_code=404, detail="no active event found")
        judge = store.get_judge_by_key(event.id, x_judge_key)
        if judge is None:
            raise HTTPException(status_code=403, detail="invalid judge key")
        return judge

    def _event_or_404(event_id: str) -> Event:
        event = store.get_event(event_id)
        if event is None:
            raise HTTPException(status_code=404, detail="event not found")
        return event

    def _public_results(event: Event) -> PublicResultsResponse:
        return build_public_results(
            event,
            store.list_contestants(event.id),
            store.list_categories(event.id),
            store.list_judges(event.id),
            store.list_scores(event.id),
        )

    @app.get("/health")
    def health():
        return {"ok": True}

    # --- public ---

    @app.get("/api/public/events", response_model=list[Event])
    def public_events(response: Response):
        response.headers["Cache-Control"] = NO_STORE
        return sorted(store.list_events(), key=lambda e: e.event_date, reverse=True)

    @app.get("/api/public/active-event", response_model=PublicResultsResponse)
    def public_active_event(response: Response):
        response.headers["Cache-Control"] = NO_STORE
        event = store.get_active_event()
        if event is None:
            raise HTTPException(status_code=404, detail="no active event found")
        return _public_results(event)

    @app.get("/api/public/events/{event_id}", response_model=PublicResultsResponse)
    def public_event(event_id: str, response: Response):
        response.headers["Cache-Control"] = NO_STORE
        return _public_results(_event_or_404(event_id))

    # --- admin: events ---

    admin = [Depends(require_admin)]

    @app.get("/api/admin/events", response_model=list[EventSummary], dependencies=admin)
    def admin_list_events():
        return [
            EventSummary(
                **e.model_dump(),
                contestant_count=len(store.list_contestants(e.id)),
                judge_count=len(store.list_judges(e.id)),
                category_count=len(store.list_categories(e.id)),
            )
            for e in store.list_events()
        ]

    @app.post("/api/admin/events", response_model=Event, dependencies=admin)
    def admin_create_event(req: CreateEventRequest):
        event = store.create_event(req.name, req.description, req.event_date)
        logger.info("event created: %s (now active)", event.id)
        return event

    @app.get("/api/admin/events/{event_id}", response_model=EventDetailResponse, dependencies=admin)
    def admin_get_event(event_id: str):
        event = _event_or_404(event_id)
        categories = store.list_categories(event_id)
        return EventDetailResponse(
            event=event,
            contestants=store.list_contestants(event_id),
            categories=categories,
            judges=store.list_judges(event_id),
            weight_total=round(sum(c.weight for c in categories), 6),
            score_count=len(store.list_scores(event_id)),
        )

    @app.delete("/api/admin/events/{event_id}", dependencies=admin)
    def admin_delete_event(event_id: str):
        try:
            store.delete_event(event_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="event not found")
        logger.info("event deleted: %s", event_id)
        return {"ok": True}

    @app.post("/api/admin/events/{event_id}/activate", response_model=Event, dependencies=admin)
    def admin_activate_event(event_id: str):
        try:
            event = store.activate_event(event_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="event not found")
        logger.info("event activated: %s", event_id)
        return event

    @app.get(
        "/api/admin/events/{event_id}/report",
        response_model=EventReportResponse,
        dependencies=admin,
    )
    def admin_report(event_id: str):
        event = _event_or_404(event_id)
        return build_event_report(
            event,
            store.list_contestants(event_id),
            store.list_categories(event_id),
            store.list_judges(event_id),
            store.list_scores(event_id),
        )

    # --- admin: contestants ---

    @app.post(
        "/api/admin/events/{event_id}/contestants", response_model=Contestant, dependencies=admin
    )
    def admin_add_contestant(event_id: str, req: ContestantRequest):
        _event_or_404(event_id)
        return store.add_contestant(event_id, req)

    @app.get(
        "/api/admin/events/{event_id}/contestants/{contestant_id}",
        response_model=Contestant,
        dependencies=admin,
    )
    def admin_get_contestant(event_id: str, contestant_id: str):
        contestant = store.get_contestant(event_id, contestant_id)
        if contestant is None:
            raise HTTPException(status_code=404, detail="contestant not found")
        return contestant

    @app.put(
        "/api/admin/events/{event_id}/contestants/{contestant_id}",
        response_model=Contestant,
        dependencies=admin,
    )
    def admin_update_contestant(event_id: str, contestant_id: str, req: ContestantRequest):
        try:
            return store.update_contestant(event_id, contestant_id, req)
        except KeyError:
            raise HTTPException(status_code=404, detail="contestant not found")

    @app.delete("/api/admin/events/{event_id}/contestants/{contestant_id}", dependencies=admin)
    def admin_delete_contestant(event_id: str, contestant_id: str):
        try:
            store.delete_contestant(event_id, contestant_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="contestant not found")
        return {"ok": True}

    # --- admin: categories ---

    @app.post(
        "/api/admin/events/{event_id}/categories", response_model=Category, dependencies=admin
    )
    def admin_add_category(event_id: str, req: CategoryRequest):
        _event_or_404(event_id)
        return store.add_category(event_id, req)

    @app.get(
        "/api/admin/events/{event_id}/categories/{category_id}",
        response_model=Category,
        dependencies=admin,
    )
    def admin_get_category(event_id: str, category_id: str):
        category = store.get_category(event_id, category_id)
        if category is None:
            raise HTTPException(status_code=404, detail="category not found")
        return category

    @app.put(
        "/api/admin/events/{event_id}/categories/{category_id}",
        response_model=Category,
        dependencies=admin,
    )
    def admin_update_category(event_id: str, category_id: str, req: CategoryRequest):
        try:
            return store.update_category(event_id, category_id, req)
        except KeyError:
            raise HTTPException(status_code=404, detail="category not found")

    @app.delete("/api/admin/events/{event_id}/categories/{category_id}", dependencies=admin)
    def admin_delete_category(event_id: str, category_id: str):
        try:
            store.delete_category(event_id, category_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="category not found")
        return {"ok": True}

    # --- admin: judges ---

    @app.post("/api/admin/events/{event_id}/judges", response_model=Judge, dependencies=admin)
    def admin_add_judge(event_id: str, req: JudgeRequest):
        _event_or_404(event_id)
        return store.add_judge(event_id, req)

    @app.get(
        "/api/admin/events/{event_id}/judges/{judge_id}", response_model=Judge, dependencies=admin
    )
    def admin_get_judge(event_id: str, judge_id: str):
        judge = store.get_judge(event_id, judge_id)
        if judge is None:
            raise HTTPException(status_code=404, detail="judge not found")
        return judge

    @app.put(
        "/api/admin/events/{event_id}/judges/{judge_id}", response_model=Judge, dependencies=admin
    )
    def admin_update_judge(event_id: str, judge_id: str, req: JudgeRequest):
        try:
            return store.update_judge(event_id, judge_id, req)
        except KeyError:
            raise HTTPException(status_code=404, detail="judge not found")

    @app.delete("/api/admin/events/{event_id}/judges/{judge_id}", dependencies=admin)
    def admin_delete_judge(event_id: str, judge_id: str):
        try:
            store.delete_judge(event_id, judge_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="judge not found")
        return {"ok": True}

    # --- judge ---

    @app.get("/api/judge/event-data", response_model=JudgeEventDataResponse)
    def judge_event_data(judge: Judge = Depends(require_judge)):
        event = _event_or_404(judge.event_id)
        return JudgeEventDataResponse(
            event=event,
            judge_id=judge.id,
            contestants=number_contestants(store.list_contestants(event.id)),
            categories=store.list_categories(event.id),
            scores=store.list_scores(event.id, judge_id=judge.id),
        )

    @app.get("/api/judge/contestants/{contestant_id}", response_model=JudgeContestantResponse)
    def judge_contestant(contestant_id: str, judge: Judge = Depends(require_judge)):
        numbered = {c.id: c for c in number_contestants(store.list_contestants(judge.event_id))}
        contestant = numbered.get(contestant_id)
        if contestant is None:
            raise HTTPException(status_code=404, detail="contestant not found")
        scores = {
            s.category_id: s.score
            for s in store.list_scores(judge.event_id, judge_id=judge.id)
            if s.contestant_id == contestant_id
        }
        return JudgeContestantResponse(
            contestant=contestant,
            categories=store.list_categories(judge.event_id),
            scores=scores,
        )

    @app.post("/api/judge/contestants/{contestant_id}/scores")
    def judge_submit_scores(
        contestant_id: str,
        req: SubmitScoresRequest,
        judge: Judge = Depends(require_judge),
    ):
        contestant = store.get_contestant(judge.event_id, contestant_id)
        if contestant is None:
            raise HTTPException(status_code=404, detail="contestant not found")
        try:
            scores = validate_and_normalize_submission(
                judge, contestant, req.scores, store.list_categories(judge.event_id)
            )
            store.replace_scores(judge.event_id, judge.id, contestant.id, scores)
        except SubmissionError as e:
            logger.warning("rejected scores from judge %s: %s", judge.id, e)
            raise HTTPException(status_code=400, detail=str(e))
        logger.info(
            "scores replaced: judge=%s contestant=%s categories=%d",
            judge.id,
            contestant.id,
            len(scores),
        )
        return {"ok": True}

    return app


app = create_app()
handler = Mangum(app)
