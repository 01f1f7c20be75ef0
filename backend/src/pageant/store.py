from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Protocol

import boto3
from boto3.dynamodb.conditions import Attr, Key

from .domain import (
    Category,
    CategoryRequest,
    Contestant,
    ContestantRequest,
    Event,
    Judge,
    JudgeRequest,
    Score,
    new_id,
)
from .validation import SubmissionError

logger = logging.getLogger(__name__)

# DynamoDB TransactWriteItems の上限
MAX_TRANSACT_ITEMS = 100


class Store(Protocol):
    def create_event(self, name: str, description: str, event_date: date) -> Event: ...

    def list_events(self) -> list[Event]: ...

    def get_event(self, event_id: str) -> Event | None: ...

    def get_active_event(self) -> Event | None: ...

    def activate_event(self, event_id: str) -> Event: ...

    def delete_event(self, event_id: str) -> None: ...

    def add_contestant(self, event_id: str, data: ContestantRequest) -> Contestant: ...

    def get_contestant(self, event_id: str, contestant_id: str) -> Contestant | None: ...

    def list_contestants(self, event_id: str) -> list[Contestant]: ...

    def update_contestant(
        self, event_id: str, contestant_id: str, data: ContestantRequest
    ) -> Contestant: ...

    def delete_contestant(self, event_id: str, contestant_id: str) -> None: ...

    def add_category(self, event_id: str, data: CategoryRequest) -> Category: ...

    def get_category(self, event_id: str, category_id: str) -> Category | None: ...

    def list_categories(self, event_id: str) -> list[Category]: ...

    def update_category(self, event_id: str, category_id: str, data: CategoryRequest) -> Category: ...

    def delete_category(self, event_id: str, category_id: str) -> None: ...

    def add_judge(self, event_id: str, data: JudgeRequest) -> Judge: ...

    def get_judge(self, event_id: str, judge_id: str) -> Judge | None: ...

    def get_judge_by_key(self, event_id: str, judge_key: str) -> Judge | None: ...

    def list_judges(self, event_id: str) -> list[Judge]: ...

    def update_judge(self, event_id: str, judge_id: str, data: JudgeRequest) -> Judge: ...

    def delete_judge(self, event_id: str, judge_id: str) -> None: ...

    def replace_scores(
        self, event_id: str, judge_id: str, contestant_id: str, scores: list[Score]
    ) -> None: ...

    def list_scores(self, event_id: str, judge_id: str | None = None) -> list[Score]: ...


def _sort_contestants(contestants: list[Contestant]) -> list[Contestant]:
    return sorted(contestants, key=lambda c: (c.name.casefold(), c.name))


def _sort_judges(judges: list[Judge]) -> list[Judge]:
    return sorted(judges, key=lambda j: (j.name.casefold(), j.name))


def _check_scores_target(event_id: str, judge_id: str, contestant_id: str, scores: list[Score]) -> None:
    for s in scores:
        if (s.event_id, s.judge_id, s.contestant_id) != (event_id, judge_id, contestant_id):
            raise ValueError("score does not match the judge/contestant being replaced")


@dataclass
class InMemoryStore(Store):
    events: dict[str, Event]
    contestants: dict[tuple[str, str], Contestant]
    categories: dict[tuple[str, str], Category]
    judges: dict[tuple[str, str], Judge]
    # (event_id, contestant_id, category_id, judge_id) -> score
    scores: dict[tuple[str, str, str, str], float]
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @classmethod
    def create(cls) -> "InMemoryStore":
        return cls(events={}, contestants={}, categories={}, judges={}, scores={})

    # --- events ---

    def create_event(self, name: str, description: str, event_date: date) -> Event:
        event = Event(
            id=new_id("evt"),
            name=name.strip(),
            description=description.strip(),
            event_date=event_date,
            is_active=True,
            created_at=_now(),
        )
        with self._lock:
            self._deactivate_all()
            self.events[event.id] = event
        return event

    def list_events(self) -> list[Event]:
        return sorted(self.events.values(), key=lambda e: e.created_at, reverse=True)

    def get_event(self, event_id: str) -> Event | None:
        return self.events.get(event_id)

    def get_active_event(self) -> Event | None:
        return next((e for e in self.events.values() if e.is_active), None)

    def activate_event(self, event_id: str) -> Event:
        with self._lock:
            if event_id not in self.events:
                raise KeyError("event not found")
            self._deactivate_all()
            event = self.events[event_id].model_copy(update={"is_active": True})
            self.events[event_id] = event
        return event

    def delete_event(self, event_id: str) -> None:
        with self._lock:
            if self.events.pop(event_id, None) is None:
                raise KeyError("event not found")
            for table in (self.contestants, self.categories, self.judges):
                for key in [k for k in table if k[0] == event_id]:
                    del table[key]
            for key in [k for k in self.scores if k[0] == event_id]:
                del self.scores[key]

    def _deactivate_all(self) -> None:
        for eid, e in self.events.items():
            if e.is_active:
                self.events[eid] = e.model_copy(update={"is_active": False})

    # --- contestants ---

    def add_contestant(self, event_id: str, data: ContestantRequest) -> Contestant:
        contestant = Contestant(id=new_id("c"), event_id=event_id, **data.model_dump())
        with self._lock:
            self._require_event(event_id)
            self.contestants[(event_id, contestant.id)] = contestant
        return contestant

    def get_contestant(self, event_id: str, contestant_id: str) -> Contestant | None:
        return self.contestants.get((event_id, contestant_id))

    def list_contestants(self, event_id: str) -> list[Contestant]:
        return _sort_contestants([c for (eid, _), c in self.contestants.items() if eid == event_id])

    def update_contestant(
        self, event_id: str, contestant_id: str, data: ContestantRequest
    ) -> Contestant:
        with self._lock:
            if (event_id, contestant_id) not in self.contestants:
                raise KeyError("contestant not found")
            contestant = Contestant(id=contestant_id, event_id=event_id, **data.model_dump())
            self.contestants[(event_id, contestant_id)] = contestant
        return contestant

    def delete_contestant(self, event_id: str, contestant_id: str) -> None:
        with self._lock:
            if self.contestants.pop((event_id, contestant_id), None) is None:
                raise KeyError("contestant not found")
            self._delete_scores_where(lambda k: k[0] == event_id and k[1] == contestant_id)

    # --- categories ---

    def add_category(self, event_id: str, data: CategoryRequest) -> Category:
        category = Category(
            id=new_id("cat"), event_id=event_id, created_at=_now(), **data.model_dump()
        )
        with self._lock:
            self._require_event(event_id)
            self.categories[(event_id, category.id)] = category
        return category

    def get_category(self, event_id: str, category_id: str) -> Category | None:
        return self.categories.get((event_id, category_id))

    def list_categories(self, event_id: str) -> list[Category]:
        return sorted(
            (c for (eid, _), c in self.categories.items() if eid == event_id),
            key=lambda c: c.created_at,
        )

    def update_category(self, event_id: str, category_id: str, data: CategoryRequest) -> Category:
        with self._lock:
            current = self.categories.get((event_id, category_id))
            if current is None:
                raise KeyError("category not found")
            category = current.model_copy(update=data.model_dump())
            self.categories[(event_id, category_id)] = category
        return category

    def delete_category(self, event_id: str, category_id: str) -> None:
        with self._lock:
            if self.categories.pop((event_id, category_id), None) is None:
                raise KeyError("category not found")
            self._delete_scores_where(lambda k: k[0] == event_id and k[2] == category_id)

    # --- judges ---

    def add_judge(self, event_id: str, data: JudgeRequest) -> Judge:
        judge = Judge(
            id=new_id("j"),
            event_id=event_id,
            name=data.name,
            role=data.role,
            judge_key=new_id("k") if data.create_account else None,
        )
        with self._lock:
            self._require_event(event_id)
            self.judges[(event_id, judge.id)] = judge
        return judge

    def get_judge(self, event_id: str, judge_id: str) -> Judge | None:
        return self.judges.get((event_id, judge_id))

    def get_judge_by_key(self, event_id: str, judge_key: str) -> Judge | None:
        return next(
            (
                j
                for (eid, _), j in self.judges.items()
                if eid == event_id and j.judge_key and j.judge_key == judge_key
            ),
            None,
        )

    def list_judges(self, event_id: str) -> list[Judge]:
        return _sort_judges([j for (eid, _), j in self.judges.items() if eid == event_id])

    def update_judge(self, event_id: str, judge_id: str, data: JudgeRequest) -> Judge:
        with self._lock:
            current = self.judges.get((event_id, judge_id))
            if current is None:
                raise KeyError("judge not found")
            judge_key = current.judge_key
            if data.create_account and not judge_key:
                judge_key = new_id("k")
            judge = current.model_copy(
                update={"name": data.name, "role": data.role, "judge_key": judge_key}
            )
            self.judges[(event_id, judge_id)] = judge
        return judge

    def delete_judge(self, event_id: str, judge_id: str) -> None:
        with self._lock:
            if self.judges.pop((event_id, judge_id), None) is None:
                raise KeyError("judge not found")
            self._delete_scores_where(lambda k: k[0] == event_id and k[3] == judge_id)

    # --- scores ---

    def replace_scores(
        self, event_id: str, judge_id: str, contestant_id: str, scores: list[Score]
    ) -> None:
        _check_scores_target(event_id, judge_id, contestant_id, scores)
        with self._lock:
            self._delete_scores_where(
                lambda k: k[0] == event_id and k[1] == contestant_id and k[3] == judge_id
            )
            for s in scores:
                self.scores[(event_id, contestant_id, s.category_id, judge_id)] = float(s.score)

    def list_scores(self, event_id: str, judge_id: str | None = None) -> list[Score]:
        with self._lock:
            items = list(self.scores.items())
        return [
            Score(
                event_id=eid,
                contestant_id=cid,
                category_id=cat_id,
                judge_id=jid,
                score=score,
            )
            for (eid, cid, cat_id, jid), score in items
            if eid == event_id and (judge_id is None or jid == judge_id)
        ]

    def _delete_scores_where(self, predicate) -> None:
        for key in [k for k in self.scores if predicate(k)]:
            del self.scores[key]

    def _require_event(self, event_id: str) -> None:
        if event_id not in self.events:
            raise KeyError("event not found")


@dataclass
class DynamoDBStore(Store):
    """1 テーブル設計。

    pk=EVENT#{event_id} に対して sk=META / CONTESTANT#{id} / CATEGORY#{id} /
    JUDGE#{id} / SCORE#{contestant_id}#{category_id}#{judge_id}。
    アクティブなイベントは pk=ACTIVE_EVENT, sk=META の 1 件で表す。
    """

    table_name: str
    resource: Any = field(default=None, repr=False)

    @classmethod
    def from_env(cls) -> "DynamoDBStore":
        table_name = os.environ.get("DDB_TABLE_NAME", "")
        if not table_name:
            raise RuntimeError("DDB_TABLE_NAME is required for dynamodb store")
        return cls(table_name=table_name)

    @property
    def _table(self):
        ddb = self.resource if self.resource is not None else boto3.resource("dynamodb")
        return ddb.Table(self.table_name)

    def _query_all(self, pk: str, sk_prefix: str = "") -> list[dict[str, Any]]:
        table = self._table
        condition = Key("pk").eq(pk)
        if sk_prefix:
            condition = condition & Key("sk").begins_with(sk_prefix)
        kwargs: dict[str, Any] = {"KeyConditionExpression": condition}
        items: list[dict[str, Any]] = []
        while True:
            resp = table.query(**kwargs)
            items.extend(resp.get("Items", []))
            last = resp.get("LastEvaluatedKey")
            if not last:
                return items
            kwargs["ExclusiveStartKey"] = last

    def _get(self, pk: str, sk: str) -> dict[str, Any] | None:
        resp = self._table.get_item(Key={"pk": pk, "sk": sk})
        return resp.get("Item") or None

    def _delete_items(self, items: list[dict[str, Any]]) -> None:
        with self._table.batch_writer() as batch:
            for it in items:
                batch.delete_item(Key={"pk": it["pk"], "sk": it["sk"]})

    # --- events ---

    def _active_event_id(self) -> str | None:
        item = self._get("ACTIVE_EVENT", "META")
        return item["event_id"] if item else None

    def _to_event(self, event_id: str, item: dict[str, Any], active_id: str | None) -> Event:
        return Event(
            id=event_id,
            name=item["name"],
            description=item.get("description", ""),
            event_date=date.fromisoformat(item["event_date"]),
            is_active=event_id == active_id,
            created_at=datetime.fromisoformat(item["created_at"]),
        )

    def create_event(self, name: str, description: str, event_date: date) -> Event:
        event = Event(
            id=new_id("evt"),
            name=name.strip(),
            description=description.strip(),
            event_date=event_date,
            is_active=True,
            created_at=_now(),
        )
        # イベント本体とアクティブ指定を同時に書き、片方だけ残らないようにする
        self._table.meta.client.transact_write_items(
            TransactItems=[
                {
                    "Put": {
                        "TableName": self.table_name,
                        "Item": {
                            "pk": f"EVENT#{event.id}",
                            "sk": "META",
                            "name": event.name,
                            "description": event.description,
                            "event_date": event.event_date.isoformat(),
                            "created_at": event.created_at.isoformat(),
                        },
                    }
                },
                {
                    "Put": {
                        "TableName": self.table_name,
                        "Item": {"pk": "ACTIVE_EVENT", "sk": "META", "event_id": event.id},
                    }
                },
            ]
        )
        return event

    def list_events(self) -> list[Event]:
        table = self._table
        kwargs: dict[str, Any] = {
            "FilterExpression": Attr("sk").eq("META") & Attr("pk").begins_with("EVENT#")
        }
        items: list[dict[str, Any]] = []
        while True:
            resp = table.scan(**kwargs)
            items.extend(resp.get("Items", []))
            last = resp.get("LastEvaluatedKey")
            if not last:
                break
            kwargs["ExclusiveStartKey"] = last

        active_id = self._active_event_id()
        events = [self._to_event(it["pk"].split("#", 1)[1], it, active_id) for it in items]
        return sorted(events, key=lambda e: e.created_at, reverse=True)

    def get_event(self, event_id: str) -> Event | None:
        item = self._get(f"EVENT#{event_id}", "META")
        if not item:
            return None
        return self._to_event(event_id, item, self._active_event_id())

    def get_active_event(self) -> Event | None:
        active_id = self._active_event_id()
        if active_id is None:
            return None
        return self.get_event(active_id)

    def activate_event(self, event_id: str) -> Event:
        event = self.get_event(event_id)
        if event is None:
            raise KeyError("event not found")
        self._table.put_item(Item={"pk": "ACTIVE_EVENT", "sk": "META", "event_id": event_id})
        return event.model_copy(update={"is_active": True})

    def delete_event(self, event_id: str) -> None:
        if self.get_event(event_id) is None:
            raise KeyError("event not found")
        self._delete_items(self._query_all(f"EVENT#{event_id}"))
        if self._active_event_id() == event_id:
            self._table.delete_item(Key={"pk": "ACTIVE_EVENT", "sk": "META"})

    # --- contestants ---

    def _to_contestant(self, event_id: str, item: dict[str, Any]) -> Contestant:
        return Contestant(
            id=item["sk"].split("#", 1)[1],
            event_id=event_id,
            name=item["name"],
            age=int(item["age"]),
            course=item["course"],
            year=item["year"],
            photo=item.get("photo"),
        )

    def _put_contestant(self, contestant: Contestant) -> None:
        self._table.put_item(
            Item={
                "pk": f"EVENT#{contestant.event_id}",
                "sk": f"CONTESTANT#{contestant.id}",
                "name": contestant.name,
                "age": contestant.age,
                "course": contestant.course,
                "year": contestant.year,
                "photo": contestant.photo,
            }
        )

    def add_contestant(self, event_id: str, data: ContestantRequest) -> Contestant:
        if self.get_event(event_id) is None:
            raise KeyError("event not found")
        contestant = Contestant(id=new_id("c"), event_id=event_id, **data.model_dump())
        self._put_contestant(contestant)
        return contestant

    def get_contestant(self, event_id: str, contestant_id: str) -> Contestant | None:
        item = self._get(f"EVENT#{event_id}", f"CONTESTANT#{contestant_id}")
        return self._to_contestant(event_id, item) if item else None

    def list_contestants(self, event_id: str) -> list[Contestant]:
        items = self._query_all(f"EVENT#{event_id}", "CONTESTANT#")
        return _sort_contestants([self._to_contestant(event_id, it) for it in items])

    def update_contestant(
        self, event_id: str, contestant_id: str, data: ContestantRequest
    ) -> Contestant:
        if self.get_contestant(event_id, contestant_id) is None:
            raise KeyError("contestant not found")
        contestant = Contestant(id=contestant_id, event_id=event_id, **data.model_dump())
        self._put_contestant(contestant)
        return contestant

    def delete_contestant(self, event_id: str, contestant_id: str) -> None:
        if self.get_contestant(event_id, contestant_id) is None:
            raise KeyError("contestant not found")
        scores = self._query_all(f"EVENT#{event_id}", f"SCORE#{contestant_id}#")
        self._delete_items(scores + [{"pk": f"EVENT#{event_id}", "sk": f"CONTESTANT#{contestant_id}"}])

    # --- categories ---

    def _to_category(self, event_id: str, item: dict[str, Any]) -> Category:
        return Category(
            id=item["sk"].split("#", 1)[1],
            event_id=event_id,
            name=item["name"],
            max_score=int(item["max_score"]),
            weight=float(item["weight"]),
            created_at=datetime.fromisoformat(item["created_at"]),
        )

    def _put_category(self, category: Category) -> None:
        self._table.put_item(
            Item={
                "pk": f"EVENT#{category.event_id}",
                "sk": f"CATEGORY#{category.id}",
                "name": category.name,
                "max_score": category.max_score,
                "weight": Decimal(str(category.weight)),
                "created_at": category.created_at.isoformat(),
            }
        )

    def add_category(self, event_id: str, data: CategoryRequest) -> Category:
        if self.get_event(event_id) is None:
            raise KeyError("event not found")
        category = Category(
            id=new_id("cat"), event_id=event_id, created_at=_now(), **data.model_dump()
        )
        self._put_category(category)
        return category

    def get_category(self, event_id: str, category_id: str) -> Category | None:
        item = self._get(f"EVENT#{event_id}", f"CATEGORY#{category_id}")
        return self._to_category(event_id, item) if item else None

    def list_categories(self, event_id: str) -> list[Category]:
        items = self._query_all(f"EVENT#{event_id}", "CATEGORY#")
        return sorted((self._to_category(event_id, it) for it in items), key=lambda c: c.created_at)

    def update_category(self, event_id: str, category_id: str, data: CategoryRequest) -> Category:
        current = self.get_category(event_id, category_id)
        if current is None:
            raise KeyError("category not found")
        category = current.model_copy(update=data.model_dump())
        self._put_category(category)
        return category

    def delete_category(self, event_id: str, category_id: str) -> None:
        if self.get_category(event_id, category_id) is None:
            raise KeyError("category not found")
        scores = [
            it
            for it in self._query_all(f"EVENT#{event_id}", "SCORE#")
            if it["category_id"] == category_id
        ]
        self._delete_items(scores + [{"pk": f"EVENT#{event_id}", "sk": f"CATEGORY#{category_id}"}])

    # --- judges ---

    def _to_judge(self, event_id: str, item: dict[str, Any]) -> Judge:
        return Judge(
            id=item["sk"].split("#", 1)[1],
            event_id=event_id,
            name=item["name"],
            role=item["role"],
            judge_key=item.get("judge_key"),
        )

    def _put_judge(self, judge: Judge) -> None:
        self._table.put_item(
            Item={
                "pk": f"EVENT#{judge.event_id}",
                "sk": f"JUDGE#{judge.id}",
                "name": judge.name,
                "role": judge.role,
                "judge_key": judge.judge_key,
            }
        )

    def add_judge(self, event_id: str, data: JudgeRequest) -> Judge:
        if self.get_event(event_id) is None:
            raise KeyError("event not found")
        judge = Judge(
            id=new_id("j"),
            event_id=event_id,
            name=data.name,
            role=data.role,
            judge_key=new_id("k") if data.create_account else None,
        )
        self._put_judge(judge)
        return judge

    def get_judge(self, event_id: str, judge_id: str) -> Judge | None:
        item = self._get(f"EVENT#{event_id}", f"JUDGE#{judge_id}")
        return self._to_judge(event_id, item) if item else None

    def get_judge_by_key(self, event_id: str, judge_key: str) -> Judge | None:
        return next(
            (j for j in self.list_judges(event_id) if j.judge_key and j.judge_key == judge_key),
            None,
        )

    def list_judges(self, event_id: str) -> list[Judge]:
        items = self._query_all(f"EVENT#{event_id}", "JUDGE#")
        return _sort_judges([self._to_judge(event_id, it) for it in items])

    def update_judge(self, event_id: str, judge_id: str, data: JudgeRequest) -> Judge:
        current = self.get_judge(event_id, judge_id)
        if current is None:
            raise KeyError("judge not found")
        judge_key = current.judge_key
        if data.create_account and not judge_key:
            judge_key = new_id("k")
        judge = current.model_copy(
            update={"name": data.name, "role": data.role, "judge_key": judge_key}
        )
        self._put_judge(judge)
        return judge

    def delete_judge(self, event_id: str, judge_id: str) -> None:
        if self.get_judge(event_id, judge_id) is None:
            raise KeyError("judge not found")
        scores = [
            it for it in self._query_all(f"EVENT#{event_id}", "SCORE#") if it["judge_id"] == judge_id
        ]
        self._delete_items(scores + [{"pk": f"EVENT#{event_id}", "sk": f"JUDGE#{judge_id}"}])

    # --- scores ---

    def replace_scores(
        self, event_id: str, judge_id: str, contestant_id: str, scores: list[Score]
    ) -> None:
        _check_scores_target(event_id, judge_id, contestant_id, scores)
        if len(scores) > MAX_TRANSACT_ITEMS:
            raise SubmissionError(f"too many score changes in one submission (max {MAX_TRANSACT_ITEMS})")
        pk = f"EVENT#{event_id}"
        new_keys = {f"SCORE#{contestant_id}#{s.category_id}#{judge_id}" for s in scores}
        stale = [
            it
            for it in self._query_all(pk, f"SCORE#{contestant_id}#")
            if it["judge_id"] == judge_id and it["sk"] not in new_keys
        ]

        actions: list[dict[str, Any]] = [
            {"Delete": {"TableName": self.table_name, "Key": {"pk": pk, "sk": it["sk"]}}}
            for it in stale
        ]
        actions.extend(
            {
                "Put": {
                    "TableName": self.table_name,
                    "Item": {
                        "pk": pk,
                        "sk": f"SCORE#{contestant_id}#{s.category_id}#{judge_id}",
                        "contestant_id": contestant_id,
                        "category_id": s.category_id,
                        "judge_id": judge_id,
                        "score": Decimal(str(s.score)),
                    },
                }
            }
            for s in scores
        )
        if not actions:
            return
        if len(actions) > MAX_TRANSACT_ITEMS:
            raise SubmissionError(f"too many score changes in one submission (max {MAX_TRANSACT_ITEMS})")

        # 削除と書き込みを 1 トランザクションで行い、途中失敗で旧スコアを失わない
        self._table.meta.client.transact_write_items(TransactItems=actions)

    def list_scores(self, event_id: str, judge_id: str | None = None) -> list[Score]:
        items = self._query_all(f"EVENT#{event_id}", "SCORE#")
        return [
            Score(
                event_id=event_id,
                contestant_id=it["contestant_id"],
                category_id=it["category_id"],
                judge_id=it["judge_id"],
                score=float(it.get("score", 0)),
            )
            for it in items
            if judge_id is None or it["judge_id"] == judge_id
        ]


def build_store(backend: str | None = None) -> Store:
    kind = (backend or os.environ.get("STORE_BACKEND", "inmemory")).strip().lower()
    if kind == "dynamodb":
        logger.info("using dynamodb store")
        return DynamoDBStore.from_env()
    return InMemoryStore.create()


def _now() -> datetime:
    return datetime.now(timezone.utc)
