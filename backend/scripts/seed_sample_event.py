from __future__ import annotations

from datetime import date

from pageant.config import Settings
from pageant.domain import CategoryRequest, ContestantRequest, JudgeRequest
from pageant.store import build_store

CONTESTANTS = [
    ("Maria Santos", 20, "BS Computer Science", "3rd Year"),
    ("Ana Rodriguez", 19, "BS Business Administration", "2nd Year"),
    ("Carmen Garcia", 21, "BS Psychology", "4th Year"),
    ("Isabella Martinez", 18, "BS Nursing", "1st Year"),
    ("Sofia Lopez", 20, "BS Education", "3rd Year"),
]

# 重みの合計は 1.0 になるようにしておく（システム側では強制しない）
CATEGORIES = [
    ("Beauty & Poise", 25, 0.25),
    ("Intelligence & Communication", 25, 0.25),
    ("Talent", 20, 0.20),
    ("Personality", 15, 0.15),
    ("Evening Gown", 15, 0.15),
]

JUDGES = [
    ("Prof. Elena Cruz", "Head Judge"),
    ("Dr. Roberto Santos", "Faculty Judge"),
    ("Ms. Patricia Reyes", "Alumni Judge"),
    ("Mr. Carlos Mendoza", "Industry Judge"),
    ("Prof. Lucia Fernandez", "Faculty Judge"),
]


def main() -> None:
    settings = Settings.from_env()
    if settings.store_backend != "dynamodb":
        # インメモリのストアはプロセス終了で消えるので投入しても意味がない
        raise SystemExit("STORE_BACKEND=dynamodb is required to seed a sample event")
    store = build_store(settings.store_backend)
    event = store.create_event(
        "School College Beauty Pageant",
        "Annual beauty pageant showcasing talent, intelligence, and poise of our college students",
        date.today(),
    )
    print(f"Created event: {event.id} ({event.name})")

    for name, age, course, year in CONTESTANTS:
        store.add_contestant(event.id, ContestantRequest(name=name, age=age, course=course, year=year))
    for name, max_score, weight in CATEGORIES:
        store.add_category(event.id, CategoryRequest(name=name, max_score=max_score, weight=weight))
    for name, role in JUDGES:
        judge = store.add_judge(event.id, JudgeRequest(name=name, role=role, create_account=True))
        print(f"  judge {judge.name}: X-Judge-Key={judge.judge_key}")


if __name__ == "__main__":
    main()
