"""CLI entrypoint for the daily podcast engine."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from core.contracts import DailyGenerateRequest, JobStatus
from utils.logger import configure_package_loggers
from webapp.runtime import get_orchestrator, get_runtime


def _print(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def main() -> None:
    parser = argparse.ArgumentParser(description="Daily podcast trend selection and pipeline CLI")
    parser.add_argument("--log-file", default=None, help="Also write logs under logs/")
    sub = parser.add_subparsers(dest="command", required=True)

    daily = sub.add_parser("daily-generate", help="Run the full daily pipeline")
    daily.add_argument("--episode-date", default=None, help="YYYY-MM-DD (default: today in JST)")
    daily.add_argument("--idempotency-key", default=None)
    daily.add_argument("--skip-tts", action="store_true", default=None)

    plan = sub.add_parser("plan-topics", help="Run only the topic planner")
    plan.add_argument("--episode-date", default=None)
    plan.add_argument("--idempotency-key", default=None)

    runs = sub.add_parser("job-runs", help="List ledger records")
    runs.add_argument("--status", default=None, choices=[item.value for item in JobStatus])
    runs.add_argument("--job", default=None)
    runs.add_argument("--limit", type=int, default=50)

    seed = sub.add_parser("seed-trends", help="Load trend sources/items from a JSON file")
    seed.add_argument("path", type=Path)

    serve = sub.add_parser("serve", help="Run the FastAPI app with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()
    configure_package_loggers(log_file=args.log_file)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("webapp.app:app", host=args.host, port=args.port)
        return

    if args.command == "daily-generate":
        request = DailyGenerateRequest(
            episodeDate=args.episode_date,
            idempotencyKey=args.idempotency_key,
            skipTts=args.skip_tts,
        )
        result = get_orchestrator().run(request)
        _print(result)
        if not result.get("ok"):
            raise SystemExit(1)
        return

    runtime = get_runtime()

    if args.command == "plan-topics":
        request = DailyGenerateRequest(episodeDate=args.episode_date, idempotencyKey=args.idempotency_key)
        episode_date = request.resolve_episode_date()
        _print(runtime.planner.plan(episode_date, request.resolve_idempotency_key(episode_date)))
        return

    if args.command == "job-runs":
        status = JobStatus(args.status) if args.status else None
        records = runtime.ledger.list_runs(status=status, job_name=args.job, limit=args.limit)
        _print([record.model_dump(mode="json") for record in records])
        return

    if args.command == "seed-trends":
        from trends.seed import seed_trends

        document = json.loads(args.path.read_text(encoding="utf-8"))
        _print(seed_trends(runtime.trends, document))
        return


if __name__ == "__main__":
    main()
