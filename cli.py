import argparse
import asyncio
import json
import time

import requests

from config import DEFAULT_DB_PATH, DEFAULT_YAML_PATH, configure_logging
from readiness_service import readiness_band, readiness_from_muscle
from rest_api import AnalyticsAPI
import seed_sample_data


def print_fatigue(report: dict) -> None:
    print(f"Readiness: {report['readiness_score']:.0f}/100")
    if report["deload_week_detected"]:
        print("Deload week detected")
    for entry in report["per_muscle"]:
        readiness = readiness_from_muscle(entry)
        print(
            f"{entry['muscle_group']:<10} {entry['status']:<17} "
            f"score {entry['fatigue_score']:6.1f}  readiness {readiness:3d} "
            f"({readiness_band(readiness)})"
        )


def print_up_next(rec: dict) -> None:
    split = rec["recommended_split"]
    print(f"Up next: {split['label']} ({split['reason']})")
    if rec["matched_template"]:
        print(f"Template: {rec['matched_template']['template_name']}")
    if rec["rest_recommended"]:
        print("Rest day recommended")
    print(rec["reasoning"])


def benchmark(url: str, runs: int = 10) -> None:
    times: list[float] = []
    for _ in range(runs):
        t0 = time.time()
        requests.get(f"{url}/health", timeout=5)
        times.append(time.time() - t0)
    avg = sum(times) / len(times)
    print(f"Average /health response time over {runs} runs: {avg:.4f}s")


def _add_paths(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db", default=DEFAULT_DB_PATH)
    parser.add_argument("--yaml", default=DEFAULT_YAML_PATH)
    parser.add_argument("--user", default=seed_sample_data.DEMO_USER)
    parser.add_argument("--json", action="store_true", help="print raw JSON")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Training analytics commands")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    _add_paths(sub.add_parser("fatigue"))
    _add_paths(sub.add_parser("recommendations"))
    _add_paths(sub.add_parser("recap"))

    nxt = sub.add_parser("up-next")
    _add_paths(nxt)
    nxt.add_argument("--duration", type=int, default=None)
    nxt.add_argument("--avoid", default="")

    prog = sub.add_parser("progression")
    _add_paths(prog)
    prog.add_argument("--template", type=int, required=True)
    prog.add_argument("--apply", action="store_true")

    demo = sub.add_parser("demo")
    demo.add_argument("--db", default=DEFAULT_DB_PATH)
    demo.add_argument("--user", default=seed_sample_data.DEMO_USER)

    serve = sub.add_parser("serve")
    serve.add_argument("--db", default=DEFAULT_DB_PATH)
    serve.add_argument("--yaml", default=DEFAULT_YAML_PATH)
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    bench = sub.add_parser("benchmark")
    bench.add_argument("--url", default="http://localhost:8000")
    bench.add_argument("--runs", type=int, default=10)

    args = parser.parse_args(argv)

    if args.cmd == "demo":
        if seed_sample_data.seed(args.db, args.user):
            print("Demo data inserted")
        else:
            print("Database already contains workouts")
        return
    if args.cmd == "benchmark":
        benchmark(args.url, args.runs)
        return

    api = AnalyticsAPI(db_path=args.db, yaml_path=args.yaml)
    configure_logging(args.log_level or api.settings.get_text("log_level", "INFO"))

    if args.cmd == "serve":
        import uvicorn

        uvicorn.run(api.app, host=args.host, port=args.port)
        return

    if args.cmd == "fatigue":
        result = asyncio.run(api.fatigue.get_fatigue_scores(args.user))
        printer = print_fatigue
    elif args.cmd == "recommendations":
        result = asyncio.run(api.fatigue.get_training_recommendations(args.user))
        printer = None
    elif args.cmd == "recap":
        result = asyncio.run(api.recap.get_recap_slice(args.user))
        printer = None
    elif args.cmd == "up-next":
        avoid = [m for m in args.avoid.split(",") if m] or None
        result = asyncio.run(api.recommender.get_up_next(args.user, args.duration, avoid))
        printer = print_up_next
    else:
        if args.apply:
            result = asyncio.run(
                api.progression.apply_progression_suggestions(args.user, args.template)
            )
        else:
            result = asyncio.run(
                api.progression.get_progression_suggestions(args.user, args.template)
            )
        printer = None

    if args.json or printer is None:
        print(json.dumps(result, indent=2))
    else:
        printer(result)


if __name__ == "__main__":
    main()
