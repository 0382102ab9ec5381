"""CLI entrypoint for gazetteer_geo."""

from __future__ import annotations

import argparse
import json
import time

from gazetteer_geo.logging_config import setup_logging


def main() -> None:
    setup_logging()

    parser = argparse.ArgumentParser(prog="gazetteer-geo")
    parser.add_argument("--db", default=None, help="sqlite path (defaults to GAZETTEER_DB_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("migrate")

    ingest_parser = sub.add_parser("ingest")
    ingest_parser.add_argument("source")
    ingest_parser.add_argument("file")
    ingest_parser.add_argument("--batch-size", type=int, default=None)
    ingest_parser.add_argument("--no-resume", action="store_true")

    resolve_parser = sub.add_parser("resolve")
    resolve_parser.add_argument("text")
    resolve_parser.add_argument("--url", default=None)
    resolve_parser.add_argument("--publisher", default=None)

    explain_parser = sub.add_parser("explain")
    explain_parser.add_argument("mention")
    explain_parser.add_argument("--context", default=None)
    explain_parser.add_argument("--publisher", default=None)

    sub.add_parser("watch")

    args = parser.parse_args()

    if args.command == "migrate":
        _migrate(args.db)
    elif args.command == "ingest":
        _ingest(args.db, args.source, args.file, args.batch_size, not args.no_resume)
    elif args.command == "resolve":
        _resolve(args.db, args.text, args.url, args.publisher)
    elif args.command == "explain":
        _explain(args.db, args.mention, args.context, args.publisher)
    elif args.command == "watch":
        _watch(args.db)


def _migrate(db: str | None) -> None:
    from gazetteer_geo.store import GazetteerStore

    with GazetteerStore(db):
        pass
    print("Migrations applied successfully.")


def _ingest(db: str | None, source: str, path: str, batch_size: int | None, resume: bool) -> None:
    from gazetteer_geo.ingest import ingest_jsonl
    from gazetteer_geo.store import GazetteerStore

    with GazetteerStore(db) as store:
        summary = ingest_jsonl(store, source, path, batch_size=batch_size, resume=resume)
    print(json.dumps(summary.model_dump(mode="json"), ensure_ascii=True, indent=2))


def _resolve(db: str | None, text: str, url: str | None, publisher: str | None) -> None:
    from gazetteer_geo.engine import DisambiguationEngine
    from gazetteer_geo.store import GazetteerStore

    with GazetteerStore(db) as store:
        engine = DisambiguationEngine(store)
        engine.build_index()
        results = engine.analyze(text, url=url, publisher_id=publisher)
        engine.close()

    if not results:
        print("(no place mentions found)")
        return
    for i, r in enumerate(results, 1):
        if r.status == "unresolved":
            print(f"{i}. {r.mention}: unresolved")
            continue
        print(f"{i}. {r.mention} -> {r.place_name} [{r.country_code or '--'}] "
              f"place_id={r.place_id} confidence={r.confidence:.0%} ({r.method})")


def _explain(db: str | None, mention: str, context: str | None, publisher: str | None) -> None:
    from gazetteer_geo.engine import DisambiguationEngine
    from gazetteer_geo.errors import NoCandidatesFound
    from gazetteer_geo.models import MentionInput
    from gazetteer_geo.store import GazetteerStore

    with GazetteerStore(db) as store:
        engine = DisambiguationEngine(store)
        engine.build_index()
        try:
            record = engine.explain(MentionInput(text=mention, context=context), publisher_id=publisher)
        except NoCandidatesFound as e:
            raise SystemExit(str(e)) from e
        finally:
            engine.close()
    print(json.dumps(record.model_dump(mode="json"), ensure_ascii=True, indent=2))


def _watch(db: str | None) -> None:
    from gazetteer_geo.engine import DisambiguationEngine
    from gazetteer_geo.scheduler import start_scheduler, stop_scheduler
    from gazetteer_geo.store import GazetteerStore

    with GazetteerStore(db) as store:
        engine = DisambiguationEngine(store)
        engine.build_index()
        start_scheduler(engine)
        try:
            while True:
                time.sleep(60)
        except KeyboardInterrupt:
            pass
        finally:
            stop_scheduler()
            engine.close()


if __name__ == "__main__":
    main()
