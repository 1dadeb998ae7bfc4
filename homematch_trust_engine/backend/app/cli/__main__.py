# backend/app/cli/__main__.py
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict

from sqlalchemy import select

from app.db import SessionLocal, init_db
from app.logging_config import configure_logging
from app.models import TenantProfile
from app.services.evidence_store import EvidenceStore
from app.services.interview_pipeline import process_interview, reprocess_interview
from app.services.seriosity_service import reconcile_all, reconcile_score, recompute_and_persist


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, default=str))


def cmd_init_db(args: argparse.Namespace) -> int:
    init_db()
    _print({"ok": True})
    return 0


def cmd_recompute(args: argparse.Namespace) -> int:
    db = SessionLocal()
    try:
        if args.all:
            ids = [str(t) for t in db.scalars(select(TenantProfile.tenant_id).order_by(TenantProfile.tenant_id)).all()]
        else:
            ids = [args.tenant_id]

        out = []
        for tid in ids:
            snap = recompute_and_persist(db, tenant_id=tid)
            EvidenceStore(db).commit()
            out.append({"tenant_id": tid, "score": snap.score, "breakdown": snap.breakdown.as_dict()})
        _print({"ok": True, "recomputed": out})
        return 0
    finally:
        db.close()


def cmd_reconcile(args: argparse.Namespace) -> int:
    """Exit code 1 when any stored score drifted from its evidence."""
    db = SessionLocal()
    try:
        if args.tenant_id:
            results = [reconcile_score(db, tenant_id=args.tenant_id)]
        else:
            results = reconcile_all(db)
        drifted = [asdict(r) for r in results if not r.consistent]
        _print({"ok": not drifted, "checked": len(results), "drifted": drifted})
        return 1 if drifted else 0
    finally:
        db.close()


def cmd_process_interview(args: argparse.Namespace) -> int:
    db = SessionLocal()
    try:
        fn = reprocess_interview if args.reprocess else process_interview
        outcome = fn(db, interview_id=args.interview_id)
        _print(
            {
                "ok": outcome.status == "done",
                "interview_id": outcome.interview_id,
                "status": outcome.status,
                "discarded": outcome.discarded,
                "error": outcome.error_message,
                "failed_questions": [t.question_id for t in outcome.transcripts if not t.ok],
                "score": outcome.score.score if outcome.score is not None else None,
            }
        )
        return 0 if outcome.status == "done" else 1
    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="python -m app.cli")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create tables").set_defaults(fn=cmd_init_db)

    rc = sub.add_parser("recompute", help="recompute and store seriosity scores")
    g = rc.add_mutually_exclusive_group(required=True)
    g.add_argument("--tenant-id")
    g.add_argument("--all", action="store_true")
    rc.set_defaults(fn=cmd_recompute)

    rec = sub.add_parser("reconcile", help="compare stored scores with evidence (read-only)")
    rec.add_argument("--tenant-id", default=None)
    rec.set_defaults(fn=cmd_reconcile)

    pi = sub.add_parser("process-interview", help="run the interview pipeline in this process")
    pi.add_argument("interview_id")
    pi.add_argument("--reprocess", action="store_true")
    pi.set_defaults(fn=cmd_process_interview)

    return p


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    return int(args.fn(args))


if __name__ == "__main__":
    sys.exit(main())
