import argparse
import asyncio
import sys
from datetime import timedelta

from sqlalchemy import select

from src.docflow.core.bootstrap import build_container
from src.docflow.core.logging import setup_logging
from src.docflow.core.settings import Settings
from src.docflow.domain.entities.download_job import DownloadJob
from src.docflow.infra.models import AuditReportORM, DownloadORM
from src.docflow.infra.db import make_engine, make_session_factory
from src.docflow.infra.uow import SqlAlchemyUoW


# seed
def seed_downloads(settings: Settings, limit: int) -> int:
    """
    Создаёт pending-загрузку для каждого отчёта, у которого её ещё нет.
    Повторный запуск ничего не дублирует (downloads.report_id уникален).
    """
    engine = make_engine(settings.DATABASE_URL)
    session_factory = make_session_factory(engine)
    uow = SqlAlchemyUoW(session_factory())
    try:
        report_ids = uow.db.scalars(
            select(AuditReportORM.id)
            .outerjoin(DownloadORM, DownloadORM.report_id == AuditReportORM.id)
            .where(DownloadORM.id.is_(None))
            .order_by(AuditReportORM.id.asc())
            .limit(limit)
        ).all()

        for report_id in report_ids:
            uow.downloads.create(DownloadJob(id=0, parent_id=int(report_id)))
        uow.commit()
        return len(report_ids)
    except Exception:
        uow.rollback()
        raise
    finally:
        uow.close()
        engine.dispose()


# announce / reconcile
async def run_with_broker(settings: Settings, command: str, limit: int, older_than: float) -> None:
    container = build_container(settings)
    await container.broker.connect()
    try:
        reconciler = container.pipeline.reconciler
        if command == "announce":
            report = await reconciler.announce_pending_downloads(limit=limit)
        else:
            report = await reconciler.sweep(older_than=timedelta(seconds=older_than), limit=limit)
    finally:
        await container.broker.close()
        await container.aclose()

    print(f"Announced: {report.announced}")
    print(f"Failed:    {report.failed}")
    if report.failed:
        raise RuntimeError(f"{report.failed} announcements failed")


# main
def main() -> None:
    settings = Settings()

    ap = argparse.ArgumentParser(description="docflow operator tool: seed, announce and reconcile jobs")
    ap.add_argument("command", choices=["seed", "announce", "reconcile"])
    ap.add_argument("--limit", type=int, default=100)
    ap.add_argument(
        "--older-than",
        type=float,
        default=settings.RECONCILE_AFTER,
        help="reconcile: seconds a pending process job may wait before re-announce",
    )
    args = ap.parse_args()

    setup_logging(settings.LOG_LEVEL)
    print(f"[START] {args.command} (limit={args.limit})")

    if args.command == "seed":
        created = seed_downloads(settings, args.limit)
        print(f"Created downloads: {created}")
    else:
        asyncio.run(run_with_broker(settings, args.command, args.limit, args.older_than))

    print("[DONE]")


if __name__ == "__main__":
    try:
        main()
    except Exception as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        sys.exit(1)
