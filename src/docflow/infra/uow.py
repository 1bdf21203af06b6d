from sqlalchemy.orm import Session

from src.docflow.infra.repositories import (
    SqlDownloadJobRepo, SqlProcessJobRepo,
    SqlAuditReportRepo, SqlAuditProviderRepo,
)

class SqlAlchemyUoW:
    def __init__(self, db: Session):
        self.db = db

        self.downloads = SqlDownloadJobRepo(db)
        self.processes = SqlProcessJobRepo(db)
        self.reports = SqlAuditReportRepo(db)
        self.providers = SqlAuditProviderRepo(db)

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def close(self) -> None:
        self.db.close()


def make_uow_factory(session_factory):
    """Один UoW (и одна сессия) на доставку."""
    def _factory() -> SqlAlchemyUoW:
        return SqlAlchemyUoW(session_factory())
    return _factory
