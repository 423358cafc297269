from sqlalchemy import func, select

from app.tillsync.db.models import SyncedTransaction


class LedgerRepository:
    def __init__(self, db):
        self.db = db

    def get_by_transaction_id(self, transaction_id: str) -> SyncedTransaction | None:
        stmt = select(SyncedTransaction).where(SyncedTransaction.transaction_id == transaction_id)
        return self.db.execute(stmt).scalars().first()

    def exists(self, transaction_id: str) -> bool:
        stmt = select(SyncedTransaction.id).where(SyncedTransaction.transaction_id == transaction_id)
        return self.db.execute(stmt).first() is not None

    def count_for(self, transaction_id: str) -> int:
        stmt = select(func.count(SyncedTransaction.id)).where(SyncedTransaction.transaction_id == transaction_id)
        return int(self.db.execute(stmt).scalar_one())

    def create(self, entry: SyncedTransaction) -> SyncedTransaction:
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry
