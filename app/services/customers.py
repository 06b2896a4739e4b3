import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.storage.db import Database
from app.storage.models import Customer
from app.util.locks import KeyedLock

log = logging.getLogger("customers")

CUSTOMER_STATUSES = ("active", "blocked", "archived")


def placeholder_name(phone_number: str) -> str:
    return f"Customer {phone_number[-4:]}"


class CustomerDirectory:
    """Customers keyed by phone number. Exactly one row per number."""

    def __init__(self, db: Database, locks: Optional[KeyedLock] = None):
        self.db = db
        self._locks = locks or KeyedLock()

    # ---------- lookups ----------
    def get(self, customer_id: str) -> Optional[Customer]:
        with self.db.session() as s:
            return s.get(Customer, customer_id)

    def get_by_phone(self, phone_number: str) -> Optional[Customer]:
        with self.db.session() as s:
            return s.scalar(select(Customer).where(Customer.phone_number == phone_number))

    def list_customers(self, status: Optional[str] = None, limit: int = 100) -> List[Customer]:
        q = select(Customer)
        if status:
            q = q.where(Customer.status == status)
        q = q.order_by(Customer.last_message_at.desc().nullslast(), Customer.created_at.desc()).limit(limit)
        with self.db.session() as s:
            return list(s.scalars(q))

    # ---------- writes ----------
    def resolve_or_create(
        self,
        phone_number: str,
        profile_hint: Optional[str] = None,
        seen_at: Optional[datetime] = None,
    ) -> Customer:
        """Existing customer unchanged, or a new one with is_new=True."""
        with self._locks.hold(phone_number):
            found = self.get_by_phone(phone_number)
            if found is not None:
                return found
            try:
                with self.db.session() as s:
                    c = Customer(
                        phone_number=phone_number,
                        name=profile_hint or placeholder_name(phone_number),
                        is_new=True,
                        status="active",
                        first_message_at=seen_at or datetime.now(timezone.utc),
                        message_count=0,
                        meta={"profile_name": profile_hint} if profile_hint else {},
                    )
                    s.add(c)
                log.info({"event": "customer_created", "customer_id": c.id, "phone": phone_number})
                return c
            except IntegrityError:
                # another process won the insert
                found = self.get_by_phone(phone_number)
                if found is None:
                    raise
                return found

    def mark_returning(self, phone_number: str) -> None:
        with self.db.session() as s:
            c = s.scalar(select(Customer).where(Customer.phone_number == phone_number))
            if c is not None and c.is_new:
                c.is_new = False

    def record_activity(self, customer_id: str, timestamp: datetime) -> Optional[Customer]:
        with self.db.session() as s:
            c = s.get(Customer, customer_id)
            if c is None:
                return None
            c.last_message_at = timestamp
            c.message_count = (c.message_count or 0) + 1
            return c

    def set_status(self, customer_id: str, status: str) -> Optional[Customer]:
        if status not in CUSTOMER_STATUSES:
            raise ValueError(f"unknown customer status: {status}")
        with self.db.session() as s:
            c = s.get(Customer, customer_id)
            if c is None:
                return None
            c.status = status
            return c

    def count(self) -> int:
        with self.db.session() as s:
            return s.scalar(select(func.count()).select_from(Customer)) or 0
