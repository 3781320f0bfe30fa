"""Shift repository - shifts and their items."""

from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session, selectinload

from booking_engine.models import Shift, ShiftItem, ShiftStatus


class ShiftRepository:
    """Queries and writes against ``staff_shifts`` and ``staff_shift_items``."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, shift_id: str) -> Optional[Shift]:
        return (
            self.db.query(Shift)
            .options(selectinload(Shift.items))
            .filter(Shift.id == shift_id)
            .first()
        )

    def get_for_update(self, shift_id: str) -> Optional[Shift]:
        return (
            self.db.query(Shift)
            .filter(Shift.id == shift_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_by_staff_and_date(self, staff_id: str, shift_date: date) -> Optional[Shift]:
        return (
            self.db.query(Shift)
            .filter(Shift.staff_id == staff_id, Shift.shift_date == shift_date)
            .first()
        )

    def list_open_before(self, before: date) -> List[Shift]:
        """Open shifts dated strictly before ``before`` (forgotten to be closed)."""
        return (
            self.db.query(Shift)
            .filter(Shift.status == ShiftStatus.OPEN.value, Shift.shift_date < before)
            .order_by(Shift.shift_date, Shift.staff_id)
            .all()
        )

    def get_item(self, item_id: str) -> Optional[ShiftItem]:
        return self.db.get(ShiftItem, item_id)

    def get_item_by_booking(self, booking_id: str) -> Optional[ShiftItem]:
        return self.db.query(ShiftItem).filter(ShiftItem.booking_id == booking_id).first()
