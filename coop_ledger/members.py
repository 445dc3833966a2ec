"""
Member Registry Module

The print-relevant slice of a member: identity details used on the passbook
cover page and the print watermark (`last_printed_transaction_id`).
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional

from .accounts import utc_now
from .errors import NotFoundError
from .storage import StorageInterface, StorageRecord


@dataclass
class Member(StorageRecord):
    """Society member"""
    full_name: str
    phone: str = ""
    father_name: str = ""
    address: str = ""
    city: str = ""
    pin_code: str = ""
    join_date: Optional[date] = None
    last_printed_transaction_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['join_date'] = self.join_date.isoformat() if self.join_date else None
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Member':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            full_name=data['full_name'],
            phone=data.get('phone', ""),
            father_name=data.get('father_name', ""),
            address=data.get('address', ""),
            city=data.get('city', ""),
            pin_code=data.get('pin_code', ""),
            join_date=date.fromisoformat(data['join_date']) if data.get('join_date') else None,
            last_printed_transaction_id=data.get('last_printed_transaction_id'),
        )


class MemberRegistry:
    """Loads and stores members"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "members"

    def register(self, member_id: str, full_name: str, **details: Any) -> Member:
        now = utc_now()
        member = Member(id=member_id, created_at=now, updated_at=now, full_name=full_name, **details)
        self.save(member)
        return member

    def get_member(self, member_id: str) -> Member:
        data = self.storage.load(self.table_name, member_id)
        if data is None:
            raise NotFoundError(f"Member {member_id} not found")
        return Member.from_dict(data)

    def save(self, member: Member) -> None:
        self.storage.save(self.table_name, member.id, member.to_dict())

    def set_watermark(self, member_id: str, transaction_id: str) -> Member:
        """Persist a new watermark. Only the print session controller calls this."""
        member = self.get_member(member_id)
        member.last_printed_transaction_id = transaction_id
        member.updated_at = utc_now()
        with self.storage.atomic():
            self.save(member)
        return member
