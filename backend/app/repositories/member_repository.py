"""Member (counterparty) data access helpers."""

from __future__ import annotations

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from app.models import Member, utcnow


class MemberRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def create(self, *, name: str, zalo: str | None = None, bank: str | None = None) -> Member:
        member = Member(name=name, zalo=zalo, bank=bank)
        self._session.add(member)
        self._session.flush()
        return member

    def update(
        self,
        member: Member,
        *,
        name: str | None = None,
        zalo: str | None = None,
        bank: str | None = None,
    ) -> Member:
        if name is not None:
            member.name = name
        if zalo is not None:
            member.zalo = zalo or None
        if bank is not None:
            member.bank = bank or None
        member.updated_at = utcnow()
        self._session.flush()
        return member

    # ------------------------------------------------------------------
    # Queries

    def get(self, member_id: int) -> Member | None:
        return self._session.get(Member, member_id)

    def list_members(self) -> list[Member]:
        query = select(Member).order_by(desc(Member.created_at), desc(Member.id))
        return list(self._session.execute(query).scalars().all())


__all__ = ["MemberRepository"]
