from __future__ import annotations

from typing import Iterable, Protocol

from splitledger.errors import MemberNotInGroupError


class Repository(Protocol):
    async def fetch(self, query: str, *args: object) -> list: ...


async def active_member_ids(repo: Repository, group_id: int) -> set[int]:
    rows = await repo.fetch(
        "SELECT user_id FROM group_members WHERE group_id = $1 AND is_active = true",
        group_id,
    )
    return {row["user_id"] for row in rows}


async def assert_group_members(repo: Repository, group_id: int, user_ids: Iterable[int]) -> None:
    members = await active_member_ids(repo, group_id)
    missing = [user_id for user_id in user_ids if user_id not in members]
    if missing:
        raise MemberNotInGroupError(group_id, missing)
