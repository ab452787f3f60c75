"""Read views: ledger and rollback history, balances, leaderboards."""

from datetime import datetime, timedelta
from typing import Any

from beanie import PydanticObjectId
from pydantic import BaseModel

from app.core.exceptions import NotFoundError, UnauthorizedError
from app.core.pagination import Page, paginate
from app.core.permissions import Actor, Capability, authorize, is_allowed
from app.db.transactions import run_in_transaction
from app.models.rollback import TransactionRollback
from app.models.transaction import LedgerTransaction, TransactionKind
from app.models.user import User, UserRole
from app.services.balances import get_balance
from app.services.ledger import parse_kind, parse_object_id


# Joins each transaction to its rollback record, if any, through the unique (transaction_id, transaction_kind) index
_ROLLBACK_LOOKUP: dict[str, Any] = {
    "$lookup": {
        "from": TransactionRollback.Settings.name,
        "localField": "_id",
        "foreignField": "transaction_id",
        "let": {"kind": "$kind"},
        "pipeline": [
            {"$match": {"$expr": {"$eq": ["$transaction_kind", "$$kind"]}}},
            {"$project": {"_id": 1}},
        ],
        "as": "rollback",
    }
}


class TransactionView(BaseModel):
    id: str
    user_id: str
    kind: TransactionKind
    amount: int
    balance_after: int
    reason: str
    actor_id: str
    reference_type: str | None = None
    reference_id: str | None = None
    reverses_transaction_id: str | None = None
    rolled_back: bool = False
    rollback_id: str | None = None
    created_at: datetime

    @classmethod
    def build(cls, t: LedgerTransaction, rollback: TransactionRollback | None) -> "TransactionView":
        return cls(
            id=str(t.id),
            user_id=str(t.user_id),
            kind=t.kind,
            amount=t.amount,
            balance_after=t.balance_after,
            reason=t.reason,
            actor_id=t.actor_id,
            reference_type=t.reference_type,
            reference_id=t.reference_id,
            reverses_transaction_id=str(t.reverses_transaction_id) if t.reverses_transaction_id else None,
            rolled_back=rollback is not None,
            rollback_id=str(rollback.id) if rollback else None,
            created_at=t.created_at,
        )

    @classmethod
    def from_raw(cls, doc: dict[str, Any]) -> "TransactionView":
        """Build from an aggregation row carrying a `rollback` lookup array."""
        rollback = doc["rollback"][0] if doc.get("rollback") else None
        reverses = doc.get("reverses_transaction_id")
        return cls(
            id=str(doc["_id"]),
            user_id=str(doc["user_id"]),
            kind=doc["kind"],
            amount=doc["amount"],
            balance_after=doc["balance_after"],
            reason=doc["reason"],
            actor_id=doc["actor_id"],
            reference_type=doc.get("reference_type"),
            reference_id=doc.get("reference_id"),
            reverses_transaction_id=str(reverses) if reverses else None,
            rolled_back=rollback is not None,
            rollback_id=str(rollback["_id"]) if rollback else None,
            created_at=doc["created_at"],
        )


class RollbackView(BaseModel):
    id: str
    transaction_id: str
    transaction_kind: TransactionKind
    subject_user_id: str
    admin_id: str
    reason: str
    compensation_id: str
    created_at: datetime

    @classmethod
    def build(cls, r: TransactionRollback) -> "RollbackView":
        return cls(
            id=str(r.id),
            transaction_id=str(r.transaction_id),
            transaction_kind=r.transaction_kind,
            subject_user_id=str(r.subject_user_id),
            admin_id=r.admin_id,
            reason=r.reason,
            compensation_id=str(r.compensation_id),
            created_at=r.created_at,
        )


async def _visible_user_ids(actor: Actor, session) -> list[PydanticObjectId] | None:
    """None means unrestricted. Tutors see their students; everyone else sees only themselves."""
    if is_allowed(actor, Capability.VIEW_ALL):
        return None
    if actor.is_system:
        # Feature processes write to the ledger but own no rows of their own
        return []
    own = parse_object_id(actor.id)
    if actor.role == UserRole.TUTOR.value:
        students = await User.find(User.tutor_id == own, session=session).to_list()
        return [own] + [s.id for s in students]
    return [own]


async def list_transactions(
    actor: Actor,
    *,
    kind: str | TransactionKind | None = None,
    user_id: str | None = None,
    rolled_back: bool | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> Page[TransactionView]:
    """
    Newest first. `rolled_back` filters on whether a rollback record exists for the row.
    Transactions and rollback state are read from one snapshot, so a row is never shown as
    rolled back while its compensating entry is missing, or the other way round.
    """
    limit, offset = paginate(limit, offset)
    kind = parse_kind(kind) if kind else None
    uid = parse_object_id(user_id) if user_id else None

    match: dict[str, Any] = {}
    if kind:
        match["kind"] = kind.value

    async def _read(session) -> Page[TransactionView]:
        visible = await _visible_user_ids(actor, session)
        if uid is not None:
            if visible is not None and uid not in visible:
                # Out-of-scope users look the same as unknown ones
                raise NotFoundError("User not found")
            match["user_id"] = uid
        elif visible is not None:
            match["user_id"] = {"$in": visible}

        page_stages: list[dict[str, Any]] = [{"$skip": offset}, {"$limit": limit}]
        pipeline: list[dict[str, Any]] = [{"$match": match}, {"$sort": {"created_at": -1, "_id": -1}}]
        if rolled_back is None:
            # Only the returned page needs its rollback state
            page_stages.append(_ROLLBACK_LOOKUP)
        else:
            pipeline += [_ROLLBACK_LOOKUP, {"$match": {"rollback.0": {"$exists": rolled_back}}}]
        pipeline.append({"$facet": {"total": [{"$count": "n"}], "items": page_stages}})

        result = await LedgerTransaction.aggregate(pipeline, session=session).to_list()
        facet = result[0] if result else {"total": [], "items": []}
        total = facet["total"][0]["n"] if facet["total"] else 0
        items = [TransactionView.from_raw(doc) for doc in facet["items"]]
        return Page[TransactionView](items=items, limit=limit, offset=offset, total=total)

    return await run_in_transaction(_read)


async def list_rollbacks(
    actor: Actor,
    *,
    transaction_kind: str | TransactionKind | None = None,
    subject_user_id: str | None = None,
    admin_id: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> Page[RollbackView]:
    """Rollback history for administrative review, newest first."""
    authorize(actor, Capability.VIEW_ALL)
    limit, offset = paginate(limit, offset)
    filters: dict[str, Any] = {}
    if transaction_kind:
        filters["transaction_kind"] = parse_kind(transaction_kind).value
    if subject_user_id:
        filters["subject_user_id"] = parse_object_id(subject_user_id)
    if admin_id:
        filters["admin_id"] = admin_id

    async def _read(session) -> Page[RollbackView]:
        total = await TransactionRollback.find(filters, session=session).count()
        rows = await (
            TransactionRollback.find(filters, session=session)
            .sort("-created_at", "-_id")
            .skip(offset)
            .limit(limit)
            .to_list()
        )
        return Page[RollbackView](
            items=[RollbackView.build(r) for r in rows],
            limit=limit,
            offset=offset,
            total=total,
        )

    return await run_in_transaction(_read)


async def get_visible_balance(actor: Actor, user_id: str) -> dict:
    """Balance lookup scoped like list_transactions."""
    uid = parse_object_id(user_id)
    if not is_allowed(actor, Capability.VIEW_ALL) and str(uid) != actor.id:
        user = await User.get(uid)
        if not user or actor.role != UserRole.TUTOR.value or str(user.tutor_id) != actor.id:
            raise NotFoundError("User not found")
    balance = await get_balance(uid)
    return {"user_id": str(uid), **balance.model_dump()}


class TutorSummary(BaseModel):
    id: str
    username: str
    first_name: str
    last_name: str


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    username: str
    first_name: str
    last_name: str
    points: int
    experience: int
    tutor: TutorSummary | None = None


class CallerRank(BaseModel):
    rank: int
    experience: int


class Leaderboard(Page[LeaderboardEntry]):
    me: CallerRank | None = None


class WeeklyEarner(BaseModel):
    rank: int
    user_id: str
    username: str
    first_name: str
    last_name: str
    weekly_points: int
    weekly_experience: int
    total_experience: int


class WeeklyLeaderboard(BaseModel):
    week_start: datetime
    week_end: datetime
    items: list[WeeklyEarner]


def competition_ranks(values: list[int], offset: int = 0, first_rank: int = 1) -> list[int]:
    """Ranks for a descending list: ties share a rank and the next distinct value skips ahead (1, 1, 3)."""
    ranks: list[int] = []
    for i, value in enumerate(values):
        if i == 0:
            ranks.append(first_rank)
        elif value == values[i - 1]:
            ranks.append(ranks[-1])
        else:
            ranks.append(offset + i + 1)
    return ranks


def week_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Monday 00:00 to the following Monday 00:00 (UTC), containing `now`."""
    start = (now - timedelta(days=now.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=7)


async def leaderboard(
    actor: Actor,
    *,
    tutor_id: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> Leaderboard:
    """
    Students ranked by experience, highest first, with their tutor. Optionally only one tutor's
    students. A student caller also gets their own rank, even when it is off the page.
    """
    limit, offset = paginate(limit, offset)
    filters: dict[str, Any] = {"role": UserRole.STUDENT.value}
    if tutor_id:
        filters["tutor_id"] = parse_object_id(tutor_id, "Tutor")

    async def _read(session) -> Leaderboard:
        total = await User.find(filters, session=session).count()
        rows = await (
            User.find(filters, session=session)
            .sort("-experience", "+username")
            .skip(offset)
            .limit(limit)
            .to_list()
        )
        first_rank = 1
        if rows:
            ahead = await User.find({**filters, "experience": {"$gt": rows[0].experience}}, session=session).count()
            first_rank = ahead + 1
        ranks = competition_ranks([u.experience for u in rows], offset, first_rank)

        tutor_ids = list({u.tutor_id for u in rows if u.tutor_id is not None})
        tutors = {}
        if tutor_ids:
            found = await User.find({"_id": {"$in": tutor_ids}}, session=session).to_list()
            tutors = {
                t.id: TutorSummary(id=str(t.id), username=t.username, first_name=t.first_name, last_name=t.last_name)
                for t in found
            }
        items = [
            LeaderboardEntry(
                rank=rank,
                user_id=str(u.id),
                username=u.username,
                first_name=u.first_name,
                last_name=u.last_name,
                points=u.points,
                experience=u.experience,
                tutor=tutors.get(u.tutor_id),
            )
            for u, rank in zip(rows, ranks)
        ]

        me = None
        if actor.role == UserRole.STUDENT.value:
            own = await User.get(parse_object_id(actor.id), session=session)
            if own is not None and (not tutor_id or own.tutor_id == filters["tutor_id"]):
                ahead = await User.find({**filters, "experience": {"$gt": own.experience}}, session=session).count()
                me = CallerRank(rank=ahead + 1, experience=own.experience)
        return Leaderboard(items=items, limit=limit, offset=offset, total=total, me=me)

    return await run_in_transaction(_read)


async def tutor_leaderboard(actor: Actor, *, limit: int | None = None, offset: int | None = None) -> Leaderboard:
    """The calling tutor's own students, ranked."""
    if actor.role != UserRole.TUTOR.value:
        raise UnauthorizedError("Permission denied: tutor leaderboard")
    return await leaderboard(actor, tutor_id=actor.id, limit=limit, offset=offset)


async def weekly_top_earners(
    *,
    now: datetime | None = None,
    limit: int | None = None,
) -> WeeklyLeaderboard:
    """
    Students ranked by experience earned this week (Monday to Monday, UTC). Only awards count;
    deductions, compensating entries and awards that were later rolled back do not.
    """
    limit, _ = paginate(limit, 0)
    start, end = week_bounds(now or datetime.utcnow())
    pipeline: list[dict[str, Any]] = [
        {
            "$match": {
                "created_at": {"$gte": start, "$lt": end},
                "amount": {"$gt": 0},
                "reverses_transaction_id": None,
            }
        },
        _ROLLBACK_LOOKUP,
        {"$match": {"rollback.0": {"$exists": False}}},
        {
            "$group": {
                "_id": "$user_id",
                "points": {"$sum": {"$cond": [{"$eq": ["$kind", TransactionKind.POINTS.value]}, "$amount", 0]}},
                "experience": {
                    "$sum": {"$cond": [{"$eq": ["$kind", TransactionKind.EXPERIENCE.value]}, "$amount", 0]}
                },
            }
        },
        {"$lookup": {"from": User.Settings.name, "localField": "_id", "foreignField": "_id", "as": "user"}},
        {"$unwind": "$user"},
        {"$match": {"user.role": UserRole.STUDENT.value}},
        {"$sort": {"experience": -1, "points": -1, "_id": 1}},
        {"$limit": limit},
    ]

    async def _read(session) -> list[dict[str, Any]]:
        return await LedgerTransaction.aggregate(pipeline, session=session).to_list()

    rows = await run_in_transaction(_read)
    ranks = competition_ranks([row["experience"] for row in rows])
    items = [
        WeeklyEarner(
            rank=rank,
            user_id=str(row["_id"]),
            username=row["user"]["username"],
            first_name=row["user"].get("first_name", ""),
            last_name=row["user"].get("last_name", ""),
            weekly_points=row["points"],
            weekly_experience=row["experience"],
            total_experience=row["user"].get("experience", 0),
        )
        for row, rank in zip(rows, ranks)
    ]
    return WeeklyLeaderboard(week_start=start, week_end=end, items=items)
