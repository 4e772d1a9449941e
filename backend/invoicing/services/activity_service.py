# Overview: Service-layer operations for the activity audit log; recording, querying, statistics and retention.

"""
Activity Log Service

WHY: Every mutating action must be attributable after the fact. Entries are
append-only and removed only in bulk by age.

RECORDING CONTRACT:
- record() never raises. The entry is written inside a SAVEPOINT, so a
  failure discards only the audit row and the surrounding business
  transaction carries on. The failure is reported through the app logger.
- When called inside a business transaction, the entry commits or rolls
  back together with it.
- A server timestamp (and request method/url when available) is merged into
  the details payload.

VISIBILITY: Non-admin callers only ever see their own entries, whatever
user filter they ask for.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func, or_

from ..errors import ValidationError
from ..extensions import db
from ..models import ActivityLog, User
from ..validation import pagination_meta
from invoicing.time_utils import utcnow, to_utc_z


MIN_RETENTION_DAYS = 1
MAX_RETENTION_DAYS = 365
TOP_N = 10


def _valid_ip(value: str | None) -> str | None:
    """Canonical form of an IPv4/IPv6 literal, or None for anything else."""
    if not value:
        return None
    try:
        ip = str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None
    if ip == "::1":
        return "127.0.0.1"
    # Zone ids ride along on IPv6 literals and are unbounded
    return ip if len(ip) <= 45 else None


@dataclass(frozen=True)
class RequestContext:
    """Request metadata captured alongside an audit entry."""
    ip_address: str | None = None
    user_agent: str | None = None
    method: str | None = None
    url: str | None = None

    @classmethod
    def from_request(cls, req) -> "RequestContext":
        """
        Build from a Flask request.

        IP precedence: first X-Forwarded-For hop, X-Real-IP, remote_addr.
        Header values are client-controlled, so one that is not an IP
        literal is skipped. IPv6 loopback is reported as 127.0.0.1.
        """
        forwarded = (req.headers.get("X-Forwarded-For") or "").split(",")[0]
        ip = (
            _valid_ip(forwarded)
            or _valid_ip(req.headers.get("X-Real-IP"))
            or _valid_ip(req.remote_addr)
        )
        return cls(
            ip_address=ip,
            user_agent=req.headers.get("User-Agent"),
            method=req.method,
            url=req.full_path.rstrip("?") if req.query_string else req.path,
        )


@dataclass(frozen=True)
class LogFilters:
    user_id: int | None = None
    entity_type: str | None = None
    action: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    search: str | None = None


def _build_entry(
    user_id: int | None,
    action: str,
    entity_type: str | None,
    entity_id,
    details: dict | None,
    context: RequestContext | None,
) -> ActivityLog:
    now = utcnow()
    payload = dict(details or {})
    payload["timestamp"] = to_utc_z(now)
    if context is not None:
        payload["method"] = context.method
        payload["url"] = context.url

    return ActivityLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=payload,
        ip_address=context.ip_address if context else None,
        user_agent=context.user_agent if context else None,
        created_at=now,
    )


def record(
    user_id: int | None,
    action: str,
    entity_type: str | None = None,
    entity_id=None,
    details: dict | None = None,
    context: RequestContext | None = None,
    *,
    commit: bool = False,
) -> ActivityLog | None:
    """
    Append one audit entry. Returns the entry, or None if it could not be written.

    commit=True is for callers outside a business transaction (reads,
    login/logout, permission denials).
    """
    try:
        entry = _build_entry(user_id, action, entity_type, entity_id, details, context)
        nested = db.session.begin_nested()
        try:
            db.session.add(entry)
            nested.commit()
        except Exception:
            nested.rollback()
            raise
        if commit:
            db.session.commit()
        return entry
    except Exception:  # noqa: BLE001
        current_app.logger.exception("Failed to record activity %s", action)
        if commit:
            db.session.rollback()
        return None


def record_system(
    action: str,
    entity_type: str | None = None,
    entity_id=None,
    details: dict | None = None,
    *,
    commit: bool = False,
) -> ActivityLog | None:
    """Record an entry with no acting user; details are tagged system=true."""
    payload = dict(details or {})
    payload["system"] = True
    return record(None, action, entity_type, entity_id, payload, commit=commit)


def _filtered_query(query, filters: LogFilters):
    if filters.user_id is not None:
        query = query.filter(ActivityLog.user_id == filters.user_id)
    if filters.entity_type:
        query = query.filter(ActivityLog.entity_type == filters.entity_type)
    if filters.action:
        query = query.filter(ActivityLog.action.ilike(f"%{filters.action}%"))
    if filters.start_date:
        query = query.filter(ActivityLog.created_at >= filters.start_date)
    if filters.end_date:
        query = query.filter(ActivityLog.created_at <= filters.end_date)
    if filters.search:
        pattern = f"%{filters.search}%"
        query = query.filter(or_(ActivityLog.action.ilike(pattern), User.username.ilike(pattern)))
    return query


def scope_filters(viewer: User, filters: LogFilters) -> LogFilters:
    """Force the user filter to the viewer's own id unless the viewer is an admin."""
    if viewer.is_admin:
        return filters
    return LogFilters(
        user_id=viewer.id,
        entity_type=filters.entity_type,
        action=filters.action,
        start_date=filters.start_date,
        end_date=filters.end_date,
        search=filters.search,
    )


def query_logs(viewer: User, filters: LogFilters, page: int = 1, page_size: int = 50) -> dict:
    """
    Page through entries newest first (created_at DESC, id DESC).

    Each entry carries the actor's username and full_name (None for system
    entries or deleted users).
    """
    filters = scope_filters(viewer, filters)

    base = (
        db.session.query(ActivityLog, User.username, User.full_name)
        .outerjoin(User, User.id == ActivityLog.user_id)
    )
    base = _filtered_query(base, filters)

    total = base.with_entities(func.count(ActivityLog.id)).scalar() or 0

    rows = (
        base.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    return {
        "logs": [entry.to_dict(username=username, full_name=full_name) for entry, username, full_name in rows],
        "pagination": pagination_meta(page, page_size, total),
    }


def statistics(filters: LogFilters) -> dict:
    """
    Aggregate counts over the filtered range.

    Only user_id, start_date and end_date are honoured here. The per-user
    breakdown leaves out system entries.
    """
    filters = LogFilters(user_id=filters.user_id, start_date=filters.start_date, end_date=filters.end_date)

    def scoped(query):
        return _filtered_query(query.select_from(ActivityLog), filters)

    total, unique_users, entity_types, active_days = scoped(
        db.session.query(
            func.count(ActivityLog.id),
            func.count(func.distinct(ActivityLog.user_id)),
            func.count(func.distinct(ActivityLog.entity_type)),
            func.count(func.distinct(func.date(ActivityLog.created_at))),
        )
    ).one()

    count_col = func.count(ActivityLog.id).label("count")

    by_type = (
        scoped(db.session.query(ActivityLog.entity_type, count_col))
        .filter(ActivityLog.entity_type.isnot(None))
        .group_by(ActivityLog.entity_type)
        .order_by(count_col.desc(), ActivityLog.entity_type.asc())
        .limit(TOP_N)
        .all()
    )

    by_user = (
        scoped(db.session.query(ActivityLog.user_id, User.username, User.full_name, count_col))
        .join(User, User.id == ActivityLog.user_id)
        .group_by(ActivityLog.user_id, User.username, User.full_name)
        .order_by(count_col.desc(), User.username.asc())
        .limit(TOP_N)
        .all()
    )

    return {
        "overview": {
            "total_actions": total or 0,
            "unique_users": unique_users or 0,
            "entity_types": entity_types or 0,
            "active_days": active_days or 0,
        },
        "actions_by_type": [{"entity_type": et, "count": c} for et, c in by_type],
        "actions_by_user": [
            {"user_id": uid, "username": uname, "full_name": fname, "count": c}
            for uid, uname, fname, c in by_user
        ],
    }


def prune_older_than(days_to_keep: int) -> int:
    """
    Delete entries created before now - days_to_keep and record the cleanup.

    Returns the number of entries removed.
    """
    if isinstance(days_to_keep, bool) or not isinstance(days_to_keep, int):
        raise ValidationError("Days must be an integer", field="days")
    if not (MIN_RETENTION_DAYS <= days_to_keep <= MAX_RETENTION_DAYS):
        raise ValidationError(
            f"Days must be between {MIN_RETENTION_DAYS} and {MAX_RETENTION_DAYS}",
            field="days",
        )

    cutoff = utcnow() - timedelta(days=days_to_keep)
    deleted = (
        db.session.query(ActivityLog)
        .filter(ActivityLog.created_at < cutoff)
        .delete(synchronize_session=False)
    )

    record_system(
        "CLEANUP_OLD_LOGS",
        "activity_logs",
        details={
            "daysToKeep": days_to_keep,
            "deletedCount": deleted,
            "cutoffDate": to_utc_z(cutoff),
        },
    )
    db.session.commit()

    current_app.logger.info("Pruned %s activity log entries older than %s days", deleted, days_to_keep)
    return deleted


def list_entity_types() -> list[str]:
    rows = (
        db.session.query(ActivityLog.entity_type)
        .filter(ActivityLog.entity_type.isnot(None))
        .distinct()
        .order_by(ActivityLog.entity_type.asc())
        .all()
    )
    return [row[0] for row in rows]


def list_log_users() -> list[dict]:
    """Distinct users that appear in the log, ordered by username."""
    rows = (
        db.session.query(User.id, User.username, User.full_name)
        .join(ActivityLog, ActivityLog.user_id == User.id)
        .distinct()
        .order_by(User.username.asc())
        .all()
    )
    return [{"id": uid, "username": uname, "full_name": fname} for uid, uname, fname in rows]
