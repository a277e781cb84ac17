"""
workflow_engines.approval_chain -- Pure approval chain resolution.

Responsibility:
    Given a subject's current chain position and the configured approver
    groups for its scope, decide which rank must act next or that the
    chain is exhausted.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import workflow_kernel/domain/ types.

Invariants enforced:
    - Monotonic: the next rank is strictly after the current rank; primary
      ranks always precede secondary ranks.  Ranks never repeat.
    - Secondary ranks are reachable only when the subject requires the
      secondary chain.
    - Deterministic: identical inputs give identical results.  Gaps in
      the order sequence are skipped; groups with no members are ignored.

Failure modes:
    - AlreadyClosedError when resolving a terminal subject.
"""

from __future__ import annotations

from collections.abc import Iterable

from workflow_engines.tracer import traced_engine
from workflow_kernel.domain.subject import (
    ApproverGroup,
    ChainPosition,
    ChainResolution,
    Completed,
    GroupKind,
    NextHop,
    WorkflowSubject,
)
from workflow_kernel.exceptions import AlreadyClosedError


def build_groups(
    entries: Iterable[tuple[GroupKind, int, str, bool]],
) -> tuple[ApproverGroup, ...]:
    """Fold (kind, order, user_id, requires_cost_center) rows into groups.

    Members sharing a (kind, order) form one rank.  A rank requires a
    cost center if any of its members does.
    """
    members: dict[tuple[GroupKind, int], set[str]] = {}
    cost_center: dict[tuple[GroupKind, int], bool] = {}
    for kind, order, user_id, requires_cost_center in entries:
        key = (kind, order)
        members.setdefault(key, set()).add(user_id)
        cost_center[key] = cost_center.get(key, False) or bool(requires_cost_center)
    return tuple(
        ApproverGroup(
            group_kind=kind,
            order=order,
            members=frozenset(users),
            requires_cost_center=cost_center[(kind, order)],
        )
        for (kind, order), users in sorted(members.items(), key=lambda kv: (kv[0][0].value, kv[0][1]))
    )


def members_at(groups: Iterable[ApproverGroup], position: ChainPosition) -> frozenset[str]:
    """Union of members of every group configured at ``position``."""
    users: set[str] = set()
    for group in groups:
        if group.group_kind == position.group_kind and group.order == position.order:
            users |= group.members
    return frozenset(users)


def requires_cost_center(groups: Iterable[ApproverGroup], position: ChainPosition) -> bool:
    return any(
        g.requires_cost_center
        for g in groups
        if g.group_kind == position.group_kind and g.order == position.order and g.members
    )


def is_configured_approver(groups: Iterable[ApproverGroup], user_id: str) -> bool:
    return any(user_id in g.members for g in groups)


def _smallest_after(
    groups: Iterable[ApproverGroup],
    kind: GroupKind,
    after: int | None,
) -> ChainPosition | None:
    orders = [
        g.order
        for g in groups
        if g.group_kind == kind and g.members and (after is None or g.order > after)
    ]
    if not orders:
        return None
    return ChainPosition(kind, min(orders))


def _hop(groups: tuple[ApproverGroup, ...], position: ChainPosition) -> NextHop:
    return NextHop(position=position, members=members_at(groups, position))


@traced_engine("approval_chain", "1.0", fingerprint_fields=("subject", "groups"))
def resolve_next(
    subject: WorkflowSubject,
    groups: Iterable[ApproverGroup],
) -> ChainResolution:
    """Return the rank after the subject's current position.

    A subject with no position has not been routed yet; its next hop is
    the first rank of the chain.

    Raises:
        AlreadyClosedError: subject is completed, closed or rejected.
    """
    if subject.is_terminal:
        raise AlreadyClosedError(str(subject.subject_id), subject.stage_kind.value)

    groups = tuple(groups)
    position = subject.position
    secondary = subject.requires_secondary_chain

    if position is None:
        first = _smallest_after(groups, GroupKind.PRIMARY, None)
        if first is None and secondary:
            first = _smallest_after(groups, GroupKind.SECONDARY, None)
        if first is None:
            return Completed(reason="no approvers configured")
        return _hop(groups, first)

    if position.group_kind == GroupKind.PRIMARY:
        nxt = _smallest_after(groups, GroupKind.PRIMARY, position.order)
        if nxt is not None:
            return _hop(groups, nxt)
        if secondary:
            nxt = _smallest_after(groups, GroupKind.SECONDARY, None)
            if nxt is not None:
                return _hop(groups, nxt)
            return Completed(reason="primary chain exhausted, no secondary ranks")
        return Completed(reason="primary chain exhausted")

    nxt = _smallest_after(groups, GroupKind.SECONDARY, position.order)
    if nxt is not None:
        return _hop(groups, nxt)
    return Completed(reason="secondary chain exhausted")
