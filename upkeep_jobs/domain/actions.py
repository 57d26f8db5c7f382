"""
Decoding of upstream domain events into membership actions.

Each manager variant understands a fixed set of event signatures from one
upstream source.  ``decode_event`` turns an event into a tagged
``MembershipAction`` exactly once; the manager then switches on
``action.kind``.  Unknown signatures and foreign sources decode to None
and are ignored by the caller.
"""

from __future__ import annotations

from upkeep_jobs.domain.types import (
    ActionKind,
    DomainEvent,
    ManagerKind,
    MembershipAction,
)

GAUGE_CREATED = "GaugeCreated"
GAUGE_KILLED = "GaugeKilled"
GAUGE_REVIVED = "GaugeRevived"
WHITELIST_TOKEN = "WhitelistToken"

_GAUGE_SIGNATURES: dict[str, ActionKind] = {
    GAUGE_CREATED: ActionKind.REGISTER,
    GAUGE_KILLED: ActionKind.DEREGISTER,
    GAUGE_REVIVED: ActionKind.REGISTER,
}


def _decode_gauge_event(event: DomainEvent) -> MembershipAction | None:
    kind = _GAUGE_SIGNATURES.get(event.signature)
    if kind is None:
        return None
    return MembershipAction(kind=kind, entity=event.entity, category=event.category)


def _decode_token_event(event: DomainEvent) -> MembershipAction | None:
    if event.signature != WHITELIST_TOKEN or event.flag is None:
        return None
    kind = ActionKind.REGISTER if event.flag else ActionKind.DEREGISTER
    return MembershipAction(kind=kind, entity=event.entity)


_DECODERS = {
    ManagerKind.GAUGE: _decode_gauge_event,
    ManagerKind.REDISTRIBUTE: _decode_gauge_event,
    ManagerKind.TOKEN: _decode_token_event,
}


def decode_event(
    kind: ManagerKind,
    event: DomainEvent,
    expected_source: str | None,
) -> MembershipAction | None:
    """Decode ``event`` for a manager of ``kind``.

    Returns None when the event did not come from ``expected_source`` or
    carries a signature this variant does not handle.
    """
    if expected_source is None or event.source != expected_source:
        return None
    if not event.entity:
        return None
    return _DECODERS[kind](event)


def supported_signatures(kind: ManagerKind) -> tuple[str, ...]:
    if kind is ManagerKind.TOKEN:
        return (WHITELIST_TOKEN,)
    return tuple(_GAUGE_SIGNATURES)
