# ABOUTME: Collapse discovered candidates into canonical servers plus bindings
# ABOUTME: Identity is the config fingerprint; names never merge or split servers
from dataclasses import dataclass, field

from mcporbit.models import Binding, Candidate, ClientType, Server, new_id, utcnow

UNNAMED = "unnamed"


@dataclass
class DedupedServer:
    server: Server
    bindings: list[Binding] = field(default_factory=list)


def _canonical_name(group: list[Candidate]) -> str:
    return next((c.name for c in group if c.name), UNNAMED)


def deduplicate(candidates: list[Candidate]) -> list[DedupedServer]:
    """Group candidates by fingerprint into servers, in first-seen order.

    ABOUTME: Canonical name is the first non-empty name in the group
    ABOUTME: One binding per client; the first candidate for a client wins
    ABOUTME: keep_distinct candidates group by (fingerprint, name) instead

    Running it again over candidates rebuilt from its output gives the
    same servers, so it is idempotent up to generated ids.
    """
    groups: dict[tuple[str, str | None], list[Candidate]] = {}
    for candidate in candidates:
        key = (candidate.fingerprint, candidate.name if candidate.keep_distinct else None)
        groups.setdefault(key, []).append(candidate)

    # A renamed copy that lands on an existing (fingerprint, name) joins it
    named: dict[tuple[str, str], list[Candidate]] = {}
    for (fingerprint, distinct_name), group in groups.items():
        name = distinct_name or _canonical_name(group)
        named.setdefault((fingerprint, name), []).extend(group)

    results: list[DedupedServer] = []
    for (_fingerprint, name), group in named.items():
        now = utcnow()
        server = Server(
            id=new_id(),
            config=group[0].config.with_name(name),
            created_at=now,
            updated_at=now,
        )

        bindings: dict[ClientType, Binding] = {}
        for candidate in group:
            if candidate.client in bindings:
                continue
            bindings[candidate.client] = Binding(
                id=new_id(),
                server_id=server.id,
                client=candidate.client,
                enabled=candidate.enabled,
                created_at=now,
                updated_at=now,
            )

        results.append(DedupedServer(server=server, bindings=list(bindings.values())))

    return results
