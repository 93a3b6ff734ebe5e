# ABOUTME: Binding-level diff between two registry states, grouped by client
import logging
from dataclasses import dataclass, field
from typing import Literal

from mcporbit.models import Binding, ClientType

logger = logging.getLogger(__name__)

ChangeType = Literal["add", "remove", "modify"]


@dataclass(frozen=True)
class Change:
    type: ChangeType
    server_id: str
    binding_id: str
    before: Binding | None = None
    after: Binding | None = None


@dataclass
class DiffEntry:
    client: ClientType
    changes: list[Change] = field(default_factory=list)


@dataclass(frozen=True)
class DiffSummary:
    total_changes: int = 0
    added: int = 0
    removed: int = 0
    modified: int = 0


@dataclass
class DiffResult:
    entries: list[DiffEntry] = field(default_factory=list)

    @property
    def summary(self) -> DiffSummary:
        changes = [change for entry in self.entries for change in entry.changes]
        return DiffSummary(
            total_changes=len(changes),
            added=sum(1 for c in changes if c.type == "add"),
            removed=sum(1 for c in changes if c.type == "remove"),
            modified=sum(1 for c in changes if c.type == "modify"),
        )

    @property
    def clients(self) -> list[ClientType]:
        return [entry.client for entry in self.entries]

    def is_empty(self) -> bool:
        return not self.entries

    @classmethod
    def full_sync(cls, clients: list[ClientType]) -> "DiffResult":
        """A diff that rewrites the given clients even without binding changes.

        ABOUTME: Used after server edits, which change content but not bindings
        """
        return cls(entries=[DiffEntry(client=client) for client in dict.fromkeys(clients)])


def _by_client(bindings: list[Binding]) -> dict[ClientType, list[Binding]]:
    grouped: dict[ClientType, list[Binding]] = {}
    for binding in bindings:
        grouped.setdefault(binding.client, []).append(binding)
    return grouped


def _binding_changes(current: list[Binding], desired: list[Binding]) -> list[Change]:
    current_by_id = {b.id: b for b in current}
    desired_by_id = {b.id: b for b in desired}
    changes: list[Change] = []

    for binding in current:
        if binding.id not in desired_by_id:
            changes.append(Change("remove", binding.server_id, binding.id, before=binding))

    for binding in desired:
        previous = current_by_id.get(binding.id)
        if previous is None:
            changes.append(Change("add", binding.server_id, binding.id, after=binding))
        elif previous.enabled != binding.enabled:
            changes.append(Change("modify", binding.server_id, binding.id, before=previous, after=binding))

    return changes


def calculate_diff(current: list[Binding], desired: list[Binding]) -> DiffResult:
    """Removed, added and enable-flipped bindings per client.

    ABOUTME: Bindings are matched by id; only the enabled flag is compared
    ABOUTME: Clients without changes get no entry
    """
    current_by_client = _by_client(current)
    desired_by_client = _by_client(desired)

    result = DiffResult()
    for client in dict.fromkeys([*current_by_client, *desired_by_client]):
        changes = _binding_changes(current_by_client.get(client, []), desired_by_client.get(client, []))
        if changes:
            result.entries.append(DiffEntry(client=client, changes=changes))

    logger.debug(f"Diff: {result.summary}")
    return result
