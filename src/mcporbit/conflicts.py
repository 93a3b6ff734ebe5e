# ABOUTME: Name-conflict detection and user-driven resolution for discovered servers
# ABOUTME: Same name + different fingerprint = conflict; same fingerprint = duplicate
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Union

from mcporbit.fingerprint import canonical_json
from mcporbit.models import CONFIG_FIELDS, Candidate, ClientType, ServerConfig, new_id, utcnow

logger = logging.getLogger(__name__)

CLIENT_SUFFIXES: dict[ClientType, str] = {
    ClientType.CLAUDE_CODE: "claude",
    ClientType.OPENCODE: "opencode",
    ClientType.CODEX: "codex",
    ClientType.GEMINI_CLI: "gemini",
}

BulkAction = Literal["use_client", "keep_separate", "skip_all"]
BULK_ACTIONS: tuple[str, ...] = ("use_client", "keep_separate", "skip_all")


@dataclass(frozen=True)
class ConflictSource:
    client: ClientType
    config: ServerConfig
    fingerprint: str

    def to_dict(self) -> dict[str, Any]:
        return {"client": self.client.value, "config": self.config.to_dict(), "fingerprint": self.fingerprint}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConflictSource":
        return cls(
            client=ClientType(data["client"]),
            config=ServerConfig.from_dict(data["config"]),
            fingerprint=data["fingerprint"],
        )


@dataclass(frozen=True)
class ConfigDifference:
    """One field whose value differs across sources, with every source's value."""
    field: str
    values: list[tuple[ClientType, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "values": [{"client": client.value, "value": value} for client, value in self.values],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConfigDifference":
        return cls(
            field=data["field"],
            values=[(ClientType(item["client"]), item.get("value")) for item in data["values"]],
        )


@dataclass
class ConflictGroup:
    """Same-named candidates that disagree on configuration."""
    name: str
    sources: list[ConflictSource]
    differences: list[ConfigDifference]
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def clients(self) -> list[ClientType]:
        return [source.client for source in self.sources]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sources": [source.to_dict() for source in self.sources],
            "differences": [difference.to_dict() for difference in self.differences],
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConflictGroup":
        created_at = data.get("createdAt")
        return cls(
            id=data["id"],
            name=data["name"],
            sources=[ConflictSource.from_dict(item) for item in data["sources"]],
            differences=[ConfigDifference.from_dict(item) for item in data["differences"]],
            created_at=datetime.fromisoformat(created_at) if created_at else utcnow(),
        )


@dataclass(frozen=True)
class MergeAction:
    """Use one client's config (or an edited one) for every source client."""
    base_client: ClientType
    edited_config: dict[str, Any] | None = None
    type: Literal["merge"] = "merge"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "baseClient": self.base_client.value}
        if self.edited_config is not None:
            data["editedConfig"] = self.edited_config
        return data


@dataclass(frozen=True)
class SeparateAction:
    """Keep every source as its own server under a new name."""
    renames: dict[ClientType, str] = field(default_factory=dict)
    type: Literal["separate"] = "separate"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "renames": [{"client": client.value, "newName": name} for client, name in self.renames.items()],
        }


@dataclass(frozen=True)
class SkipAction:
    type: Literal["skip"] = "skip"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


ResolutionAction = Union[MergeAction, SeparateAction, SkipAction]


@dataclass(frozen=True)
class ConflictResolution:
    conflict_id: str
    action: ResolutionAction
    conflict_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"conflictId": self.conflict_id, "action": self.action.to_dict()}
        if self.conflict_name is not None:
            data["conflictName"] = self.conflict_name
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ConflictResolution":
        """Parse the wire shape {conflictId, conflictName?, action}.

        Raises:
            ValueError: naming the offending field
        """
        if not isinstance(data, dict):
            raise ValueError("Resolution must be an object")
        conflict_id = data.get("conflictId")
        if not isinstance(conflict_id, str):
            raise ValueError("Field 'conflictId' must be a string")
        conflict_name = data.get("conflictName")
        if conflict_name is not None and not isinstance(conflict_name, str):
            raise ValueError("Field 'conflictName' must be a string")
        return cls(
            conflict_id=conflict_id,
            action=parse_resolution_action(data.get("action")),
            conflict_name=conflict_name,
        )


@dataclass
class ConflictDetectionResult:
    conflicts: list[ConflictGroup] = field(default_factory=list)
    non_conflicting: list[Candidate] = field(default_factory=list)


def _parse_client(value: Any, field_name: str) -> ClientType:
    try:
        return ClientType(value)
    except ValueError:
        raise ValueError(f"Field '{field_name}' has unknown client '{value}'") from None


def parse_resolution_action(data: Any) -> ResolutionAction:
    """Parse a resolution action from its wire shape.

    Raises:
        ValueError: naming the offending field
    """
    if not isinstance(data, dict):
        raise ValueError("Field 'action' must be an object")

    action_type = data.get("type")
    if action_type == "merge":
        edited = data.get("editedConfig")
        if edited is not None and not isinstance(edited, dict):
            raise ValueError("Field 'editedConfig' must be an object")
        return MergeAction(base_client=_parse_client(data.get("baseClient"), "baseClient"), edited_config=edited)

    if action_type == "separate":
        renames = data.get("renames", [])
        if not isinstance(renames, list):
            raise ValueError("Field 'renames' must be an array")
        parsed: dict[ClientType, str] = {}
        for item in renames:
            if not isinstance(item, dict) or not isinstance(item.get("newName"), str):
                raise ValueError("Field 'renames' entries need 'client' and 'newName'")
            parsed[_parse_client(item.get("client"), "renames.client")] = item["newName"]
        return SeparateAction(renames=parsed)

    if action_type == "skip":
        return SkipAction()

    raise ValueError(f"Field 'type' has invalid value '{action_type}'. Must be 'merge', 'separate' or 'skip'.")


def calculate_differences(sources: list[ConflictSource]) -> list[ConfigDifference]:
    """Fields whose JSON-normalized value is not the same across all sources."""
    differences: list[ConfigDifference] = []
    for field_name in CONFIG_FIELDS:
        values = [(source.client, source.config.field_value(field_name)) for source in sources]
        if len({canonical_json(value) for _, value in values}) > 1:
            differences.append(ConfigDifference(field=field_name, values=values))
    return differences


def detect_conflicts(candidates: list[Candidate]) -> ConflictDetectionResult:
    """Split candidates into conflict groups and everything else.

    ABOUTME: Groups by exact name, in first-seen order
    ABOUTME: Nameless candidates are dropped
    """
    groups: dict[str, list[Candidate]] = {}
    for candidate in candidates:
        if not candidate.name:
            continue
        groups.setdefault(candidate.name, []).append(candidate)

    result = ConflictDetectionResult()
    for name, group in groups.items():
        if len(group) == 1 or len({c.fingerprint for c in group}) == 1:
            result.non_conflicting.extend(group)
            continue

        sources = [
            ConflictSource(client=c.client, config=c.config, fingerprint=c.fingerprint)
            for c in group
        ]
        conflict = ConflictGroup(name=name, sources=sources, differences=calculate_differences(sources))
        logger.debug(f"Conflict on '{name}' across {[s.client.value for s in sources]}")
        result.conflicts.append(conflict)

    return result


def generate_suffixes(name: str, clients: list[ClientType]) -> dict[ClientType, str]:
    return {client: f"{name}-{CLIENT_SUFFIXES.get(client, client.value)}" for client in clients}


def apply_resolutions(
    conflicts: list[ConflictGroup],
    resolutions: list[ConflictResolution],
    non_conflicting: list[Candidate],
) -> list[Candidate]:
    """Turn resolved conflicts back into candidates.

    Resolutions are matched to conflicts by id first, then by name, since
    ids change on every scan. Conflicts with no matching resolution
    produce nothing.

    Raises:
        ValueError: If a merge carries an invalid edited config
    """
    result = list(non_conflicting)
    by_id = {r.conflict_id: r.action for r in resolutions}
    by_name = {r.conflict_name: r.action for r in resolutions if r.conflict_name}

    for conflict in conflicts:
        action = by_id.get(conflict.id) or by_name.get(conflict.name)
        if action is None:
            continue

        if isinstance(action, MergeAction):
            base = next((s for s in conflict.sources if s.client == action.base_client), None)
            if base is None:
                logger.warning(
                    f"Merge for '{conflict.name}' names {action.base_client.value}, which is not a source"
                )
                continue
            if action.edited_config is not None:
                merged = ServerConfig.from_dict(action.edited_config, name=conflict.name)
            else:
                merged = base.config.with_name(conflict.name)
            result.extend(Candidate(config=merged, client=s.client) for s in conflict.sources)

        elif isinstance(action, SeparateAction):
            for source in conflict.sources:
                new_name = action.renames.get(source.client) or generate_suffixes(
                    conflict.name, [source.client]
                )[source.client]
                result.append(Candidate(
                    config=source.config.with_name(new_name),
                    client=source.client,
                    keep_distinct=True,
                ))

    return result


def create_bulk_resolution(
    conflicts: list[ConflictGroup],
    bulk_action: BulkAction,
    client: ClientType | None = None,
) -> list[ConflictResolution]:
    """Build the same kind of resolution for every conflict.

    ABOUTME: use_client without a client picks each conflict's first source
    """
    resolutions: list[ConflictResolution] = []
    for conflict in conflicts:
        action: ResolutionAction
        if bulk_action == "use_client":
            base = client or (conflict.sources[0].client if conflict.sources else None)
            if base is None:
                continue
            action = MergeAction(base_client=base)
        elif bulk_action == "keep_separate":
            action = SeparateAction(renames=generate_suffixes(conflict.name, conflict.clients))
        elif bulk_action == "skip_all":
            action = SkipAction()
        else:
            raise ValueError(f"Unknown bulk action '{bulk_action}'. Must be one of {', '.join(BULK_ACTIONS)}")
        resolutions.append(ConflictResolution(conflict_id=conflict.id, action=action, conflict_name=conflict.name))
    return resolutions
