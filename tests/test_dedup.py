# ABOUTME: Tests for fingerprint-based deduplication of discovered candidates
from mcporbit.dedup import UNNAMED, deduplicate
from mcporbit.models import Candidate, ClientType, ServerConfig, StdioTransport


def _candidate(name: str, client: ClientType, command: str = "npx", enabled: str = "on", **kwargs) -> Candidate:
    config = ServerConfig(name, StdioTransport(command=command, args=["-y", "pkg"]))
    return Candidate(config=config, client=client, enabled=enabled, **kwargs)


class TestDeduplicate:
    """Tests for collapsing candidates into servers."""

    def test_same_fingerprint_collapses(self) -> None:
        """Test identical configs from several clients become one server."""
        result = deduplicate([
            _candidate("fs", ClientType.CLAUDE_CODE),
            _candidate("fs", ClientType.CODEX, enabled="off"),
        ])

        assert len(result) == 1
        assert result[0].server.name == "fs"
        assert [(b.client, b.enabled) for b in result[0].bindings] == [
            (ClientType.CLAUDE_CODE, "on"),
            (ClientType.CODEX, "off"),
        ]
        assert all(b.server_id == result[0].server.id for b in result[0].bindings)

    def test_different_names_same_fingerprint_collapse(self) -> None:
        """Test names never split a server; the first name wins."""
        result = deduplicate([
            _candidate("filesystem", ClientType.OPENCODE),
            _candidate("fs", ClientType.CLAUDE_CODE),
        ])

        assert len(result) == 1
        assert result[0].server.name == "filesystem"

    def test_different_fingerprints_stay_separate(self) -> None:
        """Test different configs become different servers in first-seen order."""
        result = deduplicate([
            _candidate("a", ClientType.CLAUDE_CODE, command="a"),
            _candidate("b", ClientType.CLAUDE_CODE, command="b"),
        ])
        assert [d.server.name for d in result] == ["a", "b"]

    def test_one_binding_per_client(self) -> None:
        """Test the first candidate for a client wins."""
        result = deduplicate([
            _candidate("a", ClientType.CLAUDE_CODE, enabled="off"),
            _candidate("a-copy", ClientType.CLAUDE_CODE, enabled="on"),
        ])

        assert len(result[0].bindings) == 1
        assert result[0].bindings[0].enabled == "off"

    def test_empty_names_fall_back(self) -> None:
        """Test the first non-empty name is used, else a placeholder."""
        named = deduplicate([
            _candidate("", ClientType.CLAUDE_CODE),
            _candidate("real", ClientType.CODEX),
        ])
        assert named[0].server.name == "real"

        unnamed = deduplicate([_candidate("", ClientType.CLAUDE_CODE)])
        assert unnamed[0].server.name == UNNAMED

    def test_keep_distinct_prevents_collapse(self) -> None:
        """Test renamed copies with equal fingerprints stay separate servers."""
        result = deduplicate([
            _candidate("search-claude", ClientType.CLAUDE_CODE, keep_distinct=True),
            _candidate("search-opencode", ClientType.OPENCODE, keep_distinct=True),
        ])

        assert sorted(d.server.name for d in result) == ["search-claude", "search-opencode"]
        assert all(len(d.bindings) == 1 for d in result)

    def test_keep_distinct_joins_matching_group(self) -> None:
        """Test a renamed copy whose name matches an ordinary group joins it."""
        result = deduplicate([
            _candidate("shared", ClientType.CLAUDE_CODE),
            _candidate("shared", ClientType.GEMINI_CLI, keep_distinct=True),
        ])

        assert len(result) == 1
        assert {b.client for b in result[0].bindings} == {ClientType.CLAUDE_CODE, ClientType.GEMINI_CLI}

    def test_idempotent(self) -> None:
        """Test re-running over its own output gives the same servers."""
        first = deduplicate([
            _candidate("fs", ClientType.CLAUDE_CODE),
            _candidate("files", ClientType.OPENCODE),
            _candidate("git", ClientType.CODEX, command="uvx"),
        ])
        replay = [
            Candidate(config=d.server.config, client=b.client, enabled=b.enabled)
            for d in first
            for b in d.bindings
        ]
        second = deduplicate(replay)

        def shape(results):
            return [
                (d.server.name, d.server.fingerprint, [(b.client, b.enabled) for b in d.bindings])
                for d in results
            ]

        assert shape(first) == shape(second)
