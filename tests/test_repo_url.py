"""Unit tests for directory/repo_url.py -- repository reference parsing.

Covers:
- The three accepted shapes (https, scp-style SSH, bare owner/repo)
- Trailing ".git" stripped; owner/repo case preserved
- Rejection of credentials, query strings, other schemes, extra segments
"""

from __future__ import annotations

import pytest

from core.errors import InvalidRepoUrlError, ValidationError
from core.models import RepoRef
from directory.repo_url import parse_repo_url


class TestAcceptedShapes:
    @pytest.mark.parametrize(
        "text",
        [
            "https://github.com/octo/hello",
            "https://github.com/octo/hello.git",
            "https://github.com/octo/hello/",
            "git@github.com:octo/hello.git",
            "git@github.com:octo/hello",
            "octo/hello",
            "octo/hello.git",
        ],
    )
    def test_parses_owner_and_repo(self, text):
        assert parse_repo_url(text) == RepoRef(owner="octo", repo="hello")

    def test_case_is_preserved(self):
        """Lowercasing is the caller's job; the parser returns what was written."""
        ref = parse_repo_url("https://github.com/Octo/Hello-World.git")
        assert ref == RepoRef(owner="Octo", repo="Hello-World")
        assert ref.slug == "Octo/Hello-World"

    def test_self_hosted_host_with_port(self):
        assert parse_repo_url("https://git.example.com:8443/team/svc") == RepoRef("team", "svc")

    def test_dots_inside_repo_name(self):
        assert parse_repo_url("octo/hello.world.git") == RepoRef("octo", "hello.world")


class TestRejectedInput:
    @pytest.mark.parametrize(
        "text",
        [
            "",
            "hello",
            "https://user:pw@github.com/octo/hello",
            "https://github.com/octo/hello?tab=readme",
            "https://github.com/octo/hello#readme",
            "https://github.com/octo/hello/tree/main",
            "http://github.com/octo/hello",
            "ssh://git@github.com/octo/hello.git",
            "file:///srv/octo/hello",
            "git@github.com:22:octo/hello",
            "../hello",
            "octo/..",
            "octo/.git",
        ],
    )
    def test_raises_invalid_repo_url(self, text):
        with pytest.raises(InvalidRepoUrlError):
            parse_repo_url(text)

    def test_error_is_a_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_repo_url("not a url")
        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "invalid_repo_url"
