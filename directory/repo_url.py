"""
directory/repo_url.py -- Strict parser for repository references.

Exactly three shapes are accepted:

  https://host/owner/repo[.git][/]
  git@host:owner/repo[.git]
  owner/repo[.git]

Anything else is rejected with InvalidRepoUrlError: other schemes (http,
ssh://, file://), embedded credentials (user:pw@host), ports on the SSH form,
query strings, fragments, extra path segments, and "." / ".." segments. The
owner/repo values come back exactly as written, minus a trailing ".git";
callers that need a storage key lowercase them.
"""

from __future__ import annotations

import re

from core.errors import InvalidRepoUrlError
from core.models import RepoRef

_SEGMENT = r"[A-Za-z0-9_.-]+"
_HOST = r"[A-Za-z0-9](?:[A-Za-z0-9.-]*[A-Za-z0-9])?"

_PATTERNS = (
    re.compile(rf"^https://{_HOST}(?::\d{{1,5}})?/(?P<owner>{_SEGMENT})/(?P<repo>{_SEGMENT})/?$"),
    re.compile(rf"^git@{_HOST}:(?P<owner>{_SEGMENT})/(?P<repo>{_SEGMENT})$"),
    re.compile(rf"^(?P<owner>{_SEGMENT})/(?P<repo>{_SEGMENT})$"),
)


def parse_repo_url(text: str) -> RepoRef:
    """Return the (owner, repo) pair named by text.

    >>> parse_repo_url("git@github.com:octo/hello.git")
    RepoRef(owner='octo', repo='hello')
    """
    if not isinstance(text, str):
        raise InvalidRepoUrlError(repr(text))
    candidate = text.strip()
    for pattern in _PATTERNS:
        match = pattern.match(candidate)
        if match is None:
            continue
        owner = match.group("owner")
        repo = match.group("repo")
        if repo.endswith(".git"):
            repo = repo[: -len(".git")]
        if not repo or owner in (".", "..") or repo in (".", ".."):
            break
        return RepoRef(owner=owner, repo=repo)
    raise InvalidRepoUrlError(text)
