"""
auth/pages.py -- HTML pages shown in the browser at the end of the CLI login.

All three outcomes render the same Jinja2 template. Autoescape is on for
.html templates, so provider-supplied text (error_description) is escaped
before it reaches the page [X1].

Layer rule: no imports from api/, directory/, or storage/.
"""

from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html"]),
)


def _render(outcome: str, title: str, heading: str, messages: list[str], auto_close: bool = False) -> str:
    return _env.get_template("cli_auth.html").render(
        outcome=outcome,
        title=title,
        heading=heading,
        messages=messages,
        auto_close=auto_close,
    )


def success_page() -> str:
    return _render(
        "success",
        title="Authentication Successful",
        heading="Authentication Successful",
        messages=[
            "You have been signed in to Orbit.",
            "You can close this window and return to your terminal.",
        ],
        auto_close=True,
    )


def expired_page() -> str:
    return _render(
        "expired",
        title="Session Expired",
        heading="Session Expired",
        messages=[
            "This login session has expired or was already used.",
            "Run the login command in your terminal again.",
        ],
    )


def failure_page(description: str) -> str:
    return _render(
        "failed",
        title="Authentication Failed",
        heading="Authentication Failed",
        messages=[description, "Return to your terminal and try again."],
    )
