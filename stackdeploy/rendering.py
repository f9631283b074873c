"""Optional Jinja rendering of template bodies before they are deployed."""
from __future__ import annotations

from typing import Any, Mapping, Optional

from jinja2 import Environment, StrictUndefined


class TemplateRenderer:
    """Renders a template body with Jinja when variables are supplied.

    Without variables the body is returned untouched, so templates using
    ``{{resolve:...}}`` dynamic references are only affected when rendering
    is requested.
    """

    def __init__(self) -> None:
        self.env = Environment(undefined=StrictUndefined, keep_trailing_newline=True)

    def render(self, template_body: str, variables: Optional[Mapping[str, Any]] = None) -> str:
        if not variables:
            return template_body
        return self.env.from_string(template_body).render(**variables)
