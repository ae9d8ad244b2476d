from jinja2 import Environment, FileSystemLoader, StrictUndefined
from pathlib import Path
from typing import Optional

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


class TemplateRenderer:
    """
    Renders the node shell scripts shipped in kubestand/templates.

    Undefined variables raise instead of rendering as empty strings.
    """

    def __init__(self, templates_dir: Optional[Path] = None):
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir or TEMPLATES_DIR)),
            autoescape=False,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def render(self, template_name: str, context: dict) -> str:
        tmpl = self.env.get_template(template_name)
        return tmpl.render(**context)

    def render_string(self, source: str, context: dict) -> str:
        """Runtime templating of a step command (query values, addresses)."""
        return self.env.from_string(source).render(**context)
