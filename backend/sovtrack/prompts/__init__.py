"""
Prompt templates
Versioned YAML templates rendered with {variable} substitution
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

TEMPLATES_FILE = Path(__file__).parent / "templates.yaml"


@lru_cache()
def load_templates(path: Optional[str] = None) -> Dict[str, Any]:
    """Load the template file once per process"""
    with open(path or TEMPLATES_FILE, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    templates = {t["name"]: t for t in data.get("templates", [])}
    return {
        "version": data.get("version"),
        "templates": templates,
        "fallbacks": data.get("fallbacks", {}),
    }


def render_template(template_text: str, context: Dict[str, Any]) -> str:
    """
    Render a template with the given context.
    Uses simple {variable} substitution; unknown braces are left alone.
    """
    rendered = template_text

    for key, value in context.items():
        placeholder = f"{{{key}}}"
        if placeholder in rendered:
            if isinstance(value, (list, tuple)):
                value = ", ".join(str(v) for v in value)
            rendered = rendered.replace(placeholder, "" if value is None else str(value))

    return rendered.strip()


def get_template(name: str) -> Dict[str, Any]:
    templates = load_templates()["templates"]
    if name not in templates:
        raise KeyError(f"Unknown prompt template: {name}")
    return templates[name]


def render(name: str, **context: Any) -> str:
    """Render a named template"""
    return render_template(get_template(name)["template_text"], context)


def system_prompt(name: str) -> Optional[str]:
    return get_template(name).get("system_prompt")


def render_fallbacks(kind: str, **context: Any) -> List[str]:
    """Render a list of fallback phrases ("keywords", "questions_global", ...)"""
    phrases = load_templates()["fallbacks"].get(kind, [])
    return [render_template(p, context) for p in phrases]


def templates_version() -> Optional[str]:
    return load_templates()["version"]
