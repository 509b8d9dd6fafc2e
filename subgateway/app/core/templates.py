from __future__ import annotations

from fastapi.templating import Jinja2Templates

from .paths import TEMPLATES_DIR

# Shared Jinja2 templates environment. Each theme lives in its own
# sub-directory: templates/<template_name>/sub.html
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def page_template(template_name: str, page: str = "sub.html") -> str:
    name = str(template_name or "").strip().strip("/") or "default"
    if (TEMPLATES_DIR / name / page).is_file():
        return f"{name}/{page}"
    return f"default/{page}"
