from pathlib import Path

from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

# Base directory for templates
BASE_DIR = Path(__file__).resolve().parent.parent

templates = Jinja2Templates(directory=BASE_DIR / "frontend" / "templates")


def render_page(name: str, status_code: int = 200, **context) -> HTMLResponse:
    """Render a template without a request, usable from crash handling."""
    content = templates.get_template(name).render(**context)
    return HTMLResponse(content, status_code=status_code)
