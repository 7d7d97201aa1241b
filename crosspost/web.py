from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATE_DIR))


def base_context(request: Request, **extra: Any) -> dict[str, Any]:
    return {
        "request": request,
        "meta_missing": not os.getenv("META_APP_ID"),
        "google_missing": not (os.getenv("GOOGLE_CLIENT_ID") and os.getenv("GOOGLE_CLIENT_SECRET")),
        "flash": request.query_params.get("flash"),
        "flash_type": request.query_params.get("flash_type", "info"),
        **extra,
    }


def render(request: Request, template_name: str, **extra: Any):
    return templates.TemplateResponse(request, template_name, base_context(request, **extra))


def flash_redirect(url: str, message: str, level: str = "info") -> RedirectResponse:
    separator = "&" if "?" in url else "?"
    query = urlencode({"flash": message, "flash_type": level})
    return RedirectResponse(url=f"{url}{separator}{query}", status_code=303)
