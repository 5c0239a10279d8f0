"""
===========================================================================
routes/page_routes.py — The Chat Page
===========================================================================

PURPOSE:
    Serves ONE page for ANY path. The path itself is the address of the
    website to chat about:

        http://localhost:8000/https://docs.python.org/3/tutorial

    The undecoded path is split into segments, handed to the
    PageOrchestrator (page_context.py), and the result is rendered with
    the Jinja2 template "templates/chat.html".

    This router must be included LAST, its catch-all route would
    otherwise shadow /api/... and /healthz.

USED BY:
    main.py (included via the router)
===========================================================================
"""

import logging
import os
import string
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from fastapi.templating import Jinja2Templates

from config_loader import config
from dependencies import get_orchestrator
from errors import MembershipStoreError, MissingRouteSegmentsError
from page_context import PageOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "templates")
templates = Jinja2Templates(directory=TEMPLATES_DIR)


def raw_segments(request: Request) -> list:
    """
    Return the still percent-encoded path segments of the request.

    Starlette decodes ``scope["path"]`` before routing, which would turn an
    encoded "%2F" into a real separator, so the raw path is used instead.
    Empty segments ("https://" → "https:", "") are kept. Raw non-ASCII
    bytes come back percent-encoded.
    """
    raw_path = request.scope.get("raw_path") or request.scope["path"].encode("utf-8")
    # Non-ASCII bytes sent unescaped are UTF-8, escape them so unquote
    # decodes them the same way as their %XX form
    path = quote(raw_path.split(b"?", 1)[0], safe=string.punctuation)
    root_path = request.scope.get("root_path", "")
    if root_path and path.startswith(root_path):
        path = path[len(root_path):]

    path = path[1:] if path.startswith("/") else path
    if not path:
        return []
    return path.split("/")


@router.get("/favicon.ico", include_in_schema=False)
async def favicon():
    """Browsers ask for this on every page, it is not a site to index."""
    return Response(status_code=204)


@router.get("/{url:path}")
async def read_page(request: Request, url: str,
                    orchestrator: PageOrchestrator = Depends(get_orchestrator)):
    """
    Render the chat page for the URL encoded in the path.

    Steps (see page_context.py for the details):
    1. Rebuild the target URL from the raw path segments
    2. Derive the session id (from the "sessionId" cookie by default)
    3. Index the page if it was never indexed before
    4. Load the last messages of the session
    5. Render chat.html

    Errors:
        400 → no path at all ("/")
        503 → Redis could not be reached
    """
    cookie_token = request.cookies.get(config["session_cookie_name"])

    try:
        page = await orchestrator.build(raw_segments(request), cookie_token)
    except MissingRouteSegmentsError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except MembershipStoreError as e:
        logger.error("Membership store unavailable: %s", e)
        raise HTTPException(status_code=503, detail="Index store unavailable, try again shortly.")

    return templates.TemplateResponse(
        request,
        "chat.html",
        {
            "page": page,
            "initial_messages": [m.model_dump() for m in page.initial_messages],
        },
    )
