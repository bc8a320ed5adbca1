"""OAuth callback router."""

import html
import logging
from typing import Optional
from fastapi import APIRouter, Query
from fastapi.responses import HTMLResponse

from toolforge.infra.error_handler import ToolforgeError, http_status_for
from toolforge.services.oauth_service import oauth_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tools/oauth")

PAGE_TEMPLATE = """<html>
  <body>
    <h1>{title}</h1>
    {body}
  </body>
</html>"""


def _page(title: str, *paragraphs: str, status_code: int = 200) -> HTMLResponse:
    body = "\n    ".join(f"<p>{html.escape(p)}</p>" for p in paragraphs)
    return HTMLResponse(PAGE_TEMPLATE.format(title=html.escape(title), body=body), status_code=status_code)


@router.get("/callback", tags=["OAuth"], response_class=HTMLResponse)
async def oauth_callback(
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
):
    """Provider redirect target: exchanges the code and activates the tool."""
    if error:
        logger.warning(f"OAuth provider returned error: {error}")
        return _page(
            "OAuth Authorization Failed",
            f"Error: {error}",
            "Please try again or contact support.",
            status_code=400,
        )

    if not code or not state:
        return _page("OAuth Error", "Missing required parameters", status_code=400)

    try:
        completion = await oauth_service.complete_authorization(code, state)
    except ToolforgeError as e:
        logger.error(f"OAuth callback failed: {e.error_kind}: {e.message}")
        return _page("OAuth Error", e.message, status_code=http_status_for(e.error_kind))

    return _page(
        "OAuth Complete!",
        "Your tool is now ready to use.",
        f"Tool ID: {completion.tool_id}",
        "You can close this window.",
    )
