"""
BeatMarket Download API Routes
Signed-token downloads: redirect, proxied stream, stems manifest or 202
"""

from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from starlette.background import BackgroundTask

from ...services.download_service import DownloadService, open_media_stream
from ..dependencies import get_download_service

router = APIRouter()


async def _close_upstream(client: httpx.AsyncClient, response: httpx.Response) -> None:
    await response.aclose()
    await client.aclose()


@router.get("")
async def download(
    token: str = Query(..., min_length=1),
    file: Optional[str] = Query(None, description="Single file from a stems manifest"),
    service: DownloadService = Depends(get_download_service)
):
    plan = await service.download(token, file)

    if plan.mode == "redirect":
        return RedirectResponse(plan.url, status_code=302)
    if plan.mode == "processing":
        return JSONResponse(status_code=202, content=plan.body)
    if plan.mode == "manifest":
        return JSONResponse(content=plan.body)

    client, upstream = await open_media_stream(plan.url)
    return StreamingResponse(
        upstream.aiter_raw(),
        media_type=plan.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{plan.filename}"',
            "Cache-Control": "no-store",
        },
        background=BackgroundTask(_close_upstream, client, upstream)
    )
