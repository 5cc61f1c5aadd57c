"""FastAPI mock of a rate-limited, cursor-paginated listing API."""

import random
from typing import Dict, List, Optional
from urllib.parse import parse_qs

import uvicorn
from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse


def _make_items(total_items: int) -> List[Dict]:
    return [
        {
            "kind": "t3",
            "data": {
                "id": f"p{i:05d}",
                "name": f"t3_p{i:05d}",
                "title": f"Saved post {i}",
                "subreddit": "python",
                "score": (i * 37) % 1000,
            },
        }
        for i in range(total_items)
    ]


def create_mock_app(
    name: str = "listing",
    total_items: int = 250,
    max_page_size: int = 100,
    rate_limit: int = 600,
    reset_seconds: int = 600,
    error_schedule: Optional[List[int]] = None,
    retry_after: int = 0,
    error_rate: float = 0.0,
    random_seed: Optional[int] = None,
) -> FastAPI:
    """
    Create a FastAPI mock listing server with configurable failures.

    Args:
        name: Server name reported by /health
        total_items: Items in the listing
        max_page_size: Largest page served regardless of ``limit``
        rate_limit: Quota reported through x-ratelimit-* headers
        reset_seconds: Reported seconds until the quota resets
        error_schedule: Status codes returned, in order, for the first
            listing requests before normal service begins (0 serves normally)
        retry_after: Retry-After seconds sent with 429 responses
        error_rate: Probability of a random 5xx after the schedule is used up
        random_seed: Seed for deterministic random errors

    Returns:
        FastAPI application
    """
    app = FastAPI(title=f"Mock Listing API - {name}")
    items = _make_items(total_items)
    index_by_name = {item["data"]["name"]: idx for idx, item in enumerate(items)}
    schedule = list(error_schedule or [])
    rng = random.Random(random_seed)
    state = {"used": 0, "requests": 0}

    app.state.request_log = []
    app.state.unsaved = []

    def _rate_headers() -> Dict[str, str]:
        remaining = max(0, rate_limit - state["used"])
        return {
            "x-ratelimit-used": str(state["used"]),
            "x-ratelimit-remaining": f"{remaining:.1f}",
            "x-ratelimit-reset": str(reset_seconds),
        }

    @app.get("/user/{username}/saved")
    async def saved(
        username: str,
        limit: int = Query(default=25, ge=1),
        after: Optional[str] = None,
    ):
        """Get one page of saved items."""
        state["requests"] += 1
        state["used"] += 1
        app.state.request_log.append({"limit": limit, "after": after})

        status = schedule.pop(0) if schedule else 0
        if status:
            headers = _rate_headers()
            if status == 429:
                headers["retry-after"] = str(retry_after)
            return JSONResponse({"error": status}, status_code=status, headers=headers)

        if error_rate and rng.random() < error_rate:
            return JSONResponse(
                {"error": "simulated"}, status_code=rng.choice([500, 502, 503]), headers=_rate_headers()
            )

        if after is not None and after not in index_by_name:
            return JSONResponse({"error": "invalid cursor"}, status_code=400, headers=_rate_headers())

        start = index_by_name[after] + 1 if after else 0
        page = items[start:start + min(limit, max_page_size)]
        next_after = page[-1]["data"]["name"] if page and start + len(page) < total_items else None

        return JSONResponse(
            {
                "kind": "Listing",
                "data": {"children": page, "after": next_after, "dist": len(page)},
            },
            headers=_rate_headers(),
        )

    @app.post("/api/unsave")
    async def unsave(request: Request):
        """Unsave one item given a form body ``id=<fullname>``."""
        state["requests"] += 1
        state["used"] += 1
        form = parse_qs((await request.body()).decode())
        fullname = (form.get("id") or [""])[0]
        if fullname not in index_by_name:
            return JSONResponse({"error": "unknown item"}, status_code=404, headers=_rate_headers())
        app.state.unsaved.append(fullname)
        return JSONResponse({}, headers=_rate_headers())

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "server": name, "requests": state["requests"]}

    @app.get("/reset")
    async def reset():
        state["used"] = 0
        return Response(status_code=204)

    return app


def create_app() -> FastAPI:
    """Default app with a small rate limit and occasional failures."""
    return create_mock_app(total_items=500, rate_limit=60, reset_seconds=60, error_rate=0.05)


def run_server(port: int = 8001) -> None:
    """Serve the default mock app on localhost."""
    uvicorn.run(create_app(), host="127.0.0.1", port=port, log_level="warning")


# Default app for running directly
app = create_app()


if __name__ == "__main__":
    run_server()
