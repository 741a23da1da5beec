# ─────────────────────────────────────────────────────────────────────────────
# Movie Routes: catalog CRUD behind permission guards
# ─────────────────────────────────────────────────────────────────────────────
#   GET    /v1/movies       → movies:read   (filter, sort, paginate)
#   POST   /v1/movies       → movies:write  (201 + Location)
#   GET    /v1/movies/{id}  → movies:read
#   PATCH  /v1/movies/{id}  → movies:write  (optimistic version check → 409)
#   DELETE /v1/movies/{id}  → movies:write
# ─────────────────────────────────────────────────────────────────────────────

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Header, Path, Query, Response, status

from greenlight.auth import require_permission
from greenlight.dependencies import get_store
from greenlight.domain import Movie, Page
from greenlight.exceptions import EditConflictError, RecordNotFoundError
from greenlight.schemas import (
    ListMetadata,
    MovieCreateRequest,
    MovieListResponse,
    MovieResponse,
    MovieSort,
    MovieUpdateRequest,
)
from greenlight.store.protocol import Store

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1/movies")

can_read = [Depends(require_permission("movies:read"))]
can_write = [Depends(require_permission("movies:write"))]


async def _get_or_404(store: Store, movie_id: int) -> Movie:
    movie = await store.get_movie(movie_id) if movie_id > 0 else None
    if movie is None:
        raise RecordNotFoundError()
    return movie


@router.get("", dependencies=can_read)
async def list_movies(
    title: str = Query("", max_length=500),
    genres: str = Query("", description="Comma-separated; a movie must have all of them"),
    sort: MovieSort = Query(MovieSort.id),
    page: int = Query(1, ge=1, le=10_000_000),
    page_size: int = Query(20, ge=1, le=100),
    store: Store = Depends(get_store),
) -> MovieListResponse:
    wanted = [g.strip() for g in genres.split(",") if g.strip()]
    movies, total = await store.list_movies(
        title.strip(), wanted, Page(number=page, size=page_size, sort=sort.value)
    )
    return MovieListResponse(
        movies=[MovieResponse.model_validate(m) for m in movies],
        metadata=ListMetadata.calculate(total, page, page_size),
    )


@router.post("", status_code=status.HTTP_201_CREATED, dependencies=can_write)
async def create_movie(
    body: MovieCreateRequest,
    response: Response,
    store: Store = Depends(get_store),
) -> dict[str, MovieResponse]:
    movie = await store.insert_movie(
        Movie(id=0, title=body.title, year=body.year, runtime=body.runtime, genres=body.genres)
    )
    response.headers["Location"] = f"/v1/movies/{movie.id}"
    logger.info("movie_created", movie_id=movie.id)
    return {"movie": MovieResponse.model_validate(movie)}


@router.get("/{movie_id}", dependencies=can_read)
async def show_movie(
    movie_id: int = Path(...),
    store: Store = Depends(get_store),
) -> dict[str, MovieResponse]:
    movie = await _get_or_404(store, movie_id)
    return {"movie": MovieResponse.model_validate(movie)}


@router.patch("/{movie_id}", dependencies=can_write)
async def update_movie(
    body: MovieUpdateRequest,
    movie_id: int = Path(...),
    expected_version: int | None = Header(None, alias="X-Expected-Version"),
    store: Store = Depends(get_store),
) -> dict[str, MovieResponse]:
    """Apply the fields present in the body.

    A client may pin the version it last saw with X-Expected-Version; a
    mismatch is a 409 before anything is written.
    """
    movie = await _get_or_404(store, movie_id)
    if expected_version is not None and expected_version != movie.version:
        raise EditConflictError()

    for name, value in body.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(movie, name, value)

    updated = await store.update_movie(movie)
    return {"movie": MovieResponse.model_validate(updated)}


@router.delete("/{movie_id}", dependencies=can_write)
async def delete_movie(
    movie_id: int = Path(...),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    if movie_id < 1 or not await store.delete_movie(movie_id):
        raise RecordNotFoundError()
    logger.info("movie_deleted", movie_id=movie_id)
    return {"message": "movie successfully deleted"}
