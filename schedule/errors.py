from contextlib import asynccontextmanager
from typing import AsyncIterator

from remote.errors import RemoteError


class StageError(RemoteError):
    """A remote failure annotated with the join stage it happened in."""

    def __init__(self, stage: str, cause: RemoteError) -> None:
        super().__init__(f"{stage} stage failed: {cause.args[0]}", cause.target, cause.params)
        self.stage = stage
        self.cause = cause


@asynccontextmanager
async def join_stage(name: str) -> AsyncIterator[None]:
    """Re-raise any RemoteError inside the block as StageError(name, ...)."""
    try:
        yield
    except StageError:
        raise
    except RemoteError as exc:
        raise StageError(name, exc) from exc
