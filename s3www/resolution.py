"""Walk a candidate chain against the object store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

import structlog

from .errors import KeyNotFound, TransportError
from .metrics import RESOLUTIONS_TOTAL
from .resolver import Candidate, CandidateChain, CandidateKind
from .storage.base import ObjectInfo, ObjectStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Found:
    """The first candidate whose probe succeeded."""

    candidate: Candidate
    info: ObjectInfo

    @property
    def key(self) -> str:
        return self.candidate.key

    @property
    def size(self) -> int:
        return self.info.size

    @property
    def is_not_found_page(self) -> bool:
        return self.candidate.kind is CandidateKind.NOT_FOUND_PAGE


@dataclass(frozen=True)
class NotFound:
    """No candidate resolved.

    last_error is set when the final candidate failed with a transport error
    rather than a missing key.
    """

    request_path: str
    last_error: Optional[TransportError] = None


ResolvedObject = Union[Found, NotFound]


class ResolutionEngine:
    """Probe candidates strictly in chain order and stop at the first hit."""

    def __init__(self, store: ObjectStore):
        self.store = store

    def resolve(self, chain: CandidateChain) -> ResolvedObject:
        if chain.is_directory:
            raise ValueError(f"directory chain {chain.request_path!r} can not be resolved to an object")

        last_error: Optional[TransportError] = None
        for candidate in chain:
            try:
                info = self.store.probe(candidate.key)
            except KeyNotFound:
                last_error = None
                continue
            except TransportError as exc:
                # Later candidates (the custom 404 page in particular) still get a chance
                logger.warning(
                    "store_probe_failed",
                    key=candidate.key,
                    kind=candidate.kind.value,
                    error=str(exc),
                    code=exc.code,
                )
                last_error = exc
                continue

            RESOLUTIONS_TOTAL.labels(outcome=candidate.kind.value).inc()
            logger.debug(
                "path_resolved",
                request_path=chain.request_path,
                key=candidate.key,
                kind=candidate.kind.value,
                size=info.size,
            )
            return Found(candidate=candidate, info=info)

        outcome = "transport_error" if last_error is not None else "exhausted"
        RESOLUTIONS_TOTAL.labels(outcome=outcome).inc()
        logger.debug("path_unresolved", request_path=chain.request_path, outcome=outcome)
        return NotFound(request_path=chain.request_path, last_error=last_error)
