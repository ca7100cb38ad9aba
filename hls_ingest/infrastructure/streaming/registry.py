"""Process-wide record of stream names held by live sessions."""

from typing import Dict, Literal

import structlog

from hls_ingest.domain.exceptions import StreamNameInUseError

logger = structlog.get_logger(__name__)


class StreamNameRegistry:
    """Enforces the duplicate-publish policy.

    With ``"reject"`` a name can be held by one live session at a time. With
    ``"allow"`` claims always succeed and two transcoders may write into the
    same directory. Claims are keyed by the canonical output directory so that
    ``a/../b`` and ``b`` collide.
    """

    def __init__(self, policy: Literal["reject", "allow"] = "reject"):
        if policy not in ("reject", "allow"):
            raise ValueError(f"Unknown duplicate publish policy: {policy}")
        self.policy = policy
        self._holders: Dict[str, str] = {}

    def claim(self, key: str, owner: str) -> None:
        """Claim ``key`` for ``owner``.

        Raises:
            StreamNameInUseError: if another owner holds it under the reject policy.
        """
        holder = self._holders.get(key)
        if holder is not None and holder != owner and self.policy == "reject":
            raise StreamNameInUseError(f"Stream is already being published by session {holder}", stream_name=key)
        if holder is not None and holder != owner:
            logger.warning("Concurrent publish to the same stream", stream=key, holder=holder, owner=owner)
            return
        self._holders[key] = owner

    def release(self, key: str, owner: str) -> None:
        """Drop ``owner``'s claim; claims held by others are untouched."""
        if self._holders.get(key) == owner:
            del self._holders[key]

    def holder(self, key: str):
        return self._holders.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self._holders

    def __len__(self) -> int:
        return len(self._holders)
