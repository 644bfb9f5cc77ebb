"""
approval_services.artifacts -- Artifact mover port.

Approved requests may carry references to stored documents (drive id +
file id) that are relocated to an "approved" folder once the last level
approves.  Storage is external; this module only declares the port.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from approval_kernel.domain.approval import ArtifactRef


@runtime_checkable
class ArtifactMover(Protocol):
    """Relocates approved artifacts.  Invoked only on final approval."""

    def move_to_approved_location(
        self,
        refs: Sequence[ArtifactRef],
        destination: str,
    ) -> None:
        ...
