from typing import Optional, Protocol

from piggybank.models import SubmissionResult
from piggybank.pipeline import Transaction


class LedgerClient(Protocol):
    """Request/response boundary to the ledger node.

    ``submit`` applies every step of the transaction or none of them. A
    rejection raises ``LedgerRejected`` naming the aborting step; network
    failures raise ``TransientUnavailable``.
    """

    async def submit(self, tx: Transaction, sender: str) -> SubmissionResult: ...

    async def get_object(self, object_id: str) -> Optional[dict]: ...

    async def pending_rewards(self, share_type: str, owner: str) -> int: ...
