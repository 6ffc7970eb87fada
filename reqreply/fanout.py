"""Parallel requests to several subjects"""
import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from reqreply.client import Payload, RequestReplyClient
from reqreply.message import CallResult, validate_subject


class FanOutCoordinator:
    """Issues independent calls concurrently and collects them in input order

    Args:
        client: RequestReplyClient used for every call
        logger: Logger instance, uses standard library logging if None
    """

    def __init__(self, client: RequestReplyClient, logger: Optional[logging.Logger] = None) -> None:
        if client is None:
            raise ValueError("client can not be None")
        self._client = client
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    async def fan_out(self, subjects: Sequence[str], payload: Payload = b"",
                      per_call_timeout: Optional[float] = None) -> List[CallResult]:
        """Send the same payload to every subject and wait for all of them

        Returns:
            One CallResult per input subject, in input order, whatever order
            the replies arrived in. Failures are reported per entry.
        """
        if not subjects:
            return []
        for subject in subjects:
            validate_subject(subject)
        self._logger.debug(f"Sending parallel requests to {len(subjects)} subjects")
        # gather keeps the positional order of its arguments
        results = await asyncio.gather(
            *(self._client.call(subject, payload, per_call_timeout) for subject in subjects)
        )
        failed = sum(1 for result in results if not result.ok)
        if failed:
            self._logger.info(f"Parallel requests finished with {failed}/{len(results)} failure(s)")
        return list(results)

    @staticmethod
    def summarize(results: Sequence[CallResult]) -> Dict[str, str]:
        """Subject -> human-readable outcome

        Duplicate subjects are suffixed with their position.
        """
        summary: Dict[str, str] = {}
        for index, result in enumerate(results):
            key = result.subject if result.subject not in summary else f"{result.subject}#{index}"
            summary[key] = result.describe()
        return summary
