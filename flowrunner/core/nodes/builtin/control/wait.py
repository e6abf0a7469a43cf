"""
Wait Node - pause the workflow.

Short waits sleep in-process (interrupted by cancellation). Longer waits, or
waits until a given time, park the execution: the node raises WaitRequested
and the execution is sealed as waiting.
"""

import asyncio
import logging
from datetime import datetime, timedelta

from flowrunner.core.errors import WaitRequested
from flowrunner.core.nodes.base import NodeExecutionInput, NodeHandler
from flowrunner.core.nodes.registry import register_node
from flowrunner.utils.timezone import get_local_now, to_local

logger = logging.getLogger(__name__)

# Waits up to this many seconds are served in-process
INLINE_WAIT_LIMIT_SECONDS = 65


@register_node(
    "wait",
    display_name="Wait",
    description="Wait for an amount of time or until a point in time",
)
class WaitNode(NodeHandler):
    """
    Parameters:
        amount: Seconds to wait
        resume_at: ISO-8601 timestamp to wait until (takes precedence)
    """

    async def execute(self, input_data: NodeExecutionInput):
        resume_at = input_data.parameters.get("resume_at")
        if resume_at:
            wait_till = to_local(datetime.fromisoformat(resume_at))
            logger.info(f"⏸️ Wait node {self.node_id}: parking execution until {wait_till.isoformat()}")
            raise WaitRequested(wait_till)

        amount = float(input_data.parameters.get("amount", 0) or 0)
        if amount <= 0:
            return input_data.items(0)

        if amount <= INLINE_WAIT_LIMIT_SECONDS:
            logger.debug(f"Wait node {self.node_id}: sleeping {amount}s")
            if input_data.cancel_token is not None:
                await input_data.cancel_token.sleep(amount)
                input_data.checkpoint()
            else:
                await asyncio.sleep(amount)
            return input_data.items(0)

        wait_till = get_local_now() + timedelta(seconds=amount)
        logger.info(f"⏸️ Wait node {self.node_id}: parking execution until {wait_till.isoformat()}")
        raise WaitRequested(wait_till)
