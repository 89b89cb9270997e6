"""
UITreeAgent - find a control by label and click it.

Labels are tried strictly in priority order; the first label that yields a
clickable match wins and the remaining labels are never searched. Vendor
wording differs ("Mute"/"Unmute", "End call"/"Hang up"/"End"), so the
candidate list itself carries the expected variants.
"""

from __future__ import annotations

from typing import Optional, Sequence

import structlog
from prometheus_client import Counter

from .tree import UINode, UITreeHost, find_by_text, format_tree

logger = structlog.get_logger(__name__)

_UI_ACTIVATIONS_TOTAL = Counter(
    "call_worker_ui_activations_total",
    "UI control activation attempts",
    labelnames=("action", "result"),
)


class UITreeAgent:
    def __init__(self, host: UITreeHost):
        self._host = host

    async def find_and_activate(
        self,
        root: Optional[UINode],
        candidate_labels: Sequence[str],
        *,
        action: str = "activate",
    ) -> bool:
        if root is None:
            logger.error("Cannot search for control; no active window", action=action)
            _UI_ACTIVATIONS_TOTAL.labels(action, "no_window").inc()
            return False

        for label in candidate_labels:
            matches = find_by_text(root, label)
            if not matches:
                logger.debug("No control matched label", action=action, label=label)
                continue
            for node in matches:
                if not node.clickable:
                    continue
                try:
                    clicked = await self._host.click(node)
                except Exception as exc:
                    logger.warning("Click failed", action=action, label=label, error=str(exc))
                    continue
                if clicked:
                    logger.info(
                        "Activated control",
                        action=action,
                        label=label,
                        text=node.text,
                        description=node.description,
                    )
                    _UI_ACTIVATIONS_TOTAL.labels(action, "activated").inc()
                    return True

        logger.warning(
            "Control not found after checking all labels",
            action=action,
            labels=list(candidate_labels),
        )
        _UI_ACTIVATIONS_TOTAL.labels(action, "not_found").inc()
        return False

    async def activate(self, candidate_labels: Sequence[str], *, action: str = "activate") -> bool:
        """Snapshot the active window, log it at debug level, then :meth:`find_and_activate`."""
        try:
            root = await self._host.snapshot()
        except Exception as exc:
            logger.error("Failed to read the active window", action=action, error=str(exc))
            root = None
        for line in format_tree(root):
            logger.debug("view", action=action, node=line)
        return await self.find_and_activate(root, candidate_labels, action=action)
