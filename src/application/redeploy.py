"""
Redeploy Trigger - Best-Effort Hosting Platform Notification
=============================================================

After an update lands, ask the hosting platform to redeploy:
1. Vercel API (redeploy the latest production deployment), if configured
2. Otherwise the deploy-hook URL, if configured

Never raises: the caller only learns whether a redeploy was started.
"""

import logging
from typing import Optional

import requests

from src.domain.updates import UpdateError
from src.infrastructure.vercel import VercelClient

logger = logging.getLogger(__name__)


class RedeployTrigger:
    """
    USAGE:
        trigger = RedeployTrigger(vercel_client, deploy_hook_url="https://api.vercel.com/v1/integrations/deploy/...")
        started = trigger.trigger()
    """

    def __init__(
        self,
        vercel: Optional[VercelClient] = None,
        deploy_hook_url: str = "",
        timeout: float = 8,
        session: Optional[requests.Session] = None,
    ):
        self._vercel = vercel
        self._deploy_hook_url = deploy_hook_url
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return self._vercel is not None or bool(self._deploy_hook_url)

    def trigger(self) -> bool:
        """Start a redeploy. Returns True if one was started."""
        if self._vercel is not None:
            try:
                self._vercel.trigger_deployment()
                return True
            except UpdateError as e:
                logger.warning(f"Redeploy via Vercel API failed: {e.message}")
            except Exception:
                logger.exception("Unexpected error triggering redeploy via Vercel API")

        if self._deploy_hook_url:
            try:
                response = self._session.request("POST", self._deploy_hook_url, timeout=self._timeout)
                if 200 <= response.status_code < 300:
                    logger.info("Redeploy started via deploy hook")
                    return True
                logger.warning(f"Deploy hook answered {response.status_code}")
            except requests.RequestException as e:
                logger.warning(f"Deploy hook request failed: {e}")

        if not self.configured:
            logger.info("No redeploy mechanism configured")
        return False
