import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)

# Some servers refuse HEAD outright; those get a streamed GET instead
HEAD_UNSUPPORTED = {405, 501}


class LinkChecker:
    def __init__(self, user_agent: str = "", max_redirects: int = 3, session: requests.Session = None):
        # Shared by the checking threads, so only configured here
        self.session = session or requests.Session()
        self.session.max_redirects = max_redirects
        if user_agent:
            self.session.headers.update({"User-Agent": user_agent})

    def head_status(self, url: str, timeout: float = 5) -> Optional[int]:
        """Status code ``url`` resolves to, or ``None`` when it cannot be reached."""
        try:
            response = self.session.head(url, timeout=timeout, allow_redirects=True)
            if response.status_code in HEAD_UNSUPPORTED:
                response = self.session.get(url, timeout=timeout, allow_redirects=True, stream=True)
                response.close()
            return response.status_code
        except requests.exceptions.TooManyRedirects as e:
            logger.warning(f"Too many redirects for link {url}: {e}")
            return None
        except requests.exceptions.RequestException as e:
            logger.warning(f"Failed to check link status for {url}: {e}")
            return None
