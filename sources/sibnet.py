"""
================================================================================
AnimeNegus - Sibnet Resolver
================================================================================
Scrapes video.sibnet.ru. No API, no key.

Steps:
  1. Search "<title> <episode> серия"
  2. Take the first result whose title contains the show title
  3. Open the video page and read the <video> source; fall back to the page
     URL itself (Sibnet pages are embeddable)
================================================================================
"""

import logging
from typing import Optional

from bs4 import BeautifulSoup

from .base import BaseLinkResolver, PlaybackCandidate, absolute_url, is_adaptive_url

logger = logging.getLogger(__name__)


class SibnetResolver(BaseLinkResolver):
    """video.sibnet.ru HTML resolver."""

    id = "sibnet"
    name = "Sibnet"
    base_url = "https://video.sibnet.ru"

    DEFAULT_QUALITY = "720p"

    def _first_match(self, html: str, title: str) -> Optional[str]:
        soup = BeautifulSoup(html, 'html.parser')
        needle = title.lower()
        for item in soup.select('.video-item, .item'):
            link = item.find('a')
            heading = item.select_one('.title, .video-title')
            if not link or not link.get('href') or not heading:
                continue
            if needle in heading.get_text(strip=True).lower():
                return absolute_url(self.base_url, link['href'])
        return None

    def _video_source(self, html: str) -> Optional[str]:
        soup = BeautifulSoup(html, 'html.parser')
        source = soup.select_one('video source[src]')
        if source:
            return absolute_url(self.base_url, source['src'])
        video = soup.select_one('video[src]')
        if video:
            return absolute_url(self.base_url, video['src'])
        return None

    async def _find(self, title: str, episode: int) -> Optional[PlaybackCandidate]:
        search = await self._get(
            f"{self.base_url}/search.php",
            params={'str': f"{title} {episode} серия"},
        )
        page_url = self._first_match(search.text, title)
        if not page_url:
            return None

        page = await self._get(page_url)
        url = self._video_source(page.text) or page_url
        return PlaybackCandidate(
            url=url,
            quality=self.DEFAULT_QUALITY,
            is_adaptive=is_adaptive_url(url),
        )
