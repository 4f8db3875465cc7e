import logging
from typing import List, Dict, Union, Optional

from lxml import etree

logger = logging.getLogger(__name__)

# Namespace-agnostic queries: plenty of CMS plugins emit sitemaps without the
# sitemaps.org namespace, and xml2js-style consumers never cared about it.
_INDEX_LOCS = "//*[local-name()='sitemap']/*[local-name()='loc']"
_URLSET_LOCS = "//*[local-name()='url']/*[local-name()='loc']"

ParseResult = Dict[str, Union[str, List[str], None]]


class SitemapParser:
    def parse_sitemap(self, xml_content: Optional[str], sitemap_url: str = "") -> ParseResult:
        """
        Parses the given XML sitemap content.

        Determines if it's a sitemap index or a URL set and extracts the <loc> values.

        Args:
            xml_content: The XML content of the sitemap as a string.
            sitemap_url: The URL from which this sitemap was fetched (for logging/context).

        Returns:
            A dictionary with:
                'type': 'sitemapindex' or 'urlset' or 'error'
                'urls': child sitemap URLs (sitemapindex) or page URLs (urlset).
                        Empty list on error.
                'error_message': A string describing the error, if any.
        """
        if not xml_content or not xml_content.strip():
            logger.warning(f"Cannot parse empty XML content (from {sitemap_url}).")
            return {"type": "error", "urls": [], "error_message": "Empty XML content"}

        try:
            parser = etree.XMLParser(recover=True, remove_blank_text=True, resolve_entities=False)
            root = etree.fromstring(xml_content.strip().encode('utf-8'), parser=parser)
        except (etree.XMLSyntaxError, ValueError) as e:
            logger.warning(f"XML syntax error while parsing sitemap from {sitemap_url}: {e}")
            return {"type": "error", "urls": [], "error_message": f"XMLSyntaxError: {e}"}

        if root is None:
            msg = f"No XML document could be recovered from {sitemap_url}."
            logger.warning(msg)
            return {"type": "error", "urls": [], "error_message": msg}

        root_tag_name = etree.QName(root.tag).localname

        if root_tag_name == 'sitemapindex':
            logger.debug(f"Parsing as sitemap index: {sitemap_url}")
            return {"type": "sitemapindex", "urls": self._extract_locs(root, _INDEX_LOCS), "error_message": None}
        if root_tag_name == 'urlset':
            logger.debug(f"Parsing as URL set: {sitemap_url}")
            return {"type": "urlset", "urls": self._extract_locs(root, _URLSET_LOCS), "error_message": None}

        # Fallback: unknown root, but sitemap/url tags may still be present
        sitemap_links = self._extract_locs(root, _INDEX_LOCS)
        if sitemap_links:
            return {"type": "sitemapindex", "urls": sitemap_links, "error_message": "Unknown root, but sitemap tags found"}
        page_urls = self._extract_locs(root, _URLSET_LOCS)
        if page_urls:
            return {"type": "urlset", "urls": page_urls, "error_message": "Unknown root, but url tags found"}

        msg = f"Unknown root element '{root_tag_name}' and no sitemap/url tags found in {sitemap_url}."
        logger.warning(msg)
        return {"type": "error", "urls": [], "error_message": msg}

    @staticmethod
    def _extract_locs(root_element: etree._Element, query: str) -> List[str]:
        locs = []
        for loc_element in root_element.xpath(query):
            text = (loc_element.text or "").strip()
            if text:
                locs.append(text)
        logger.debug(f"Extracted {len(locs)} <loc> values.")
        return locs
