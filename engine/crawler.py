"""
Public page crawler.

Fetches a URL the way a search bot would, following redirects manually up to
a bound, and extracts the normalized SEO signals the scorer works on.
"""
import codecs
import logging
import re
import time
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup
from bs4.dammit import EncodingDetector
from django.conf import settings

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)
ACCEPT_HEADER = 'text/html,application/xhtml+xml'
MAX_BODY_BYTES = 5 * 1024 * 1024
INDEXABLE = 'index,follow'
NOT_INDEXABLE = 'noindex,nofollow'
CHARSET_RE = re.compile(r'charset\s*=\s*["\']?([\w.:-]+)', re.I)


class CrawlTimeout(requests.Timeout):
    """Headers and body together took longer than the crawl timeout."""


def normalize_robots(value):
    """Only an explicit noindex token makes a page non-indexable."""
    v = re.sub(r'\s+', '', (value or '').lower())
    if 'noindex' in v:
        return NOT_INDEXABLE
    return INDEXABLE


def _meta_content(soup, name):
    tag = soup.find('meta', attrs={'name': re.compile(rf'^{name}$', re.I)})
    if tag is None:
        return ''
    return (tag.get('content') or '').strip()


def _visible_text_len(soup):
    body = soup.body or soup
    for tag in body.find_all(['script', 'style', 'noscript', 'template']):
        tag.decompose()
    text = body.get_text(' ')
    return len(re.sub(r'\s+', ' ', text).strip())


def extract_signals(html, http_status):
    """Parse an HTML document into crawl signals."""
    soup = BeautifulSoup(html or '', 'html.parser')

    title_tag = soup.find('title')
    title = title_tag.get_text().strip() if title_tag else ''

    canonical_tag = soup.find('link', rel='canonical')
    canonical = (canonical_tag.get('href') or '').strip() if canonical_tag else ''

    robots = normalize_robots(_meta_content(soup, 'robots'))

    h1 = [t for t in (h.get_text(' ', strip=True) for h in soup.find_all('h1')) if t]

    return {
        'title': title,
        'meta_description': _meta_content(soup, 'description'),
        'canonical': canonical or None,
        'robots': robots,
        'h1': h1,
        'h1_count': len(h1),
        'text_len': _visible_text_len(soup),
        'indexable': http_status == 200 and robots != NOT_INDEXABLE,
    }


def _known_codec(name):
    if not name:
        return None
    try:
        return codecs.lookup(name).name
    except LookupError:
        logger.info("Ignoring unknown charset %r", name)
        return None


def header_charset(content_type):
    """Charset explicitly set in a Content-Type header, if Python knows it."""
    match = CHARSET_RE.search(content_type or '')
    return _known_codec(match.group(1)) if match else None


def decode_body(body, content_type=None):
    """
    Decode an HTML body: header charset, then <meta charset>, then utf-8,
    then windows-1252. Unknown charset names are skipped, never raised.
    """
    charset = header_charset(content_type)
    if charset is None:
        declared = EncodingDetector.find_declared_encoding(body, is_html=True)
        charset = _known_codec(declared)
    if charset:
        return body.decode(charset, errors='replace')
    try:
        return body.decode('utf-8')
    except UnicodeDecodeError:
        return body.decode('windows-1252', errors='replace')


def _read_body(response, deadline):
    """Read at most MAX_BODY_BYTES of the body, failing once the deadline passes."""
    chunks = []
    size = 0
    for chunk in response.iter_content(chunk_size=16384):
        if time.monotonic() > deadline:
            raise CrawlTimeout(f'crawl exceeded timeout reading {response.url}')
        chunks.append(chunk)
        size += len(chunk)
        if size >= MAX_BODY_BYTES:
            break
    return decode_body(b''.join(chunks), response.headers.get('Content-Type'))


def crawl_public(url, session=None, timeout=None, max_redirects=None):
    """
    Crawl a public URL and return {url, http_status, timing_ms, signals}.

    Redirects are inspected and followed manually; once max_redirects hops
    have been taken the current response is treated as final. Network and
    timeout errors propagate to the caller.
    """
    timeout = settings.CRAWLER_TIMEOUT_SECONDS if timeout is None else timeout
    max_redirects = settings.CRAWLER_MAX_REDIRECTS if max_redirects is None else max_redirects
    http = session or requests
    headers = {
        'User-Agent': settings.CRAWLER_USER_AGENT,
        'Accept': ACCEPT_HEADER,
    }

    started = time.monotonic()
    deadline = started + timeout
    current = url
    redirects = 0

    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise CrawlTimeout(f'crawl exceeded timeout before requesting {current}')

        response = http.get(current, headers=headers, allow_redirects=False,
                            timeout=remaining, stream=True)
        try:
            location = response.headers.get('Location')
            if response.status_code in REDIRECT_STATUSES and location and redirects < max_redirects:
                redirects += 1
                current = urljoin(current, location)
                continue

            html = _read_body(response, deadline)
        finally:
            response.close()

        signals = extract_signals(html, response.status_code)
        return {
            'url': current,
            'http_status': response.status_code,
            'timing_ms': int((time.monotonic() - started) * 1000),
            'redirects': redirects,
            'signals': signals,
        }
