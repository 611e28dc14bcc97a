"""
Email extraction module.

Candidate discovery is split into independent passes. Each pass takes a
``Document`` (raw markup, lazily parsed soup, rendered text) and returns the
raw candidate strings it found; ``EmailExtractor`` unions every registered
pass and then cleans, validates and filters the union. Passes never see each
other's output, so the result does not depend on the order they run in and
a pass can be added or removed without touching the rest.
"""

import base64
import binascii
import codecs
import html
import json
import logging
import re
from collections import OrderedDict
from typing import Callable, Dict, Iterable, Optional, Set
from urllib.parse import unquote

import idna
from bs4 import BeautifulSoup, Comment

# Initialize logger
log = logging.getLogger(__name__)

# General email grammar. A trailing period is allowed to end a sentence.
EMAIL_PATTERN = (
    r"(?<![A-Z0-9._%+-])[A-Z0-9._%+-]+@(?:[A-Z0-9-]+\.)+[A-Z]{2,63}"
    r"(?![A-Z0-9_%+-])(?!\.[A-Z0-9])"
)
EMAIL_RE = re.compile(EMAIL_PATTERN, re.IGNORECASE)

# Separators standing in for "@" and "." in hand-obfuscated addresses. A bare
# lower-case "at" is ordinary prose ("find us at acme.com") and only counts
# when the host is obfuscated as well.
_OBF_AT = r"(?:(?i:\[\s*at\s*\]|\(\s*at\s*\)|\{\s*at\s*\})|\s+AT\s+|\s@\s|&\#64;)"
_BARE_AT = r"\s+(?i:at)\s+"
_OBF_DOT = r"(?i:\[\s*dot\s*\]|\(\s*dot\s*\)|\{\s*dot\s*\}|\bdot\b|\[\.\]|\(\.\))"

_OBF_EMAIL = re.compile(
    rf"""
    (?P<user>[A-Za-z0-9._%+-]+)                  # local-part
    \s*{_OBF_AT}\s*                              # obfuscated "at"
    (?P<host>[A-Za-z0-9-]+                       # first domain label
        (?:(?:\s*{_OBF_DOT}\s*|\.)[A-Za-z0-9-]+)+)   # obf-dot or dot + label
    """,
    re.VERBOSE,
)
_BARE_AT_EMAIL = re.compile(
    rf"""
    (?P<user>[A-Za-z0-9._%+-]+)
    {_BARE_AT}
    (?P<host>[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)*   # plain labels, then at least
        \s*{_OBF_DOT}\s*[A-Za-z0-9-]+            # one obfuscated dot
        (?:(?:\s*{_OBF_DOT}\s*|\.)[A-Za-z0-9-]+)*)
    """,
    re.VERBOSE,
)
_OBF_DOT_RE = re.compile(_OBF_DOT)

_LABELLED_RE = re.compile(
    r"(?:contact|e-?mail|support|sales|info|help|business|enquiries|inquiries|"
    r"reach\s+us|write\s+to|send\s+to|feedback|press|careers)\s*[:\-]?\s*"
    r"(?:<[^>]*>\s*)*(" + EMAIL_PATTERN + r")",
    re.IGNORECASE,
)
_JSON_EMAIL_RE = re.compile(r'"e-?mail(?:Address)?"\s*:\s*"([^"]+)"', re.IGNORECASE)
_QUOTED_EMAIL_RE = re.compile(r"""['"`]\s*(""" + EMAIL_PATTERN + r""")\s*['"`]""", re.IGNORECASE)
_CHARCODE_RE = re.compile(r"fromCharCode\(([0-9,\s]+)\)")
_QUOTED_LITERAL_RE = re.compile(r"""['"]([^'"\\]{5,200})['"]""")
_ROT13_HINT_RE = re.compile(r"rot13|fromCharCode\(\s*\(\s*\w+\s*<=\s*['\"]Z['\"]", re.IGNORECASE)
_CFEMAIL_HREF_RE = re.compile(r"/cdn-cgi/l/email-protection#([0-9a-f]+)", re.IGNORECASE)
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=_-]{8,}$")

# Placeholder domains never worth reporting
PLACEHOLDER_DOMAINS = frozenset({
    "example.com", "test.com", "sample.com", "demo.com", "placeholder.com",
    "domain.com", "yourdomain.com", "yourcompany.com", "your-email.com",
    "email.com", "test.org", "sample.org", "localhost",
})

# Local-parts of automated or system mailboxes (exact match only)
SYSTEM_MAILBOXES = frozenset({
    "noreply", "no-reply", "donotreply", "do-not-reply", "postmaster",
    "abuse", "spam", "mailer-daemon", "mailerdaemon", "automated", "system",
    "hostmaster", "bounce", "bounces", "unsubscribe", "nobody",
})

# Asset filenames that look like addresses (logo@2x.png)
ASSET_SUFFIXES = frozenset({
    "png", "jpg", "jpeg", "gif", "webp", "svg", "bmp", "ico", "tif", "tiff",
    "pdf", "js", "css", "map", "mp4", "mp3", "woff", "woff2", "ttf",
})

_HEX_LOCAL_RE = re.compile(r"^[0-9a-f]{24,}$", re.IGNORECASE)

_TEXT_SKIP_PARENTS = {"script", "style", "noscript", "template", "head", "title"}


class EmailValidationError(Exception):
    """A candidate address that cannot be cleaned into a valid one."""
    pass


class Document:
    """A page under inspection: raw markup plus lazily derived views."""

    def __init__(self, markup: Optional[str], text: Optional[str] = None):
        self.markup = markup or ""
        self._soup: Optional[BeautifulSoup] = None
        self._text = text

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = BeautifulSoup(self.markup, "html.parser")
        return self._soup

    @property
    def text(self) -> str:
        """Rendered text: visible string nodes only, entities decoded."""
        if self._text is None:
            parts = []
            for node in self.soup.find_all(string=True):
                if isinstance(node, Comment):
                    continue
                if node.parent is not None and node.parent.name in _TEXT_SKIP_PARENTS:
                    continue
                parts.append(str(node))
            self._text = html.unescape(" ".join(parts))
        return self._text


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------

def _matches(value: Optional[str]) -> Set[str]:
    if not value or "@" not in value:
        return set()
    return {m.group(0) for m in EMAIL_RE.finditer(value)}


def scan_markup(doc: Document) -> Set[str]:
    """General grammar over the raw markup, entities decoded."""
    return _matches(html.unescape(doc.markup))


def scan_text(doc: Document) -> Set[str]:
    """General grammar over the rendered text."""
    return _matches(doc.text)


def _maybe_base64(value: str) -> Optional[str]:
    if "@" in value or not _BASE64_RE.match(value):
        return None
    padded = value + "=" * (-len(value) % 4)
    try:
        decoded = base64.b64decode(padded, altchars=b"-_" if ("-" in value or "_" in value) else None)
        return decoded.decode("utf-8")
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None


def scan_mailto(doc: Document) -> Set[str]:
    """``mailto:`` links, percent-decoded, with opportunistic base64 targets."""
    hits: Set[str] = set()
    for anchor in doc.soup.find_all(href=True):
        href = anchor["href"].strip()
        if not href.lower().startswith("mailto:"):
            continue
        target = unquote(href.split(":", 1)[1]).split("?", 1)[0]
        for address in target.split(","):
            address = address.strip()
            if "@" not in address:
                decoded = _maybe_base64(address)
                if decoded:
                    hits |= _matches(decoded)
                continue
            hits |= _matches(address)
    return hits


def scan_attributes(doc: Document) -> Set[str]:
    """``data-*``, ``title`` and ``alt`` attribute values."""
    hits: Set[str] = set()
    for tag in doc.soup.find_all(True):
        for name, value in tag.attrs.items():
            if not (name.startswith("data-") or name in {"title", "alt", "aria-label"}):
                continue
            if isinstance(value, list):
                value = " ".join(value)
            value = str(value)
            if name in {"data-email", "data-mail", "data-contact"} and "@" not in value:
                decoded = _maybe_base64(value)
                if decoded:
                    hits |= _matches(decoded)
                continue
            hits |= _matches(html.unescape(value))
    return hits


def scan_scripts(doc: Document) -> Set[str]:
    """Inline scripts: JSON ``email`` keys, quoted literals, char-code strings."""
    hits: Set[str] = set()
    for script in doc.soup.find_all("script"):
        body = script.string or script.get_text() or ""
        if not body:
            continue
        for match in _JSON_EMAIL_RE.finditer(body):
            hits |= _matches(match.group(1))
        for match in _QUOTED_EMAIL_RE.finditer(body):
            hits.add(match.group(1))
        for codes in _CHARCODE_RE.findall(body):
            nums = [int(n) for n in codes.split(",") if n.strip().isdigit()]
            try:
                hits |= _matches("".join(chr(n) for n in nums))
            except (ValueError, OverflowError):
                continue
    return hits


def _walk_json(node, found: Set[str]) -> None:
    if isinstance(node, str):
        found |= _matches(node)
    elif isinstance(node, dict):
        for value in node.values():
            _walk_json(value, found)
    elif isinstance(node, list):
        for value in node:
            _walk_json(value, found)


def scan_json_ld(doc: Document) -> Set[str]:
    """Recursive walk of every ``application/ld+json`` block."""
    hits: Set[str] = set()
    for script in doc.soup.find_all("script", attrs={"type": re.compile(r"ld\+json", re.I)}):
        raw = script.string or script.get_text() or ""
        try:
            data = json.loads(raw)
        except (ValueError, TypeError):
            log.debug("Skipping invalid JSON-LD block")
            continue
        _walk_json(data, hits)
    return hits


def scan_microdata(doc: Document) -> Set[str]:
    """Microdata properties naming an email, contact or mail value."""
    hits: Set[str] = set()
    for tag in doc.soup.find_all(attrs={"itemprop": re.compile(r"email|contact|mail", re.I)}):
        value = tag.get("content") or tag.get("href") or tag.get_text(" ")
        hits |= _matches(unquote(str(value)))
    return hits


def scan_meta(doc: Document) -> Set[str]:
    hits: Set[str] = set()
    for meta in doc.soup.find_all("meta"):
        hits |= _matches(meta.get("content"))
    return hits


def scan_comments(doc: Document) -> Set[str]:
    hits: Set[str] = set()
    for comment in doc.soup.find_all(string=lambda s: isinstance(s, Comment)):
        hits |= _matches(str(comment))
    return hits


def scan_forms(doc: Document) -> Set[str]:
    """Form inputs typed or named as email: value and placeholder."""
    hits: Set[str] = set()
    for field in doc.soup.find_all(["input", "textarea"]):
        kind = " ".join(str(field.get(a, "")) for a in ("type", "name", "id")).lower()
        if "mail" not in kind and "@" not in str(field.get("value", "")):
            continue
        hits |= _matches(field.get("value"))
        hits |= _matches(field.get("placeholder"))
    return hits


def scan_labelled_phrases(doc: Document) -> Set[str]:
    """Addresses introduced by a label such as ``Contact:`` or ``Email -``."""
    hits: Set[str] = set()
    for source in (doc.text, html.unescape(doc.markup)):
        for match in _LABELLED_RE.finditer(source):
            hits.add(match.group(1))
    return hits


def deobfuscate(text: str) -> str:
    """Rewrite ``user [at] host (dot) tld`` style addresses into plain form."""
    def _repl(m):
        host = _OBF_DOT_RE.sub(".", m.group("host"))
        # collapse any stray spaces around dots
        host = re.sub(r"\s*\.\s*", ".", host)
        return f"{m.group('user')}@{host}"
    text = _OBF_EMAIL.sub(_repl, html.unescape(text))
    return _BARE_AT_EMAIL.sub(_repl, text)


def scan_obfuscated(doc: Document) -> Set[str]:
    return _matches(deobfuscate(doc.text))


def scan_reversed(doc: Document) -> Set[str]:
    """Addresses written back to front (``moc.emca@selas``)."""
    hits: Set[str] = set()
    for token in re.findall(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+", doc.text):
        if EMAIL_RE.fullmatch(token):
            continue
        hits |= _matches(token[::-1])
    for tag in doc.soup.find_all(attrs={"data-reversed": True}):
        hits |= _matches(str(tag["data-reversed"])[::-1])
    return hits


def scan_rot13(doc: Document) -> Set[str]:
    """Quoted literals in scripts that carry a ROT13 decoder."""
    hits: Set[str] = set()
    for script in doc.soup.find_all("script"):
        body = script.string or script.get_text() or ""
        if not _ROT13_HINT_RE.search(body):
            continue
        for literal in _QUOTED_LITERAL_RE.findall(body):
            hits |= _matches(codecs.decode(literal, "rot_13"))
    return hits


def decode_cfemail(encoded: str) -> str:
    key = int(encoded[:2], 16)
    return "".join(
        chr(int(encoded[i:i + 2], 16) ^ key)
        for i in range(2, len(encoded) - 1, 2)
    )


def scan_cfemail(doc: Document) -> Set[str]:
    """Cloudflare email protection (``data-cfemail`` and protected hrefs)."""
    encoded = [tag["data-cfemail"] for tag in doc.soup.find_all(attrs={"data-cfemail": True})]
    encoded += _CFEMAIL_HREF_RE.findall(doc.markup)
    hits: Set[str] = set()
    for value in encoded:
        try:
            hits |= _matches(decode_cfemail(value))
        except ValueError:
            log.debug("Undecodable cfemail value %r", value)
    return hits


EmailPass = Callable[[Document], Set[str]]

DEFAULT_PASSES = (
    scan_markup,
    scan_text,
    scan_mailto,
    scan_attributes,
    scan_scripts,
    scan_json_ld,
    scan_microdata,
    scan_meta,
    scan_comments,
    scan_forms,
    scan_labelled_phrases,
    scan_obfuscated,
    scan_reversed,
    scan_rot13,
    scan_cfemail,
)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class EmailExtractor:
    """Runs the registered passes and cleans, validates and filters the union."""

    def __init__(
        self,
        passes: Optional[Iterable[EmailPass]] = None,
        placeholder_domains: Optional[Iterable[str]] = None,
        system_mailboxes: Optional[Iterable[str]] = None,
    ):
        self.passes: "OrderedDict[str, EmailPass]" = OrderedDict()
        for fn in (DEFAULT_PASSES if passes is None else passes):
            self.add_pass(fn)
        self.placeholder_domains = frozenset(
            d.lower() for d in (PLACEHOLDER_DOMAINS if placeholder_domains is None else placeholder_domains)
        )
        self.system_mailboxes = frozenset(
            m.lower() for m in (SYSTEM_MAILBOXES if system_mailboxes is None else system_mailboxes)
        )

    def add_pass(self, fn: EmailPass, name: Optional[str] = None) -> None:
        self.passes[name or fn.__name__] = fn

    def remove_pass(self, name: str) -> None:
        self.passes.pop(name, None)

    # -- validation ---------------------------------------------------------

    def is_valid_email(self, email: str) -> bool:
        if not email or email.count("@") != 1:
            return False
        local_part, domain = email.rsplit("@", 1)

        if not local_part or len(local_part) > 64:
            return False
        if local_part[0] == "." or local_part[-1] == "." or ".." in local_part:
            return False
        if not domain or len(domain) > 255 or "." not in domain:
            return False

        labels = domain.split(".")
        if any(not label or label.startswith("-") or label.endswith("-") for label in labels):
            return False
        tld = labels[-1]
        if len(tld) < 2 or not tld.isalpha():
            return False
        if tld.lower() in ASSET_SUFFIXES:
            return False
        if _HEX_LOCAL_RE.match(local_part):
            return False
        return True

    def is_excluded(self, email: str) -> bool:
        """Placeholder domains and system mailboxes are never reported."""
        local_part, _, domain = email.lower().rpartition("@")
        if local_part in self.system_mailboxes:
            return True
        return any(domain == d or domain.endswith("." + d) for d in self.placeholder_domains)

    def clean_email(self, email: str) -> str:
        """
        Normalise a raw candidate.

        Raises:
            EmailValidationError: If the candidate is not a usable address
        """
        email = unquote(email.strip())
        if email.lower().startswith("mailto:"):
            email = email[len("mailto:"):]
        email = email.split("?", 1)[0].strip().strip("<>\"'`()[]{},;:")

        try:
            user, host = email.rsplit("@", 1)
        except ValueError:
            raise EmailValidationError(f"Invalid email format: {email}")

        user = user.strip().lstrip(".")
        host = host.strip().rstrip(".%;,:)}]>\"'`")
        if host.lower().startswith("xn--") or ".xn--" in host.lower():
            try:
                host = idna.decode(host)
            except idna.IDNAError as e:
                log.debug("IDNA decode failed for %r: %s", host, e)

        cleaned = f"{user}@{host}".lower()
        if not self.is_valid_email(cleaned):
            raise EmailValidationError(f"Invalid email after cleaning: {cleaned}")
        return cleaned

    def filter_emails(self, candidates: Iterable[str]) -> Set[str]:
        """Clean, validate and filter raw candidates into a lower-cased set."""
        hits: Set[str] = set()
        for raw in candidates:
            try:
                cleaned = self.clean_email(raw)
            except EmailValidationError as e:
                log.debug("Dropping candidate %r: %s", raw, e)
                continue
            if self.is_excluded(cleaned):
                log.debug("Dropping excluded address %s", cleaned)
                continue
            hits.add(cleaned)
        return hits

    # -- extraction ---------------------------------------------------------

    def candidates(self, doc: Document) -> Set[str]:
        raw: Set[str] = set()
        for name, fn in self.passes.items():
            try:
                raw |= fn(doc)
            except Exception as exc:
                log.warning("Email pass %s failed: %s", name, exc)
        return raw

    def extract_document(self, doc: Document, url: Optional[str] = None) -> Set[str]:
        hits = self.filter_emails(self.candidates(doc))
        if url:
            log.debug(" %2d emails on %s", len(hits), url)
        return hits

    def extract_from_html(self, markup: Optional[str], url: Optional[str] = None) -> Set[str]:
        """
        Extract email addresses from HTML markup.

        Args:
            markup: HTML content
            url: Source URL for logging purposes

        Returns:
            Set of cleaned, filtered addresses
        """
        if not markup:
            return set()
        return self.extract_document(Document(markup), url)

    def extract_from_text(self, text: Optional[str], url: Optional[str] = None) -> Set[str]:
        """Extract addresses from plain text (no markup passes apply)."""
        if not text:
            return set()
        doc = Document(html.escape(text, quote=False), text=text)
        return self.extract_document(doc, url)


# Shared default extractor
email_extractor = EmailExtractor()
