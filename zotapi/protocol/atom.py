"""
Atom entry decoding.

All XML handling of the package lives here: the namespaces the API
defines (atom, zapi, zxfer) are registered once and callers get plain
AtomEntry records back.
"""

import json
import logging
from typing import Any

from lxml import etree
from lxml.etree import _Element

from zotapi.lib import error
from zotapi.lib.namespace import ns, nsmap, nsmap2

from .types import AtomEntry

log = logging.getLogger(__name__)

ENTRY = ns("atom", "entry")
CONTENT = ns("atom", "content")
KEY = ns("zapi", "key")
VERSION = ns("zapi", "version")
SUBCONTENT = ns("zapi", "subcontent")
SUBCONTENT_TYPE = ns("zapi", "type")


def _to_element(xml: "bytes | str | _Element | AtomDocument", huge_tree: bool = False) -> _Element:
    if isinstance(xml, AtomDocument):
        return xml.root
    if isinstance(xml, _Element):
        return xml
    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    try:
        return etree.fromstring(xml, etree.XMLParser(huge_tree=huge_tree))
    except etree.XMLSyntaxError as err:
        log.error("XML response could not be parsed: \n" + xml.decode("utf-8", errors="replace"))
        raise error.ParseError(reason=f"{err}: {xml!r}") from err


def _markup(elem: _Element) -> str:
    return etree.tostring(elem, encoding="unicode")


def _content_text(content: _Element) -> str:
    """
    Text of a <content> element.  If it contains XML, all subnodes are
    serialised; otherwise it's just the string content.
    """
    if len(content) == 0:
        return content.text or ""
    parts = [content.text or ""]
    for child in content:
        parts.append(etree.tostring(child, encoding="unicode", with_tail=True))
    return "".join(parts)


def _find_entry(root: _Element) -> _Element | None:
    if root.tag == ENTRY:
        return root
    return root.find(".//" + ENTRY)


class AtomDocument:
    """
    A decoded Atom feed or entry.

    Exposes XPath queries with the atom, zapi and zxfer prefixes bound,
    and the parsed entries as AtomEntry records.
    """

    def __init__(self, root: _Element) -> None:
        self.root = root

    @classmethod
    def parse(cls, xml: "bytes | str", huge_tree: bool = False) -> "AtomDocument":
        return cls(_to_element(xml, huge_tree=huge_tree))

    def xpath(self, expression: str) -> list:
        """Evaluate an XPath expression with the API namespaces registered"""
        return self.root.xpath(expression, namespaces=nsmap)

    def text(self, expression: str) -> str | None:
        """Text of the first node matched, None if nothing matches"""
        found = self.xpath(expression)
        if not found:
            return None
        node = found[0]
        if isinstance(node, _Element):
            return node.text or ""
        return str(node)

    @property
    def is_feed(self) -> bool:
        return self.root.tag == ns("atom", "feed")

    def entries(self) -> list[AtomEntry]:
        if self.root.tag == ENTRY:
            return [parse_entry(self.root)]
        return [parse_entry(e) for e in self.root.iterfind(ENTRY)]

    def entry(self) -> AtomEntry:
        return parse_entry(self.root)

    def count_entries(self) -> int:
        return len(self.xpath("//atom:entry"))

    def tostring(self) -> str:
        return _markup(self.root)

    def __repr__(self) -> str:
        return f"AtomDocument({self.root.tag})"


def parse_entry(xml: "bytes | str | _Element | AtomDocument") -> AtomEntry:
    """
    Extract key, version and content from an Atom entry.

    Accepts a single entry or a feed (the first entry is used).  key and
    version are None when absent, e.g. in multi-content feeds where they
    appear at the feed level.

    Raises:
        ParseError: The markup has no <content> element
    """
    root = _to_element(xml)
    container = _find_entry(root)
    if container is None:
        container = root

    content = container.find(CONTENT)
    if content is None:
        markup = _markup(root)
        log.error("Atom response does not contain <content>: \n" + markup)
        raise error.ParseError(reason=f"Atom response does not contain <content>: {markup}")

    key = container.find(KEY)
    version = container.find(VERSION)
    return AtomEntry(
        key=(key.text or "") if key is not None else None,
        version=(version.text or "") if version is not None else None,
        content=_content_text(content),
    )


def render_entry(entry: AtomEntry, content_type: str = "application/json") -> bytes:
    """
    Render an AtomEntry as an <entry> document.  parse_entry() reads
    the result back into an equal record.
    """
    root = etree.Element(ENTRY, nsmap={None: nsmap["atom"], "zapi": nsmap["zapi"]})
    if entry.key is not None:
        etree.SubElement(root, KEY).text = entry.key
    if entry.version is not None:
        etree.SubElement(root, VERSION).text = str(entry.version)
    content = etree.SubElement(root, CONTENT)
    content.set("type", content_type)
    content.text = entry.content
    return etree.tostring(root, xml_declaration=True, encoding="utf-8")


def parse_subcontent(xml: "bytes | str | _Element | AtomDocument", type: str) -> Any:
    """
    Read one block of a multi-content entry.

    Args:
        xml: Entry or feed markup
        type: "json" (returns the decoded JSON) or "html" (returns markup)
    """
    root = _to_element(xml)
    container = _find_entry(root)
    if container is None:
        container = root
    content = container.find(CONTENT)
    if content is None:
        markup = _markup(root)
        log.error("Atom response does not contain <content>: \n" + markup)
        raise error.ParseError(reason=f"Atom response does not contain <content>: {markup}")

    blocks = content.findall(SUBCONTENT)
    if not blocks:
        log.error("Atom entry is not a multi-content response: \n" + _markup(root))
        raise error.ParseError(reason="Atom entry is not a multi-content response")

    if type not in ("json", "html"):
        raise error.UnsupportedFormat(reason=f"Unknown data type '{type}'")

    for block in blocks:
        if block.get(SUBCONTENT_TYPE) != type:
            continue
        if type == "json":
            try:
                return json.loads(block.text or "")
            except ValueError as err:
                log.error("JSON subcontent could not be parsed: \n" + str(block.text))
                raise error.ParseError(reason=str(block.text)) from err
        ## html subcontent is a single xhtml element
        for child in block:
            if child.tag.startswith("{%s}" % nsmap2["html"]):
                return _markup(child)
        return _content_text(block)
    log.error(f"No '{type}' subcontent in entry: \n" + _markup(root))
    raise error.ParseError(reason=f"No '{type}' subcontent in entry")


def render_group(
    owner: int,
    type: str,
    name: str,
    library_editing: str = "members",
    library_reading: str = "members",
    file_editing: str = "none",
) -> bytes:
    """
    Body of a privileged group creation request, a single <group/>
    element carrying the settings as attributes.
    """
    group = etree.Element("group")
    group.set("owner", str(owner))
    group.set("name", name)
    group.set("type", type)
    group.set("libraryEditing", library_editing)
    group.set("libraryReading", library_reading)
    group.set("fileEditing", file_editing)
    group.set("description", "")
    group.set("url", "")
    group.set("hasImage", "0")
    return etree.tostring(group)


def render_group_members(user_ids: "list[int]", role: str = "member") -> bytes:
    """Body adding users to a group, one <user/> element per user"""
    users = []
    for user_id in user_ids:
        user = etree.Element("user")
        user.set("id", str(user_id))
        user.set("role", role)
        users.append(etree.tostring(user))
    return b"".join(users)
