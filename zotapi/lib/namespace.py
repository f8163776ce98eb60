#!/usr/bin/env python
from typing import Dict
from typing import Optional

nsmap: Dict[str, str] = {
    "atom": "http://www.w3.org/2005/Atom",
    "zapi": "http://zotero.org/ns/api",
    "zxfer": "http://zotero.org/ns/transfer",
}

## html content is only used inside zapi:subcontent, it's not part of
## the namespaces registered for feed queries.
nsmap2: Dict[str, str] = nsmap.copy()
nsmap2["html"] = "http://www.w3.org/1999/xhtml"


def ns(prefix: str, tag: Optional[str] = None) -> str:
    name = "{%s}" % nsmap2[prefix]
    if tag is not None:
        name = "%s%s" % (name, tag)
    return name
