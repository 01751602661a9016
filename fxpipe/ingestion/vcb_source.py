"""VietcomBank rate sheet source."""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from xml.etree import ElementTree as ET

from fxpipe.core.errors import FetchError
from fxpipe.core.logging import get_logger
from fxpipe.schemas.ticks import Snapshot
from .base import BaseSource

log = get_logger("ingestion.vcb")

VCB_URL = "https://portal.vietcombank.com.vn/Usercontrols/TVPortal.TyGia/pXML.aspx"


class VcbSource(BaseSource):
    """Fetches the bank's XML sheet and stores it in its JSON form."""

    key = "vcb"

    def identifiers(self) -> List[str]:
        return ["rates"]

    async def fetch(self, identifier: str = "rates", options: Optional[Dict[str, Any]] = None) -> Snapshot:
        async with self._client() as client:
            resp = await self._request(client, "GET", VCB_URL, headers={"accept": "application/xml,text/xml,*/*"})

        payload = xml_to_payload(resp.text)
        count = len(payload["ExrateList"]["Exrate"])
        log.info(f"Fetched VCB sheet {payload['ExrateList'].get('DateTime')} with {count} currencies")
        return self._snapshot(identifier, payload)


def xml_to_payload(text: str) -> Dict[str, Any]:
    """``<ExrateList>`` XML -> ``{"ExrateList": {...}}`` with ``@_``-prefixed attributes."""
    try:
        root = ET.fromstring(text.strip())
    except ET.ParseError as exc:
        raise FetchError("VCB returned malformed XML", source="vcb") from exc

    if root.tag != "ExrateList":
        raise FetchError(f"Unexpected VCB root element {root.tag!r}", source="vcb")

    sheet: Dict[str, Any] = {"Exrate": []}
    for child in root:
        if child.tag == "Exrate":
            sheet["Exrate"].append({f"@_{name}": value for name, value in child.attrib.items()})
        else:
            sheet[child.tag] = (child.text or "").strip()
    return {"ExrateList": sheet}
