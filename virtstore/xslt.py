"""Applying user supplied XSLT stylesheets to generated XML."""

from __future__ import annotations

import logging

from lxml import etree

log = logging.getLogger(__name__)

IDENTITY_SPACE_STRIP_XSLT = """
<xsl:stylesheet version="1.0" xmlns:xsl="http://www.w3.org/1999/XSL/Transform">
  <xsl:strip-space elements="*" />
  <xsl:template match="@*|node()">
    <xsl:copy>
      <xsl:apply-templates select="@*|node()"/>
    </xsl:copy>
  </xsl:template>
</xsl:stylesheet>
"""

_ACCESS = etree.XSLTAccessControl(
    read_network=False,
    write_network=False,
    write_file=False,
    create_dir=False,
)


def transform_xml(xml_text: str, xslt_text: str) -> str:
    """Apply ``xslt_text`` to ``xml_text``; an empty stylesheet changes nothing.

    Raises ValueError when either document cannot be parsed or applied.
    """
    if not xslt_text.strip():
        return xml_text
    try:
        stylesheet = etree.XML(xslt_text.strip().encode("utf-8"))
        transform = etree.XSLT(stylesheet, access_control=_ACCESS)
        document = etree.XML(xml_text.encode("utf-8"))
        result = transform(document)
    except etree.LxmlError as exc:
        raise ValueError(f"failed to apply XSLT stylesheet: {exc}") from exc
    output = str(result)
    log.debug("Transformed XML with user specified XSLT:\n%s", output)
    return output


def xslt_diff_suppress(old: str, new: str) -> bool:
    """Tell whether two stylesheets differ only in whitespace."""
    try:
        old_strip = transform_xml(old, IDENTITY_SPACE_STRIP_XSLT)
        new_strip = transform_xml(new, IDENTITY_SPACE_STRIP_XSLT)
    except ValueError:
        log.error("Couldn't normalize XSLT stylesheet")
        return old == new
    return old_strip == new_strip