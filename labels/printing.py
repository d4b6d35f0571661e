import logging
from io import BytesIO

from django.utils import timezone
from reportlab.graphics.barcode import code128
from reportlab.lib import colors
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from common.errors import ValidationError
from labels.elements import BARCODE, IMAGE, TEXT, elements_from_dicts
from labels.layout import resolve_content

logger = logging.getLogger(__name__)

MM_TO_PT = 72.0 / 25.4
DATE_FORMAT = "%d.%m.%Y"
ELLIPSIS = "..."

SAMPLE_DATA = {
    "productName": "Sample Product",
    "features": "High Quality, Durable",
    "price": "29.99 USD",
    "barcode": "123456",
}

FONTS = {
    (False, False): "Helvetica",
    (True, False): "Helvetica-Bold",
    (False, True): "Helvetica-Oblique",
    (True, True): "Helvetica-BoldOblique",
}


def build_label_data(product=None, code=None):
    """Values for every printable field; a missing product yields sample data."""
    today = timezone.localdate().strftime(DATE_FORMAT)
    if product is None:
        data = dict(SAMPLE_DATA, date=today, logo=None)
        if code:
            data["barcode"] = str(code)
        return data

    features = ", ".join(
        f"{attribute.get('name') or attribute.get('attributeId')}: {attribute.get('value')}"
        for attribute in product.attributes or []
        if isinstance(attribute, dict) and attribute.get("value") not in (None, "")
    )
    return {
        "productName": product.name,
        "features": features,
        "price": f"{product.sell_price} {product.sell_currency}",
        "date": today,
        "barcode": str(code) if code else "",
        "logo": None,
    }


def _fit_text(text, font_name, font_size, max_width):
    if stringWidth(text, font_name, font_size) <= max_width:
        return text
    while text and stringWidth(text + ELLIPSIS, font_name, font_size) > max_width:
        text = text[:-1]
    return text + ELLIPSIS if text else ""


def _draw_text(c, element, value, x, y, width, height):
    font_name = FONTS[(bool(element.bold), bool(element.italic))]
    font_size = min(float(element.font_size), height)
    text = _fit_text(str(value or ""), font_name, font_size, width)
    if not text:
        return
    c.setFont(font_name, font_size)
    baseline = y + (height - font_size) / 2.0 + font_size * 0.2
    if element.align == "center":
        c.drawCentredString(x + width / 2.0, baseline, text)
    elif element.align == "right":
        c.drawRightString(x + width, baseline, text)
    else:
        c.drawString(x, baseline, text)


def _draw_barcode(c, value, x, y, width, height):
    if not value:
        return
    # Measure at 1pt per module, then stretch the bars to the element width.
    probe = code128.Code128(str(value), barHeight=height, barWidth=1.0, humanReadable=False, quiet=False)
    symbol = code128.Code128(
        str(value),
        barHeight=height,
        barWidth=width / probe.width,
        humanReadable=False,
        quiet=False,
    )
    symbol.drawOn(c, x, y)


def _draw_image(c, x, y, width, height):
    c.saveState()
    c.setStrokeColor(colors.grey)
    c.setDash(2, 2)
    c.rect(x, y, width, height, stroke=1, fill=0)
    c.restoreState()


def render_label_pages(template, items):
    """Draw one page per data mapping in `items`; returns the PDF bytes."""
    page_width = template.width * MM_TO_PT
    page_height = template.height * MM_TO_PT
    elements = elements_from_dicts(template.elements)

    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=(page_width, page_height))
    c.setTitle(template.name)

    for data in items:
        for element in elements:
            x = element.x * MM_TO_PT
            # PDF origin is bottom-left, label origin is top-left.
            y = page_height - element.bottom * MM_TO_PT
            width = element.width * MM_TO_PT
            height = element.height * MM_TO_PT
            content = resolve_content(element, data)

            if element.type == TEXT:
                _draw_text(c, element, content, x, y, width, height)
            elif element.type == BARCODE:
                _draw_barcode(c, content, x, y, width, height)
            elif element.type == IMAGE:
                _draw_image(c, x, y, width, height)
        c.showPage()

    c.save()
    return buffer.getvalue()


def render_labels_pdf(template, product, codes):
    codes = [str(code).strip() for code in codes or [] if str(code).strip()]
    if not codes:
        raise ValidationError("At least one barcode is required to print labels.", errors={"barcodes": ["This list may not be empty."]})

    pdf = render_label_pages(template, [build_label_data(product, code) for code in codes])
    logger.info(
        "labels_rendered",
        extra={"template_id": str(template.id), "barcode_count": len(codes)},
    )
    return pdf
