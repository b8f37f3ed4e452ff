"""
QR code rendering for wallet deep links.
"""

import base64
from io import BytesIO

import qrcode


def render_qr_data_uri(url: str, box_size: int = 10, border: int = 2) -> str:
    """
    Encode a URL as a PNG QR code data URI.

    Args:
        url: Deep link returned by the request service
        box_size: Pixels per module
        border: Quiet-zone width in modules

    Returns:
        "data:image/png;base64,..." string usable as an <img> src
    """
    qr = qrcode.QRCode(
        error_correction=qrcode.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(url)
    qr.make(fit=True)

    image = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
