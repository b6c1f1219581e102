"""Render a Yappy QR hash as a PNG image."""

import io

import qrcode


def render_qr_png(data: str, box_size: int = 10, border: int = 4) -> bytes:
    if not data:
        raise ValueError("QR data must not be empty")
    qr = qrcode.QRCode(box_size=box_size, border=border)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffered = io.BytesIO()
    img.save(buffered, "PNG")
    return buffered.getvalue()
