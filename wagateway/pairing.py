from __future__ import annotations

import io
import logging
from typing import Optional

import qrcode


LOGGER = logging.getLogger("wagateway.pairing")


class PairingRenderer:
    """Renders pairing QR codes for scanning from the WhatsApp app.

    The ASCII form goes to the log; the PNG form is kept for ``GET /qr.png``.
    """

    def __init__(self) -> None:
        self._png: Optional[bytes] = None

    @property
    def latest_png(self) -> Optional[bytes]:
        return self._png

    def render(self, payload: str) -> None:
        self._png = self._build_png(payload)
        LOGGER.info(
            "event=qr_issued hint=scan_with_whatsapp\n%s", self._build_ascii(payload)
        )

    @staticmethod
    def _build_ascii(payload: str) -> str:
        qr = qrcode.QRCode(border=1)
        qr.add_data(payload)
        qr.make(fit=True)
        buf = io.StringIO()
        qr.print_ascii(out=buf)
        return buf.getvalue()

    @staticmethod
    def _build_png(payload: str) -> bytes:
        qr = qrcode.QRCode(
            error_correction=qrcode.constants.ERROR_CORRECT_H,
            box_size=10,
            border=4,
        )
        qr.add_data(payload)
        qr.make(fit=True)
        img = qr.make_image(fill_color="#000000", back_color="#FFFFFF").convert("RGB")
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue()


__all__ = ["PairingRenderer"]
