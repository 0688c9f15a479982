"""QR symbol encoding and PNG rasterisation."""

from __future__ import annotations

from io import BytesIO
from typing import List

import qrcode
from PIL import Image
from qrcode.constants import ERROR_CORRECT_M

MEDIUM = ERROR_CORRECT_M
QUIET_ZONE = 4
DARK = 0
LIGHT = 255


def build_matrix(data: bytes, error_correction: int) -> List[List[bool]]:
    qr = qrcode.QRCode(
        version=None,
        error_correction=error_correction,
        box_size=1,
        border=QUIET_ZONE,
    )
    qr.add_data(data)
    qr.make(fit=True)
    return qr.get_matrix()


def encode(data: bytes, error_correction: int, size: int) -> bytes:
    """Encode ``data`` as a square PNG of ``size`` pixels per side.

    Modules are scaled by the largest whole factor that fits and the symbol
    is centred on a light canvas. When even one pixel per module does not
    fit, the unscaled symbol is returned as is, larger than requested.
    """
    matrix = build_matrix(data, error_correction)
    modules = len(matrix)
    scale = max(1, size // modules)

    symbol = Image.new("L", (modules, modules), LIGHT)
    symbol.putdata([DARK if dark else LIGHT for row in matrix for dark in row])
    if scale > 1:
        symbol = symbol.resize((modules * scale, modules * scale), Image.Resampling.NEAREST)

    side = max(size, symbol.width)
    canvas = Image.new("L", (side, side), LIGHT)
    offset = (side - symbol.width) // 2
    canvas.paste(symbol, (offset, offset))

    buffer = BytesIO()
    canvas.save(buffer, format="PNG")
    return buffer.getvalue()
