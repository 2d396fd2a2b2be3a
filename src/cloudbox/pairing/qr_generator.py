"""QR code rendering for pairing credentials.

Renders the base64 text of an encoded QrCredential for display in a
terminal, a browser, or as a PNG file.
"""

import base64
import io

import qrcode
from qrcode.main import QRCode

from cloudbox.pairing.qr_codec import QrCredential, encode


class QrGenerator:
    """Render a pairing credential as a QR code."""

    def __init__(self, credential: QrCredential):
        """Initialize QR generator.

        Args:
            credential: Direct or indirect credential to render.
        """
        self.credential = credential

    @property
    def text(self) -> str:
        """Base64 text carried by the QR code."""
        return encode(self.credential)

    def _create_qr(self) -> QRCode:
        # Type-2 credentials exist to keep this small; let the library size it
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=4,
        )
        qr.add_data(self.text)
        qr.make(fit=True)
        return qr

    @property
    def version(self) -> int:
        """QR symbol version (1-40) needed for this credential."""
        return self._create_qr().version

    def to_terminal(self) -> str:
        """Generate ASCII art for terminal display.

        Returns:
            String with QR code using Unicode block characters.
        """
        qr = self._create_qr()
        output = io.StringIO()
        qr.print_ascii(out=output, invert=True)
        return output.getvalue()

    def to_png(self, path: str) -> None:
        """Save QR code as PNG file."""
        qr = self._create_qr()
        img = qr.make_image(fill_color="black", back_color="white")
        img.save(path)

    def to_html(self) -> str:
        """Generate an HTML page with the embedded QR code image."""
        qr = self._create_qr()
        img = qr.make_image(fill_color="black", back_color="white")

        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        img_b64 = base64.b64encode(buffer.getvalue()).decode("ascii")

        return f"""<!DOCTYPE html>
<html>
<head>
    <title>CloudBox Pairing</title>
    <style>
        body {{
            display: flex;
            flex-direction: column;
            align-items: center;
            justify-content: center;
            height: 100vh;
            margin: 0;
            font-family: system-ui, sans-serif;
        }}
        img {{ border: 10px solid white; }}
        p {{ margin-top: 20px; color: #888; }}
    </style>
</head>
<body>
    <h1>Scan to connect to this cloud</h1>
    <img src="data:image/png;base64,{img_b64}" alt="QR Code">
    <p>Enter the PIN shown on the server after scanning</p>
</body>
</html>
"""
