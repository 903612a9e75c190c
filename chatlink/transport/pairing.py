"""
配对码渲染 - 把传输层下发的原始配对字符串转换成可扫描的二维码。

两种输出：
- data URL（PNG，base64），供前端直接作为 <img src> 展示
- 终端 ASCII 二维码，供 CLI 登录命令使用
"""

import base64
import io
from dataclasses import dataclass

import qrcode


@dataclass(frozen=True)
class PairingArtifact:
    """握手阶段的配对产物。code 为原始字符串，data_url 为渲染后的 PNG。"""

    code: str
    data_url: str


def _build_qr(payload: str) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=4,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    return qr


def qr_to_data_url(payload: str) -> str:
    """把配对字符串渲染为 PNG data URL。"""
    img = _build_qr(payload).make_image(fill_color="#000000", back_color="#FFFFFF")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def qr_to_terminal(payload: str) -> str:
    """把配对字符串渲染为终端可显示的 ASCII 二维码。"""
    out = io.StringIO()
    _build_qr(payload).print_ascii(out=out, invert=True)
    return out.getvalue()


def build_artifact(payload: str) -> PairingArtifact:
    """由原始配对字符串构造配对产物。"""
    return PairingArtifact(code=payload, data_url=qr_to_data_url(payload))
