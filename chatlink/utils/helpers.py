"""
工具函数集合 - chatlink 项目全局通用的辅助函数。

本模块提供路径管理、字符串处理、时间格式化等基础工具函数，
被项目中的多个模块引用。

函数分类：
- 路径管理：ensure_dir, get_data_path, get_sessions_path, get_user_dir, get_auth_dir
- 字符串工具：user_dirname
- 时间工具：now_ms, format_display_time, format_clock
"""

from datetime import datetime
from pathlib import Path
from urllib.parse import quote

# 每个用户目录下存放传输层凭据的子目录名
AUTH_DIRNAME = "auth"


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """获取 chatlink 数据目录（~/.chatlink）。自动创建不存在的目录。"""
    return ensure_dir(Path.home() / ".chatlink")


def get_sessions_path(data_dir: str | Path | None = None) -> Path:
    """
    获取会话根目录。

    参数:
        data_dir: 自定义目录。为 None 时使用默认路径 ~/.chatlink/sessions

    返回:
        展开并确保存在的会话根目录
    """
    if data_dir:
        return ensure_dir(Path(data_dir).expanduser())
    return ensure_dir(get_data_path() / "sessions")


def get_user_dir(sessions_root: Path, user_id: str) -> Path:
    """获取某个用户的数据目录（不自动创建）。"""
    return sessions_root / user_dirname(user_id)


def get_auth_dir(sessions_root: Path, user_id: str) -> Path:
    """获取某个用户的凭据目录（由传输层写入，chatlink 只检查是否存在）。"""
    return get_user_dir(sessions_root, user_id) / AUTH_DIRNAME


def now_ms() -> int:
    """当前 Unix 时间戳（毫秒）。"""
    return int(datetime.now().timestamp() * 1000)


def format_display_time(ts: int | float | None, now: datetime | None = None) -> str:
    """
    把消息时间戳格式化为会话列表里的简短显示文本。

    规则：
    - 今天：时刻，如 "3:05 PM"
    - 昨天："Yesterday"
    - 一周内：星期缩写，如 "Mon"
    - 更早：月日，如 "Jan 5"

    参数:
        ts: Unix 时间戳（秒），为空时返回空字符串
        now: 参照时间，默认当前时间

    返回:
        显示文本
    """
    if not ts:
        return ""
    moment = datetime.fromtimestamp(ts)
    now = now or datetime.now()
    days = (now.date() - moment.date()).days

    if days <= 0:
        return format_clock(ts)
    if days == 1:
        return "Yesterday"
    if days < 7:
        return moment.strftime("%a")
    return f"{moment.strftime('%b')} {moment.day}"


def format_clock(ts: int | float | None) -> str:
    """把时间戳格式化为时刻文本，如 "3:05 PM"。为空时返回空字符串。"""
    if not ts:
        return ""
    return datetime.fromtimestamp(ts).strftime("%I:%M %p").lstrip("0")


def user_dirname(user_id: str) -> str:
    """
    把用户 ID 编码为目录名。

    编码是可逆的：不同的用户 ID 一定得到不同的目录名，
    不会出现两个用户共用同一份凭据的情况。
    除字母数字和 "_-~" 外的字符都做百分号编码，"." 也一并编码，
    因此 "." / ".." 这类 ID 不会指向当前目录或上级目录。

    参数:
        user_id: 用户 ID（非空）

    返回:
        可以直接作为单级目录名使用的字符串
    """
    return quote(user_id, safe="").replace(".", "%2E")
