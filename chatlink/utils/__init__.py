"""
工具函数模块 - 提供 chatlink 项目全局通用的辅助函数。

本模块包含：
- helpers：路径管理、字符串与时间格式化
- timeouts：有界等待的统一实现（race / poll_until / settle）
"""

from chatlink.utils.helpers import ensure_dir, get_data_path, get_sessions_path
from chatlink.utils.timeouts import race, poll_until, settle

__all__ = ["ensure_dir", "get_data_path", "get_sessions_path", "race", "poll_until", "settle"]
