"""roommap：房间内成员实时位置共享与按需路线计算。"""

__version__ = "0.1.0"
