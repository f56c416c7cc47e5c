"""
入口转发

本项目已整理为可复用的包与 CLI：
  - 包名: badge_tracker_server
  - CLI: badge-tracker-server

此文件仅用于兼容 `python main.py` 的运行方式，会转发到 `badge_tracker_server.cli:main`。
"""

from badge_tracker_server.cli import main as _cli_main


def main():
    _cli_main()


if __name__ == "__main__":  # pragma: no cover
    main()
