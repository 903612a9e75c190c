"""命令行模块 - chatlink 的 Typer 命令定义见 commands.py。"""
