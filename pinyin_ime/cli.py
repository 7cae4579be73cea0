"""
pinyin_ime 命令行工具
"""

import argparse
import os
import sys


def _load_session_config(args, **overrides):
    from pinyin_ime.engine import load_config

    if getattr(args, "db", None):
        overrides["dictionary_path"] = args.db
    if getattr(args, "no_prediction", False):
        overrides["enable_prediction"] = False
    return load_config(args.config, **overrides)


def _open_store(args):
    from pinyin_ime.engine import SQLiteCandidateStore

    config = _load_session_config(args, enable_prediction=False)
    store = SQLiteCandidateStore(config.dictionary_path)
    store.initialize()
    return store


def main():
    """命令行入口"""
    parser = argparse.ArgumentParser(
        prog="pinyin-ime",
        description="pinyin_ime - 拼音输入法核心引擎",
    )
    parser.add_argument("--config", default=os.getenv("PINYIN_IME_CONFIG"), help="JSON 配置文件")
    parser.add_argument("--db", default=None, help="词库路径（覆盖配置）")

    subparsers = parser.add_subparsers(dest="command", help="可用命令")

    # server 命令
    server_parser = subparsers.add_parser("server", help="启动 API 服务")
    server_parser.add_argument("--host", default="127.0.0.1", help="绑定地址 (默认: 127.0.0.1)")
    server_parser.add_argument("--port", type=int, default=3000, help="端口 (默认: 3000)")

    # query 命令
    query_parser = subparsers.add_parser("query", help="逐键输入拼音并列出候选")
    query_parser.add_argument("pinyin", help="拼音输入，如 nihao")
    query_parser.add_argument("--no-prediction", action="store_true", help="禁用 AI 预测")

    # stats 命令
    subparsers.add_parser("stats", help="词库统计")

    # import / export 命令
    import_parser = subparsers.add_parser("import", help="导入词库文件（词 拼音 词频）")
    import_parser.add_argument("file", help="词库文件")
    export_parser = subparsers.add_parser("export", help="导出用户词")
    export_parser.add_argument("file", help="输出文件")

    # version 命令
    subparsers.add_parser("version", help="显示版本")

    args = parser.parse_args()

    if args.command == "server":
        from pinyin_ime.api.server import main as server_main
        os.environ["HOST"] = args.host
        os.environ["PORT"] = str(args.port)
        if args.config:
            os.environ["PINYIN_IME_CONFIG"] = args.config
        if args.db:
            os.environ["PINYIN_IME_DICTIONARY_PATH"] = args.db
        server_main()

    elif args.command == "query":
        from pinyin_ime.engine import InputEvent, create_session

        session = create_session(_load_session_config(args))
        rejected = [ch for ch in args.pinyin if not session.process_input(InputEvent.key(ch))]
        if rejected:
            print(f"被拒绝的按键: {''.join(rejected)}")
        print(f"拼音: {session.get_composition()}  状态: {session.get_state().value}")
        for i, c in enumerate(session.get_candidates(), 1):
            tag = " [AI]" if c.is_prediction else ""
            print(f"{i}. {c.text} ({c.score:.2f}){tag}")
        session.shutdown()

    elif args.command == "stats":
        store = _open_store(args)
        print(store.get_statistics())
        store.shutdown()

    elif args.command == "import":
        store = _open_store(args)
        ok = store.import_dictionary(args.file)
        store.shutdown()
        print("导入成功" if ok else "导入失败")
        sys.exit(0 if ok else 1)

    elif args.command == "export":
        store = _open_store(args)
        ok = store.export_user_dictionary(args.file)
        store.shutdown()
        print("导出成功" if ok else "没有可导出的用户词")
        sys.exit(0 if ok else 1)

    elif args.command == "version":
        from pinyin_ime import __version__
        print(f"pinyin_ime v{__version__}")

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
