"""
后端服务器启动脚本

启动 uvicorn 服务器运行 FastAPI 应用。数据库与日志默认写入 backend/storage。
"""

import argparse
import os


def main():
    """启动服务器"""
    parser = argparse.ArgumentParser(description="Inkloom 章节生成引擎")
    parser.add_argument("--host", default=os.environ.get("INKLOOM_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("INKLOOM_PORT", "8123")))
    parser.add_argument("--reload", action="store_true", help="开发模式：代码变更后自动重启")
    args = parser.parse_args()

    import uvicorn

    print("=" * 60)
    print("Inkloom 章节生成引擎启动中...")
    print(f"监听地址: http://{args.host}:{args.port}")
    print("=" * 60)

    uvicorn.run(
        "inkloom.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
