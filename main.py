"""
Foodlist会话层主入口
组装认证、请求分发与访问记录服务, 并通过HTTP对外提供
"""

import asyncio
import sys

import uvicorn
from loguru import logger

from foodlist.api import create_app
from foodlist.context import AppContext
from foodlist.settings import global_settings


async def main() -> None:
    """主函数"""
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level.upper())
    logger.info("Starting Foodlist session service...")

    context = None
    try:
        # 初始化数据库与各组件
        logger.info("Initializing application context...")
        context = await AppContext.from_settings(global_settings)
        await context.start()
        logger.info("Application context initialized successfully")

        # 启动HTTP服务
        app = create_app(context)
        config = uvicorn.Config(
            app,
            host=global_settings.api_host,
            port=global_settings.api_port,
            log_level=global_settings.log_level.lower(),
        )
        logger.info(
            f"Serving on http://{global_settings.api_host}:{global_settings.api_port}"
        )
        await uvicorn.Server(config).serve()

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Error in main loop: {e}")
    finally:
        # 清理资源
        if context is not None:
            logger.info("Closing application context...")
            await context.close()

        logger.info("Foodlist session service stopped")


if __name__ == "__main__":
    asyncio.run(main())
